"""Tests for the incremental JSON assembler."""

import json

import pytest

from recipe_ai.errors import IncompleteStreamError
from recipe_ai.streaming import IncrementalAssembler

CAUSES = [
    {"cause_id": "stress", "name_localized": "Estresse \"crônico\"", "tags": ["a", "b"]},
    {"cause_id": "sleep", "name_localized": "Sono ruim", "score": -1.5e2},
    {"cause_id": "diet", "name_localized": "Dieta {irregular}", "flags": {"x": [1, [2]]}},
]

DOCUMENT = json.dumps(
    {"meta": {"count": 3}, "data": {"potential_causes": CAUSES, "note": None}},
    ensure_ascii=False,
)

SCHEMA = {
    "type": "object",
    "required": ["data"],
    "properties": {
        "data": {
            "type": "object",
            "required": ["potential_causes"],
            "properties": {"potential_causes": {"type": "array"}},
        }
    },
}


def chunks(text, size):
    return [text[i:i + size] for i in range(0, len(text), size)]


def feed_all(assembler, fragments):
    items = []
    for fragment in fragments:
        items.extend(assembler.feed(fragment))
    return items


class TestEmission:
    @pytest.mark.parametrize("size", [1, 2, 7, 64, 10_000])
    def test_items_emitted_once_in_order(self, size):
        assembler = IncrementalAssembler("data.potential_causes", SCHEMA)
        items = feed_all(assembler, chunks(DOCUMENT, size))

        assert [item.index for item in items] == [0, 1, 2]
        assert [item.value for item in items] == CAUSES
        assert assembler.finalize()["data"]["potential_causes"] == CAUSES

    def test_item_emitted_as_soon_as_it_closes(self):
        assembler = IncrementalAssembler("data.items")
        first = assembler.feed('{"data": {"items": [{"a": 1}')
        assert [item.value for item in first] == [{"a": 1}]
        assert assembler.feed(', {"a": 2') == []
        assert [item.value for item in assembler.feed("}]}}")] == [{"a": 2}]

    def test_scalar_waits_for_delimiter(self):
        assembler = IncrementalAssembler("xs")
        assert assembler.feed('{"xs": [12') == []
        assert [item.value for item in assembler.feed("3]")] == [123]

    def test_scalar_array_items(self):
        assembler = IncrementalAssembler("values")
        items = feed_all(assembler, chunks('{"values": [1, "two", true, null, -3.5]}', 3))
        assert [item.value for item in items] == [1, "two", True, None, -3.5]

    def test_root_array_target(self):
        assembler = IncrementalAssembler("")
        items = feed_all(assembler, chunks('[{"a": 1}, {"b": 2}]', 4))
        assert [item.value for item in items] == [{"a": 1}, {"b": 2}]
        assert assembler.finalize() == [{"a": 1}, {"b": 2}]

    def test_same_named_array_elsewhere_ignored(self):
        document = '{"other": {"potential_causes": [1, 2]}, "data": {"potential_causes": [3]}}'
        assembler = IncrementalAssembler("data.potential_causes")
        assert [item.value for item in feed_all(assembler, chunks(document, 5))] == [3]

    def test_missing_target_emits_nothing(self):
        assembler = IncrementalAssembler("data.potential_causes")
        assert feed_all(assembler, ['{"data": {"something_else": [1]}}']) == []
        assert assembler.finalize() == {"data": {"something_else": [1]}}

    def test_items_property(self):
        assembler = IncrementalAssembler("xs")
        feed_all(assembler, ['{"xs": [1, 2]}'])
        assert [item.index for item in assembler.items] == [0, 1]

    def test_repeated_element_gets_next_index(self):
        assembler = IncrementalAssembler("xs")
        first = assembler.feed('{"xs": [{"a": 1}')
        second = assembler.feed(', {"a": 1}')
        assert assembler.feed("]}") == []
        assert [(item.index, item.value) for item in first + second] == [(0, {"a": 1}), (1, {"a": 1})]
        assert assembler.finalize() == {"xs": [{"a": 1}, {"a": 1}]}

    def test_resent_prefix_fails_without_reemitting(self):
        assembler = IncrementalAssembler("xs")
        assert [item.index for item in assembler.feed('{"xs": [{"a": 1}')] == [0]
        assert assembler.feed('{"xs": [{"a": 1}') == []
        assert assembler.failed
        assert assembler.state.emitted_item_count == 1
        with pytest.raises(IncompleteStreamError):
            assembler.finalize()


class TestFragmentBoundaries:
    def test_escape_split_across_fragments(self):
        assembler = IncrementalAssembler("xs")
        items = feed_all(assembler, ['{"xs": ["a\\', '"b', '\\u00', 'e9"]}'])
        assert [item.value for item in items] == ['a"bé']

    def test_multibyte_characters_split_across_byte_fragments(self):
        encoded = '{"xs": ["Lavanda é ótima", "日本"]}'.encode("utf-8")
        assembler = IncrementalAssembler("xs")
        items = feed_all(assembler, [encoded[i:i + 1] for i in range(len(encoded))])
        assert [item.value for item in items] == ["Lavanda é ótima", "日本"]
        assert assembler.finalize() == {"xs": ["Lavanda é ótima", "日本"]}

    def test_literal_split_across_fragments(self):
        assembler = IncrementalAssembler("xs")
        items = feed_all(assembler, ['{"xs": [tr', 'ue, 12', '34]}'])
        assert [item.value for item in items] == [True, 1234]

    def test_braces_inside_strings_do_not_nest(self):
        assembler = IncrementalAssembler("xs")
        items = feed_all(assembler, chunks('{"xs": ["}]", "{[", "\\\\"]}', 2))
        assert [item.value for item in items] == ["}]", "{[", "\\"]

    def test_markdown_fence_and_trailing_text_ignored(self):
        text = 'Here you go:\n```json\n{"xs": [1, 2]}\n```\nAnything else?'
        assembler = IncrementalAssembler("xs")
        items = feed_all(assembler, chunks(text, 6))
        assert [item.value for item in items] == [1, 2]
        assert assembler.finalize() == {"xs": [1, 2]}


class TestFinalize:
    def test_unclosed_document(self):
        assembler = IncrementalAssembler("xs")
        items = feed_all(assembler, ['{"xs": [1, 2'])
        assert [item.value for item in items] == [1]
        with pytest.raises(IncompleteStreamError, match="closed"):
            assembler.finalize()

    def test_no_document(self):
        assembler = IncrementalAssembler("xs")
        assembler.feed("I cannot help with that.")
        with pytest.raises(IncompleteStreamError, match="before any JSON"):
            assembler.finalize()

    @pytest.mark.parametrize(
        "text",
        ['{"xs": [1,, 2]}', '{"xs" 1}', '{"xs": [tru]}', '{"xs": ["\\q"]}', '{xs: []}'],
    )
    def test_syntax_error(self, text):
        assembler = IncrementalAssembler("xs")
        feed_all(assembler, chunks(text, 3))
        assert assembler.failed
        assert assembler.state.error
        with pytest.raises(IncompleteStreamError, match="not valid JSON"):
            assembler.finalize()

    def test_no_items_after_syntax_error(self):
        assembler = IncrementalAssembler("xs")
        assert [i.value for i in assembler.feed('{"xs": [1, @, 2, 3]}')] == [1]
        assert assembler.feed(", 4]}") == []

    def test_schema_violation(self):
        assembler = IncrementalAssembler("data.potential_causes", SCHEMA)
        feed_all(assembler, ['{"data": {"potential_causes": "none"}}'])
        with pytest.raises(IncompleteStreamError, match="output schema"):
            assembler.finalize()

    def test_truncated_utf8(self):
        assembler = IncrementalAssembler("xs")
        assembler.feed('{"xs": ["é"]}'.encode("utf-8")[:-4])
        with pytest.raises(IncompleteStreamError):
            assembler.finalize()


class TestState:
    def test_state_snapshot(self):
        assembler = IncrementalAssembler("data.items")
        assembler.feed('{"data": {"items": [1, ')
        state = assembler.state
        assert state.buffered_text == '{"data": {"items": [1, '
        assert state.emitted_item_count == 1
        assert state.target_path == "data.items"
        assert state.depth == 3
        assert state.root_closed is False
        assert state.error is None

    def test_reset(self):
        assembler = IncrementalAssembler("xs")
        assembler.feed('{"xs": [1, @')
        assert assembler.failed
        assembler.reset()
        assert not assembler.failed
        assert assembler.state.buffered_text == ""
        items = feed_all(assembler, ['{"xs": [7]}'])
        assert [item.value for item in items] == [7]
        assert items[0].index == 0
