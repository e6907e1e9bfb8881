"""Incremental assembler for streamed JSON documents.

A model streaming a structured response sends its JSON document in
arbitrary fragments. The assembler scans the fragments as they arrive and
emits each element of one named array (e.g. `data.potential_causes`) as soon
as that element's text is complete, so callers can render items before the
document finishes.

The scanner is a character-level state machine: it keeps a stack of open
containers, the current key or index of each, and string/escape state. Every
character is looked at once; nothing is rescanned between feeds.
"""

import codecs
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from recipe_ai.errors import IncompleteStreamError
from recipe_ai.validation import schema_errors

logger = logging.getLogger(__name__)

_WHITESPACE = " \t\n\r"
_ESCAPABLE = '"\\/bfnrtu'
_HEX_DIGITS = "0123456789abcdefABCDEF"
_PRIMITIVE_START = "-0123456789tfn"

# Container expectations
_KEY_OR_END = "key_or_end"
_KEY = "key"
_COLON = "colon"
_VALUE = "value"
_VALUE_OR_END = "value_or_end"
_COMMA_OR_END = "comma_or_end"


@dataclass(frozen=True)
class AssembledItem:
    """One complete element of the target array."""

    index: int
    value: Any


@dataclass
class AssemblerState:
    """Snapshot of an assembler for inspection and debugging."""

    buffered_text: str
    emitted_item_count: int
    target_path: str
    depth: int = 0
    root_closed: bool = False
    error: Optional[str] = None


@dataclass
class _Frame:
    kind: str  # "object" or "array"
    path: tuple[str, ...]
    expect: str
    key: Optional[str] = None
    index: int = -1
    is_target: bool = False
    element_start: Optional[int] = None


@dataclass
class _Scanner:
    stack: list[_Frame] = field(default_factory=list)
    in_string: bool = False
    string_is_key: bool = False
    escape: bool = False
    unicode_remaining: int = 0
    key_chars: list[str] = field(default_factory=list)
    primitive: Optional[str] = None
    primitive_start: int = 0
    root_start: Optional[int] = None
    root_end: Optional[int] = None


def _split_path(target_path: str) -> tuple[str, ...]:
    return tuple(part for part in target_path.split(".") if part) if target_path else ()


class IncrementalAssembler:
    """Emits completed elements of a target array from a streamed JSON document.

    Usage:
        assembler = IncrementalAssembler("data.potential_causes", schema)
        for fragment in stream:
            for item in assembler.feed(fragment):
                render(item.index, item.value)
        payload = assembler.finalize()
    """

    def __init__(self, target_path: str, schema: Optional[dict[str, Any]] = None):
        self.target_path = target_path
        self.schema = schema
        self._target = _split_path(target_path)
        self.reset()

    def reset(self) -> None:
        """Discard all buffered text and scanner state."""
        self._decoder = codecs.getincrementaldecoder("utf-8")()
        self._buffer = ""
        self._pos = 0
        self._scan = _Scanner()
        self._emitted: list[AssembledItem] = []
        self._next_index = 0
        self._error: Optional[str] = None

    @property
    def state(self) -> AssemblerState:
        return AssemblerState(
            buffered_text=self._buffer,
            emitted_item_count=len(self._emitted),
            target_path=self.target_path,
            depth=len(self._scan.stack),
            root_closed=self._scan.root_end is not None,
            error=self._error,
        )

    @property
    def items(self) -> list[AssembledItem]:
        """Every item emitted so far, in index order."""
        return list(self._emitted)

    @property
    def failed(self) -> bool:
        return self._error is not None

    def feed(self, fragment: Union[str, bytes]) -> list[AssembledItem]:
        """Consume one fragment and return the items it completed."""
        if isinstance(fragment, bytes):
            try:
                fragment = self._decoder.decode(fragment)
            except UnicodeDecodeError as e:
                self._fail(f"invalid UTF-8 in stream: {e}")
                return []

        if not fragment:
            return []

        self._buffer += fragment
        if self._error is not None or self._scan.root_end is not None:
            return []

        emitted: list[AssembledItem] = []
        self._run(emitted)
        return emitted

    def finalize(self) -> Any:
        """Parse and validate the complete document.

        Raises:
            IncompleteStreamError: if the stream had a syntax error, the root
                never closed, or the document violates the schema
        """
        try:
            tail = self._decoder.decode(b"", final=True)
        except UnicodeDecodeError as e:
            raise IncompleteStreamError(f"Stream ended inside a UTF-8 sequence: {e}") from e
        if tail:
            self.feed(tail)

        if self._error is not None:
            raise IncompleteStreamError(f"Stream is not valid JSON: {self._error}")

        scan = self._scan
        if scan.root_start is None:
            raise IncompleteStreamError("Stream ended before any JSON document started")
        if scan.root_end is None:
            raise IncompleteStreamError(
                f"Stream ended before the JSON document closed "
                f"({len(scan.stack)} containers still open)"
            )

        try:
            payload = json.loads(self._buffer[scan.root_start:scan.root_end])
        except json.JSONDecodeError as e:
            raise IncompleteStreamError(f"Stream is not valid JSON: {e}") from e

        errors = schema_errors(payload, self.schema)
        if errors:
            raise IncompleteStreamError(f"Document does not match output schema: {errors[0]}")

        return payload

    # ── Scanner ──────────────────────────────────────────

    def _fail(self, message: str) -> None:
        if self._error is None:
            self._error = message
            logger.warning(
                f"[{self.target_path}] Stopped assembling after {len(self._emitted)} items: {message}"
            )

    def _run(self, emitted: list[AssembledItem]) -> None:
        scan = self._scan
        buffer = self._buffer
        end = len(buffer)

        while self._pos < end:
            pos = self._pos
            ch = buffer[pos]
            self._pos += 1

            if scan.root_start is None:
                if ch == "{" or ch == "[":
                    scan.root_start = pos
                    self._push("object" if ch == "{" else "array", (), pos)
                continue

            if scan.in_string:
                self._string_char(ch, pos, emitted)
            else:
                if scan.primitive is not None:
                    if ch.isalnum() or ch in "+-.":
                        scan.primitive += ch
                        continue
                    self._finish_primitive(pos, emitted)
                    if self._error is not None:
                        return
                self._structural_char(ch, pos, emitted)

            if self._error is not None or scan.root_end is not None:
                return

    def _string_char(self, ch: str, pos: int, emitted: list[AssembledItem]) -> None:
        scan = self._scan

        if scan.unicode_remaining:
            if ch not in _HEX_DIGITS:
                self._fail(f"invalid \\u escape at offset {pos}")
                return
            scan.unicode_remaining -= 1
        elif scan.escape:
            if ch not in _ESCAPABLE:
                self._fail(f"invalid escape '\\{ch}' at offset {pos}")
                return
            scan.escape = False
            if ch == "u":
                scan.unicode_remaining = 4
        elif ch == "\\":
            scan.escape = True
        elif ch == '"':
            scan.in_string = False
            if scan.string_is_key:
                self._finish_key(pos)
            else:
                self._value_done(pos + 1, emitted)
            return
        elif ch < " ":
            self._fail(f"control character in string at offset {pos}")
            return

        if scan.string_is_key:
            scan.key_chars.append(ch)

    def _finish_key(self, pos: int) -> None:
        scan = self._scan
        raw = "".join(scan.key_chars)
        scan.key_chars = []
        try:
            key = json.loads(f'"{raw}"')
        except json.JSONDecodeError:
            self._fail(f"invalid object key ending at offset {pos}")
            return
        frame = scan.stack[-1]
        frame.key = key
        frame.expect = _COLON

    def _structural_char(self, ch: str, pos: int, emitted: list[AssembledItem]) -> None:
        if ch in _WHITESPACE:
            return

        scan = self._scan
        frame = scan.stack[-1]
        expect = frame.expect

        if expect in (_KEY_OR_END, _KEY):
            if ch == '"':
                scan.in_string = True
                scan.string_is_key = True
                scan.key_chars = []
            elif ch == "}" and expect == _KEY_OR_END:
                self._close(pos, emitted)
            else:
                self._fail(f"expected object key at offset {pos}, got {ch!r}")
        elif expect == _COLON:
            if ch == ":":
                frame.expect = _VALUE
            else:
                self._fail(f"expected ':' at offset {pos}, got {ch!r}")
        elif expect in (_VALUE, _VALUE_OR_END):
            if ch == "]" and expect == _VALUE_OR_END:
                self._close(pos, emitted)
            else:
                self._start_value(ch, pos)
        elif expect == _COMMA_OR_END:
            if ch == ",":
                frame.expect = _KEY if frame.kind == "object" else _VALUE
            elif (ch == "}" and frame.kind == "object") or (ch == "]" and frame.kind == "array"):
                self._close(pos, emitted)
            else:
                self._fail(f"expected ',' or end of {frame.kind} at offset {pos}, got {ch!r}")

    def _start_value(self, ch: str, pos: int) -> None:
        scan = self._scan
        parent = scan.stack[-1]

        if parent.kind == "array":
            parent.index += 1
            segment = str(parent.index)
        else:
            segment = parent.key or ""
        if parent.is_target:
            parent.element_start = pos

        if ch == "{" or ch == "[":
            self._push("object" if ch == "{" else "array", parent.path + (segment,), pos)
        elif ch == '"':
            scan.in_string = True
            scan.string_is_key = False
        elif ch in _PRIMITIVE_START:
            scan.primitive = ch
            scan.primitive_start = pos
        else:
            self._fail(f"unexpected {ch!r} at offset {pos}")

    def _finish_primitive(self, pos: int, emitted: list[AssembledItem]) -> None:
        scan = self._scan
        token = scan.primitive or ""
        scan.primitive = None
        try:
            json.loads(token)
        except json.JSONDecodeError:
            self._fail(f"invalid literal {token!r} at offset {scan.primitive_start}")
            return
        self._value_done(pos, emitted)

    def _push(self, kind: str, path: tuple[str, ...], pos: int) -> None:
        self._scan.stack.append(
            _Frame(
                kind=kind,
                path=path,
                expect=_KEY_OR_END if kind == "object" else _VALUE_OR_END,
                is_target=(kind == "array" and path == self._target),
            )
        )

    def _close(self, pos: int, emitted: list[AssembledItem]) -> None:
        scan = self._scan
        scan.stack.pop()
        if not scan.stack:
            scan.root_end = pos + 1
            return
        self._value_done(pos + 1, emitted)

    def _value_done(self, end: int, emitted: list[AssembledItem]) -> None:
        """A value inside the top frame finished at `end` (exclusive)."""
        frame = self._scan.stack[-1]
        frame.expect = _COMMA_OR_END

        if not frame.is_target or frame.element_start is None:
            return

        start = frame.element_start
        frame.element_start = None
        index = frame.index
        if index < self._next_index:
            return

        try:
            value = json.loads(self._buffer[start:end])
        except json.JSONDecodeError as e:
            self._fail(f"element {index} is not valid JSON: {e}")
            return

        item = AssembledItem(index=index, value=value)
        self._emitted.append(item)
        self._next_index = index + 1
        emitted.append(item)
