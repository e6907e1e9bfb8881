"""Template resolver for prompt document bodies.

Prompt documents use a small Handlebars-style subset:

    {{key}}  {{a.b}}                       scalar substitution
    {{#each key}} ... {{/each}}            iteration over a sequence
    {{this}}  {{@index}}                   current element / position
    {{#unless @last}} ... {{/unless}}      skipped on the last element

The body is parsed once into nodes, compiled to a Jinja2 template and cached
per body. Literal text and placeholder paths never appear in the generated
Jinja2 source; they are passed in by index, so template text that happens to
contain Jinja2 syntax renders untouched.

Missing keys leave the placeholder verbatim. Resolution is deterministic and
never mutates the variable bag.
"""

import json
import logging
import re
import threading
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Union

from jinja2 import BaseLoader, Environment, StrictUndefined, Template

from recipe_ai.errors import TemplateSyntaxError

logger = logging.getLogger(__name__)

_TAG_RE = re.compile(r"\{\{\s*([^{}]*?)\s*\}\}")
_EACH_RE = re.compile(r"^#each\s+([\w-]+(?:\.[\w-]+)*)$")
_UNLESS_LAST_RE = re.compile(r"^#unless\s+@last$")
_PATH_RE = re.compile(r"^(?:@index|@last|[\w-]+(?:\.[\w-]+)*)$")

_MISSING = object()


@dataclass
class _Text:
    text: str


@dataclass
class _Var:
    path: str
    raw: str


@dataclass
class _Each:
    path: str
    raw: str
    children: list = field(default_factory=list)


@dataclass
class _UnlessLast:
    children: list = field(default_factory=list)


_Node = Union[_Text, _Var, _Each, _UnlessLast]


@dataclass
class _CompiledTemplate:
    template: Template
    texts: list[str]
    refs: list[_Var]
    sequences: list[str]


def _line_of(body: str, offset: int) -> int:
    return body.count("\n", 0, offset) + 1


def parse_template(body: str) -> list[_Node]:
    """Parse a body into nodes.

    Raises:
        TemplateSyntaxError: on nested/unclosed/stray block tags or an
            `{{#unless @last}}` outside an each block.
    """
    root: list[_Node] = []
    stack: list[Union[_Each, _UnlessLast]] = []
    current = root
    pos = 0

    for match in _TAG_RE.finditer(body):
        if match.start() > pos:
            current.append(_Text(body[pos:match.start()]))
        pos = match.end()

        raw = match.group(0)
        expr = match.group(1)
        line = _line_of(body, match.start())

        each = _EACH_RE.match(expr)
        if each:
            if stack:
                raise TemplateSyntaxError(
                    f"Nested {raw} at line {line}: each blocks cannot be nested"
                )
            node = _Each(path=each.group(1), raw=raw)
            current.append(node)
            stack.append(node)
            current = node.children
        elif _UNLESS_LAST_RE.match(expr):
            if not stack or not isinstance(stack[-1], _Each):
                raise TemplateSyntaxError(
                    f"{raw} at line {line} must be directly inside an each block"
                )
            node = _UnlessLast()
            current.append(node)
            stack.append(node)
            current = node.children
        elif expr == "/unless":
            if not stack or not isinstance(stack[-1], _UnlessLast):
                raise TemplateSyntaxError(f"Unexpected {raw} at line {line}")
            stack.pop()
            current = stack[-1].children
        elif expr == "/each":
            if not stack or not isinstance(stack[-1], _Each):
                raise TemplateSyntaxError(f"Unexpected {raw} at line {line}")
            stack.pop()
            current = root
        elif _PATH_RE.match(expr) or expr == "this" or expr.startswith("this."):
            current.append(_Var(path=expr, raw=raw))
        else:
            # Not part of the supported grammar; keep as literal text
            current.append(_Text(raw))

    if pos < len(body):
        current.append(_Text(body[pos:]))

    if stack:
        opener = stack[0]
        label = opener.raw if isinstance(opener, _Each) else "{{#unless @last}}"
        raise TemplateSyntaxError(f"Unclosed block {label}")

    return root


def lookup_path(scope: Any, path: str) -> Any:
    """Resolve a dotted path against nested mappings/sequences.

    Numeric segments index into sequences. Returns a private sentinel when
    any segment is missing.
    """
    current = scope
    for part in path.split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        elif isinstance(current, (list, tuple)) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return _MISSING
    return current


def format_value(value: Any) -> str:
    """String form of a variable for prompt text.

    Strings pass through; booleans render as JSON literals; None renders
    empty; mappings and sequences render as compact JSON.
    """
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, Mapping):
        value = dict(value)
    elif isinstance(value, tuple):
        value = list(value)
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"), default=str)


class TemplateResolver:
    """Resolves prompt bodies against variable bags.

    Usage:
        resolver = TemplateResolver()
        prompt = resolver.resolve(
            "Hello {{name}}, items: {{#each xs}}{{this}}{{#unless @last}}, {{/unless}}{{/each}}.",
            {"name": "Ana", "xs": ["a", "b", "c"]},
        )
        # "Hello Ana, items: a, b, c."
    """

    def __init__(self):
        self.env = Environment(
            loader=BaseLoader(),
            autoescape=False,  # Prompts are plain text, not HTML
            undefined=StrictUndefined,
            keep_trailing_newline=True,
        )
        self._compiled: dict[str, _CompiledTemplate] = {}
        self._lock = threading.Lock()

    def validate(self, body: str) -> None:
        """Check block structure (and warm the compile cache).

        Raises:
            TemplateSyntaxError: if the body is structurally invalid
        """
        self._compile(body)

    def resolve(self, body: str, variables: Mapping[str, Any]) -> str:
        """Render a body with variables substituted."""
        rendered, _ = self.resolve_with_report(body, variables)
        return rendered

    def resolve_with_report(
        self, body: str, variables: Mapping[str, Any]
    ) -> tuple[str, list[str]]:
        """Render a body and report placeholders left verbatim.

        Returns:
            Tuple of (rendered text, list of unresolved placeholders in
            first-seen order)
        """
        compiled = self._compile(body)
        missing: list[str] = []

        def value(ref_index: int, item: Any = _MISSING, index: Optional[int] = None, last: Optional[bool] = None) -> str:
            ref = compiled.refs[ref_index]
            path = ref.path
            in_loop = item is not _MISSING

            if path == "this":
                resolved = item if in_loop else _MISSING
            elif path.startswith("this."):
                resolved = lookup_path(item, path[5:]) if in_loop else _MISSING
            elif path == "@index":
                resolved = index if in_loop else _MISSING
            elif path == "@last":
                resolved = last if in_loop else _MISSING
            else:
                resolved = _MISSING
                if in_loop and isinstance(item, Mapping):
                    resolved = lookup_path(item, path)
                if resolved is _MISSING:
                    resolved = lookup_path(variables, path)

            if resolved is _MISSING:
                if ref.raw not in missing:
                    missing.append(ref.raw)
                return ref.raw
            return format_value(resolved)

        def items(seq_index: int) -> list[Any]:
            path = compiled.sequences[seq_index]
            sequence = lookup_path(variables, path)
            if isinstance(sequence, (list, tuple)):
                return list(sequence)
            if sequence is not _MISSING:
                logger.debug(f"Each block over '{path}' skipped: value is not a sequence")
            return []

        rendered = compiled.template.render(text=compiled.texts, value=value, items=items)
        return rendered, missing

    def clear_cache(self) -> None:
        with self._lock:
            self._compiled.clear()

    def _compile(self, body: str) -> _CompiledTemplate:
        cached = self._compiled.get(body)
        if cached is not None:
            return cached

        nodes = parse_template(body)
        texts: list[str] = []
        refs: list[_Var] = []
        sequences: list[str] = []
        source: list[str] = []
        self._emit(nodes, source, texts, refs, sequences, in_loop=False)

        compiled = _CompiledTemplate(
            template=self.env.from_string("".join(source)),
            texts=texts,
            refs=refs,
            sequences=sequences,
        )
        with self._lock:
            self._compiled.setdefault(body, compiled)
            return self._compiled[body]

    def _emit(
        self,
        nodes: list[_Node],
        source: list[str],
        texts: list[str],
        refs: list[_Var],
        sequences: list[str],
        in_loop: bool,
    ) -> None:
        for node in nodes:
            if isinstance(node, _Text):
                source.append("{{ text[%d] }}" % len(texts))
                texts.append(node.text)
            elif isinstance(node, _Var):
                if in_loop:
                    source.append("{{ value(%d, item, loop.index0, loop.last) }}" % len(refs))
                else:
                    source.append("{{ value(%d) }}" % len(refs))
                refs.append(node)
            elif isinstance(node, _Each):
                source.append("{%% for item in items(%d) %%}" % len(sequences))
                sequences.append(node.path)
                self._emit(node.children, source, texts, refs, sequences, in_loop=True)
                source.append("{% endfor %}")
            elif isinstance(node, _UnlessLast):
                source.append("{% if not loop.last %}")
                self._emit(node.children, source, texts, refs, sequences, in_loop=True)
                source.append("{% endif %}")


# Global resolver instance
_resolver: Optional[TemplateResolver] = None


def get_template_resolver() -> TemplateResolver:
    """Get the global TemplateResolver instance."""
    global _resolver
    if _resolver is None:
        _resolver = TemplateResolver()
    return _resolver


def resolve(body: str, variables: Mapping[str, Any]) -> str:
    """Resolve a body with the global resolver."""
    return get_template_resolver().resolve(body, variables)
