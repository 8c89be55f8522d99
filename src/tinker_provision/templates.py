"""Device-specific template rendering.

Templates use ``{{ .key }}`` placeholders (dotted paths reach into nested
variables) and ``{{ if ... }} / {{ else if ... }} / {{ else }} / {{ end }}``
blocks. Conditions are ``eq A B``, ``ne A B``, ``.key`` or ``not .key`` where
operands are ``.paths``, double-quoted strings, integers or ``true``/``false``.
``{{-`` and ``-}}`` trim the adjacent whitespace. Files ending in ``.j2`` are
rendered with Jinja2 instead.

Rendering is pure: the output depends only on the template text and the
profile, and any reference that cannot be resolved is an error.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional, Union
import re

import jinja2

from .errors import TemplateError
from .secrets import SecretResolver, is_reference
from .types import RESERVED_VARIABLES, DeviceProfile

_TAG_RE = re.compile(r"\{\{(-?)(.*?)(-?)\}\}", re.DOTALL)
_PATH_RE = re.compile(r"^\.([A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z_][A-Za-z0-9_]*)*)$")
_COMMENT_RE = re.compile(r"^/\*.*\*/$", re.DOTALL)
_OPERAND_RE = re.compile(r'"(?:[^"\\]|\\.)*"|\S+')
_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "\\": "\\", '"': '"'}


@dataclass
class _Text:
    value: str


@dataclass
class _Var:
    path: tuple[str, ...]
    line: int


@dataclass
class _Operand:
    path: Optional[tuple[str, ...]] = None
    literal: Any = None


@dataclass
class _Condition:
    op: str
    operands: list[_Operand]
    line: int


@dataclass
class _If:
    line: int
    branches: list[tuple[_Condition, list]] = field(default_factory=list)
    otherwise: Optional[list] = None


@dataclass
class _Token:
    kind: str
    value: str
    line: int
    trim_left: bool = False
    trim_right: bool = False


class Tokenizer:
    """Splits template text into text and action tokens."""

    def __init__(self, text: str):
        self.text = text

    def tokens(self) -> list[_Token]:
        tokens: list[_Token] = []
        pos = 0
        for match in _TAG_RE.finditer(self.text):
            if match.start() > pos:
                tokens.append(self._text_token(pos, match.start()))
            tokens.append(
                _Token(
                    "ACTION",
                    match.group(2).strip(),
                    self._line_at(match.start()),
                    trim_left=bool(match.group(1)),
                    trim_right=bool(match.group(3)),
                )
            )
            pos = match.end()
        if pos < len(self.text):
            tokens.append(self._text_token(pos, len(self.text)))
        self._apply_trim(tokens)
        return tokens

    def _text_token(self, start: int, end: int) -> _Token:
        chunk = self.text[start:end]
        opening = chunk.find("{{")
        if opening != -1:
            raise TemplateError("unterminated action", line=self._line_at(start + opening))
        return _Token("TEXT", chunk, self._line_at(start))

    def _line_at(self, pos: int) -> int:
        return self.text.count("\n", 0, pos) + 1

    @staticmethod
    def _apply_trim(tokens: list[_Token]) -> None:
        for index, token in enumerate(tokens):
            if token.kind != "ACTION":
                continue
            if token.trim_left and index > 0 and tokens[index - 1].kind == "TEXT":
                tokens[index - 1].value = tokens[index - 1].value.rstrip()
            if token.trim_right and index + 1 < len(tokens) and tokens[index + 1].kind == "TEXT":
                tokens[index + 1].value = tokens[index + 1].value.lstrip()


class TemplateParser:
    def parse(self, text: str) -> list:
        root: list = []
        stack: list[_If] = []
        body = root
        for token in Tokenizer(text).tokens():
            if token.kind == "TEXT":
                if token.value:
                    body.append(_Text(token.value))
                continue
            action = token.value
            if not action or _COMMENT_RE.match(action):
                continue
            path = _PATH_RE.match(action)
            if path:
                body.append(_Var(tuple(path.group(1).split(".")), token.line))
                continue
            words = action.split(None, 2)
            keyword = words[0]
            if keyword == "if":
                block = _If(line=token.line)
                branch: list = []
                block.branches.append((self._condition(action[2:], token.line), branch))
                body.append(block)
                stack.append(block)
                body = branch
            elif keyword == "else" and len(words) > 1 and words[1] == "if":
                block = self._open_block(stack, "else if", token.line)
                if block.otherwise is not None:
                    raise TemplateError("'else if' after 'else'", line=token.line)
                branch = []
                condition_text = words[2] if len(words) > 2 else ""
                block.branches.append((self._condition(condition_text, token.line), branch))
                body = branch
            elif action == "else":
                block = self._open_block(stack, "else", token.line)
                if block.otherwise is not None:
                    raise TemplateError("duplicate 'else'", line=token.line)
                block.otherwise = []
                body = block.otherwise
            elif action == "end":
                self._open_block(stack, "end", token.line)
                stack.pop()
                body = self._current_body(root, stack)
            else:
                raise TemplateError(f"unknown action '{action}'", line=token.line)
        if stack:
            raise TemplateError("unterminated 'if' block", line=stack[-1].line)
        return root

    @staticmethod
    def _open_block(stack: list[_If], keyword: str, line: int) -> _If:
        if not stack:
            raise TemplateError(f"'{keyword}' without matching 'if'", line=line)
        return stack[-1]

    @staticmethod
    def _current_body(root: list, stack: list[_If]) -> list:
        if not stack:
            return root
        block = stack[-1]
        if block.otherwise is not None:
            return block.otherwise
        return block.branches[-1][1]

    def _condition(self, text: str, line: int) -> _Condition:
        words = _OPERAND_RE.findall(text.strip())
        if not words:
            raise TemplateError("'if' requires a condition", line=line)
        op = words[0]
        if op in ("eq", "ne"):
            if len(words) != 3:
                raise TemplateError(f"'{op}' takes exactly two operands", line=line)
            return _Condition(op, [self._operand(w, line) for w in words[1:]], line)
        if op == "not":
            if len(words) != 2:
                raise TemplateError("'not' takes exactly one operand", line=line)
            return _Condition("not", [self._operand(words[1], line)], line)
        if len(words) == 1:
            return _Condition("truthy", [self._operand(op, line)], line)
        raise TemplateError(f"unsupported condition '{text.strip()}'", line=line)

    @staticmethod
    def _operand(word: str, line: int) -> _Operand:
        path = _PATH_RE.match(word)
        if path:
            return _Operand(path=tuple(path.group(1).split(".")))
        if len(word) >= 2 and word.startswith('"') and word.endswith('"'):
            return _Operand(literal=_unescape(word[1:-1]))
        if word in ("true", "false"):
            return _Operand(literal=word == "true")
        if re.fullmatch(r"-?\d+", word):
            return _Operand(literal=int(word))
        raise TemplateError(f"invalid operand '{word}'", line=line)


class TemplateRenderer:
    """Renders templates against a device profile."""

    def __init__(self, resolver: Optional[SecretResolver] = None):
        self.resolver = resolver or SecretResolver()
        self._parser = TemplateParser()

    def render(
        self,
        template: str,
        profile: DeviceProfile,
        variables: Optional[Mapping[str, Any]] = None,
    ) -> str:
        context = self._context(profile, variables)
        nodes = self._parser.parse(template)
        parts: list[str] = []
        self._emit(nodes, context, parts)
        return "".join(parts)

    def render_file(
        self,
        path: Union[str, Path],
        profile: DeviceProfile,
        variables: Optional[Mapping[str, Any]] = None,
    ) -> str:
        path = Path(path)
        try:
            text = path.read_text()
        except OSError as exc:
            raise TemplateError(f"cannot read template {path}: {exc.strerror or exc}") from None
        if path.suffix == ".j2":
            return self.render_jinja(text, profile, variables)
        try:
            return self.render(text, profile, variables)
        except TemplateError as exc:
            raise TemplateError(f"{path}: {exc}") from None

    def render_jinja(
        self,
        template: str,
        profile: DeviceProfile,
        variables: Optional[Mapping[str, Any]] = None,
    ) -> str:
        try:
            context = self.resolver.resolve(self._context(profile, variables))
        except KeyError as exc:
            raise TemplateError(str(exc.args[0])) from None
        env = jinja2.Environment(
            undefined=jinja2.StrictUndefined,
            autoescape=False,
            keep_trailing_newline=True,
        )
        try:
            return env.from_string(template).render(**context)
        except jinja2.TemplateError as exc:
            raise TemplateError(str(exc), line=getattr(exc, "lineno", None)) from None

    @staticmethod
    def _context(profile: DeviceProfile, variables: Optional[Mapping[str, Any]]) -> dict[str, Any]:
        context = profile.template_context()
        if variables:
            context.update({k: v for k, v in variables.items() if k not in RESERVED_VARIABLES})
        return context

    def _emit(self, nodes: list, context: Mapping[str, Any], parts: list[str]) -> None:
        for node in nodes:
            if isinstance(node, _Text):
                parts.append(node.value)
            elif isinstance(node, _Var):
                parts.append(_format(self._lookup(node.path, context, node.line), node))
            else:
                body = node.otherwise
                for condition, branch in node.branches:
                    if self._evaluate(condition, context):
                        body = branch
                        break
                if body:
                    self._emit(body, context, parts)

    def _evaluate(self, condition: _Condition, context: Mapping[str, Any]) -> bool:
        values = [self._operand_value(operand, context, condition.line) for operand in condition.operands]
        if condition.op == "eq":
            return values[0] == values[1]
        if condition.op == "ne":
            return values[0] != values[1]
        if condition.op == "not":
            return not values[0]
        return bool(values[0])

    def _operand_value(self, operand: _Operand, context: Mapping[str, Any], line: int) -> Any:
        if operand.path is None:
            return operand.literal
        return self._lookup(operand.path, context, line)

    def _lookup(self, path: tuple[str, ...], context: Mapping[str, Any], line: int) -> Any:
        node: Any = context
        for index, part in enumerate(path):
            if is_reference(node):
                node = self._resolve_secret(node, line)
            if not isinstance(node, Mapping) or part not in node:
                dotted = ".".join(path[: index + 1])
                raise TemplateError(f"unresolved variable '.{dotted}'", line=line)
            node = node[part]
        if is_reference(node):
            node = self._resolve_secret(node, line)
        return node

    def _resolve_secret(self, reference: Mapping[str, Any], line: int) -> Any:
        try:
            return self.resolver.resolve({"value": reference})["value"]
        except KeyError as exc:
            raise TemplateError(str(exc.args[0]), line=line) from None


_DEFAULT_RENDERER = TemplateRenderer()


def render(template: str, profile: DeviceProfile, variables: Optional[Mapping[str, Any]] = None) -> str:
    return _DEFAULT_RENDERER.render(template, profile, variables)


def _format(value: Any, node: _Var) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float)):
        return str(value)
    dotted = ".".join(node.path)
    raise TemplateError(f"'.{dotted}' is not a scalar value", line=node.line)


def _unescape(text: str) -> str:
    result: list[str] = []
    chars = iter(text)
    for ch in chars:
        if ch == "\\":
            nxt = next(chars, "")
            result.append(_ESCAPES.get(nxt, nxt))
        else:
            result.append(ch)
    return "".join(result)
