"""Label selectors: requirements on metric labels, and a parser for their text form."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Mapping


class SelectorError(ValueError):
    """Raised when a selector or requirement is malformed."""


class Operator(str, Enum):
    """Operators a label requirement can use."""

    EQUALS = "="
    DOUBLE_EQUALS = "=="
    NOT_EQUALS = "!="
    IN = "in"
    NOT_IN = "notin"
    EXISTS = "exists"
    DOES_NOT_EXIST = "!"
    GREATER_THAN = "gt"
    LESS_THAN = "lt"

    def __str__(self) -> str:
        return self.value


_SINGLE_VALUE = {Operator.EQUALS, Operator.DOUBLE_EQUALS, Operator.NOT_EQUALS}
_SET_VALUE = {Operator.IN, Operator.NOT_IN}
_NO_VALUE = {Operator.EXISTS, Operator.DOES_NOT_EXIST}
_NUMERIC = {Operator.GREATER_THAN, Operator.LESS_THAN}

_RENDERED = {
    Operator.EQUALS: "=",
    Operator.DOUBLE_EQUALS: "==",
    Operator.NOT_EQUALS: "!=",
    Operator.IN: " in ",
    Operator.NOT_IN: " notin ",
    Operator.GREATER_THAN: ">",
    Operator.LESS_THAN: "<",
    Operator.EXISTS: "",
}

_NAME_RE = re.compile(r"([A-Za-z0-9][-A-Za-z0-9_.]*)?[A-Za-z0-9]")
_DNS_LABEL = r"[a-z0-9]([-a-z0-9]*[a-z0-9])?"
_SUBDOMAIN_RE = re.compile(rf"{_DNS_LABEL}(\.{_DNS_LABEL})*")
_INT_RE = re.compile(r"[+-]?[0-9]+")
_MAX_NAME = 63
_MAX_PREFIX = 253
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1


def _validate_key(key: str) -> None:
    prefix, sep, name = key.rpartition("/")
    if sep:
        if not prefix or len(prefix) > _MAX_PREFIX or not _SUBDOMAIN_RE.fullmatch(prefix):
            raise SelectorError(f"invalid label key {key!r}: bad prefix")
    if not name or len(name) > _MAX_NAME or not _NAME_RE.fullmatch(name):
        raise SelectorError(f"invalid label key {key!r}")


def _validate_value(value: str) -> None:
    if value == "":
        return
    if len(value) > _MAX_NAME or not _NAME_RE.fullmatch(value):
        raise SelectorError(f"invalid label value {value!r}")


def _is_int64(text: str) -> bool:
    return bool(_INT_RE.fullmatch(text)) and _INT64_MIN <= int(text) <= _INT64_MAX


@dataclass(frozen=True)
class Requirement:
    """One condition on a label: key, operator and a sorted set of values."""

    key: str
    operator: Operator
    values: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        try:
            operator = Operator(self.operator)
        except ValueError as exc:
            raise SelectorError(f"unknown operator {self.operator!r}") from exc
        if isinstance(self.values, str):
            raise SelectorError("values must be a collection of strings, not a string")
        values = tuple(sorted(set(self.values)))
        object.__setattr__(self, "operator", operator)
        object.__setattr__(self, "values", values)

        _validate_key(self.key)
        if operator in _SET_VALUE and not values:
            raise SelectorError(f"for '{operator}' operator, values set can't be empty")
        if operator in _SINGLE_VALUE and len(values) != 1:
            raise SelectorError(f"exact-match compatibility requires one single value for {self.key!r}")
        if operator in _NO_VALUE and values:
            raise SelectorError(f"values set must be empty for '{operator}' operator")
        if operator in _NUMERIC:
            if len(values) != 1:
                raise SelectorError(f"for '{operator}' operator, exactly one value is required")
            if not _is_int64(values[0]):
                raise SelectorError(
                    f"for '{operator}' operator, the value must be an integer, got {values[0]!r}"
                )
        for value in values:
            _validate_value(value)

    def __str__(self) -> str:
        if self.operator is Operator.DOES_NOT_EXIST:
            return f"!{self.key}"
        rendered = f"{self.key}{_RENDERED[self.operator]}"
        if self.operator in _SET_VALUE:
            return f"{rendered}({','.join(self.values)})"
        return rendered + ",".join(self.values)


@dataclass(frozen=True)
class Selector:
    """A conjunction of label requirements, kept sorted by key."""

    requirements: tuple[Requirement, ...] = ()
    selectable: bool = field(default=True)

    def __post_init__(self) -> None:
        ordered = tuple(sorted(self.requirements, key=lambda req: req.key))
        object.__setattr__(self, "requirements", ordered)

    def add(self, *args: Requirement) -> Selector:
        """Return a new selector with the given requirements added."""
        return Selector(self.requirements + tuple(args), self.selectable)

    def is_empty(self) -> bool:
        """Report whether the selector has no requirements."""
        return not self.requirements

    def __iter__(self):
        return iter(self.requirements)

    def __len__(self) -> int:
        return len(self.requirements)

    def __str__(self) -> str:
        return ",".join(str(req) for req in self.requirements)


def everything() -> Selector:
    """Return a selector with no requirements."""
    return Selector()


def selector_from_set(labels: Mapping[str, str]) -> Selector:
    """Return a selector requiring each label to equal the given value."""
    return Selector(tuple(Requirement(key, Operator.EQUALS, (value,)) for key, value in labels.items()))


_SYMBOLS = ",()<>"
_KEYWORDS = {"in": Operator.IN, "notin": Operator.NOT_IN}
_SYMBOL_OPS = {
    "=": Operator.EQUALS,
    "==": Operator.DOUBLE_EQUALS,
    "!=": Operator.NOT_EQUALS,
    ">": Operator.GREATER_THAN,
    "<": Operator.LESS_THAN,
}
_END = ("end", "")
_COMMA = ("sym", ",")
_OPEN = ("sym", "(")
_CLOSE = ("sym", ")")


def _tokenize(text: str) -> list[tuple[str, str]]:
    tokens: list[tuple[str, str]] = []
    pos = 0
    while pos < len(text):
        ch = text[pos]
        if ch.isspace():
            pos += 1
        elif text.startswith(("==", "!="), pos):
            tokens.append(("sym", text[pos : pos + 2]))
            pos += 2
        elif ch in "=!" or ch in _SYMBOLS:
            tokens.append(("sym", ch))
            pos += 1
        else:
            start = pos
            while pos < len(text) and not text[pos].isspace() and text[pos] not in "=!" + _SYMBOLS:
                pos += 1
            tokens.append(("word", text[start:pos]))
    return tokens


class _Parser:
    def __init__(self, text: str) -> None:
        self._tokens = _tokenize(text)
        self._pos = 0

    def _peek(self) -> tuple[str, str]:
        return self._tokens[self._pos] if self._pos < len(self._tokens) else _END

    def _next(self) -> tuple[str, str]:
        token = self._peek()
        if token != _END:
            self._pos += 1
        return token

    def _word(self, context: str) -> str:
        kind, value = self._next()
        if kind != "word" or value in _KEYWORDS:
            raise SelectorError(f"found {value!r}, expected: {context}")
        return value

    def parse(self) -> list[Requirement]:
        requirements: list[Requirement] = []
        if self._peek() == _END:
            return requirements
        while True:
            requirements.append(self._requirement())
            token = self._next()
            if token == _END:
                return requirements
            if token != _COMMA:
                raise SelectorError(f"found {token[1]!r}, expected: ',' or end of string")

    def _requirement(self) -> Requirement:
        if self._peek() == ("sym", "!"):
            self._next()
            return Requirement(self._word("identifier after '!'"), Operator.DOES_NOT_EXIST)
        key = self._word("identifier")
        token = self._peek()
        if token in (_END, _COMMA):
            return Requirement(key, Operator.EXISTS)
        self._next()
        kind, value = token
        if kind == "word" and value in _KEYWORDS:
            return Requirement(key, _KEYWORDS[value], self._value_set())
        if kind == "sym" and value in _SYMBOL_OPS:
            return Requirement(key, _SYMBOL_OPS[value], (self._exact_value(),))
        raise SelectorError(f"found {value!r}, expected: an operator")

    def _exact_value(self) -> str:
        if self._peek() in (_END, _COMMA):
            return ""
        return self._word("identifier for value")

    def _value_set(self) -> tuple[str, ...]:
        if self._next() != _OPEN:
            raise SelectorError("found unexpected token, expected: '('")
        if self._peek() == _CLOSE:
            self._next()
            return ("",)
        values = [self._word("identifier in value list")]
        while True:
            token = self._next()
            if token == _CLOSE:
                return tuple(values)
            if token != _COMMA:
                raise SelectorError(f"found {token[1]!r}, expected: ',' or ')'")
            values.append(self._word("identifier in value list"))


def parse_selector(text: str) -> Selector:
    """Parse a selector such as "a=b,c in (x,y),!d"."""
    return Selector(tuple(_Parser(text).parse()))