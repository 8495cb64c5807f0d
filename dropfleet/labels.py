"""Workload label expressions.

Templates carry a plain set of label atoms (``"linux docker"``), while
workloads ask for capacity with an expression over atoms:

    linux && !arm
    (docker || podman) && x86

Precedence from loosest to tightest: ``||``, ``&&``, ``!``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Protocol

_TOKEN_RE = re.compile(r"\s*(\|\||&&|!|\(|\)|[^\s&|!()]+)")


class _Node(Protocol):
    def matches(self, labels: frozenset[str]) -> bool: ...


@dataclass(frozen=True, slots=True)
class _Atom:
    name: str

    def matches(self, labels: frozenset[str]) -> bool:
        return self.name in labels


@dataclass(frozen=True, slots=True)
class _Not:
    operand: _Node

    def matches(self, labels: frozenset[str]) -> bool:
        return not self.operand.matches(labels)


@dataclass(frozen=True, slots=True)
class _And:
    left: _Node
    right: _Node

    def matches(self, labels: frozenset[str]) -> bool:
        return self.left.matches(labels) and self.right.matches(labels)


@dataclass(frozen=True, slots=True)
class _Or:
    left: _Node
    right: _Node

    def matches(self, labels: frozenset[str]) -> bool:
        return self.left.matches(labels) or self.right.matches(labels)


def _tokenize(text: str) -> list[str]:
    tokens: list[str] = []
    pos = 0
    text = text.rstrip()
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if match is None:
            raise ValueError(f"Invalid label expression at {pos}: {text!r}")
        tokens.append(match.group(1))
        pos = match.end()
    return tokens


class _Parser:
    __slots__ = ("_tokens", "_pos", "_text")

    def __init__(self, text: str) -> None:
        self._text = text
        self._tokens = _tokenize(text)
        self._pos = 0

    def parse(self) -> _Node:
        if not self._tokens:
            raise ValueError("Empty label expression")
        node = self._or()
        if self._pos != len(self._tokens):
            raise ValueError(
                f"Unexpected {self._tokens[self._pos]!r} in label expression {self._text!r}"
            )
        return node

    def _peek(self) -> str | None:
        return self._tokens[self._pos] if self._pos < len(self._tokens) else None

    def _take(self) -> str:
        token = self._peek()
        if token is None:
            raise ValueError(f"Unexpected end of label expression {self._text!r}")
        self._pos += 1
        return token

    def _or(self) -> _Node:
        node = self._and()
        while self._peek() == "||":
            self._take()
            node = _Or(node, self._and())
        return node

    def _and(self) -> _Node:
        node = self._not()
        while self._peek() == "&&":
            self._take()
            node = _And(node, self._not())
        return node

    def _not(self) -> _Node:
        if self._peek() == "!":
            self._take()
            return _Not(self._not())
        return self._primary()

    def _primary(self) -> _Node:
        token = self._take()
        if token == "(":
            node = self._or()
            if self._take() != ")":
                raise ValueError(f"Unbalanced parentheses in {self._text!r}")
            return node
        if token in ("||", "&&", ")"):
            raise ValueError(f"Unexpected {token!r} in label expression {self._text!r}")
        return _Atom(token)


@dataclass(frozen=True, slots=True)
class LabelExpression:
    """A parsed workload label.

    Attributes:
        name: The expression text as written.
        is_offline: Whether the host reports every node for this label offline.
    """

    name: str
    _node: _Node
    is_offline: bool = False

    @classmethod
    def parse(cls, text: str, *, is_offline: bool = False) -> LabelExpression:
        return cls(name=text.strip(), _node=_Parser(text).parse(), is_offline=is_offline)

    def matches(self, labels: frozenset[str]) -> bool:
        return self._node.matches(labels)

    def __str__(self) -> str:
        return self.name


def parse_label_set(text: str | None) -> frozenset[str]:
    """Split a whitespace-separated label string into atoms."""
    return frozenset((text or "").split())
