"""Kubernetes label-selector parsing and matching.

Supports the string form accepted by ``kubectl -l``: equality (``k=v``,
``k==v``, ``k!=v``), set (``k in (a,b)``, ``k notin (a,b)``) and existence
(``k``, ``!k``) requirements joined by commas.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import FrozenSet, List, Mapping, Optional, Tuple

_NAME = r"[A-Za-z0-9](?:[-A-Za-z0-9_.]{0,61}[A-Za-z0-9])?"
_KEY_PATTERN = re.compile(rf"^(?:[a-z0-9](?:[-a-z0-9.]{{0,251}}[a-z0-9])?/)?{_NAME}$")
_VALUE_PATTERN = re.compile(rf"^(?:{_NAME})?$")
_SET_PATTERN = re.compile(r"^(\S+)\s+(in|notin)\s*\((.*)\)$")
_EQUALITY_PATTERN = re.compile(r"^([^=!\s]+)\s*(==|!=|=)\s*(\S*)$")


class SelectorError(ValueError):
    pass


@dataclass(frozen=True)
class Requirement:
    key: str
    operator: str
    values: FrozenSet[str] = frozenset()

    def matches(self, labels: Mapping[str, str]) -> bool:
        present = self.key in labels
        if self.operator == "exists":
            return present
        if self.operator == "!":
            return not present
        if self.operator in ("=", "==", "in"):
            return present and labels[self.key] in self.values
        # != and notin also match objects without the label
        return not present or labels[self.key] not in self.values


def _split_requirements(text: str) -> List[str]:
    parts: List[str] = []
    depth = 0
    current = ""
    for char in text:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth < 0:
                raise SelectorError(f"unbalanced parentheses in selector: {text!r}")
        if char == "," and depth == 0:
            parts.append(current)
            current = ""
            continue
        current += char
    if depth != 0:
        raise SelectorError(f"unbalanced parentheses in selector: {text!r}")
    parts.append(current)
    return [part.strip() for part in parts]


def _check_key(key: str) -> str:
    if not _KEY_PATTERN.match(key):
        raise SelectorError(f"invalid label key: {key!r}")
    return key


def _check_value(value: str) -> str:
    if not _VALUE_PATTERN.match(value):
        raise SelectorError(f"invalid label value: {value!r}")
    return value


def _parse_requirement(text: str) -> Requirement:
    if not text:
        raise SelectorError("empty requirement in selector")
    if text.startswith("!"):
        return Requirement(_check_key(text[1:].strip()), "!")

    match = _SET_PATTERN.match(text)
    if match:
        key, operator, raw_values = match.groups()
        values = [value.strip() for value in raw_values.split(",")]
        if not values or any(not value for value in values):
            raise SelectorError(f"empty value set in requirement: {text!r}")
        return Requirement(_check_key(key), operator, frozenset(_check_value(v) for v in values))

    match = _EQUALITY_PATTERN.match(text)
    if match:
        key, operator, value = match.groups()
        return Requirement(_check_key(key), operator, frozenset([_check_value(value)]))

    return Requirement(_check_key(text), "exists")


@dataclass(frozen=True)
class LabelSelector:
    requirements: Tuple[Requirement, ...] = ()

    @classmethod
    def parse(cls, text: Optional[str]) -> "LabelSelector":
        if text is None or not text.strip():
            return cls()
        return cls(tuple(_parse_requirement(part) for part in _split_requirements(text.strip())))

    @property
    def empty(self) -> bool:
        return not self.requirements

    def matches(self, labels: Optional[Mapping[str, str]]) -> bool:
        labels = labels or {}
        return all(requirement.matches(labels) for requirement in self.requirements)


__all__ = ["LabelSelector", "Requirement", "SelectorError"]
