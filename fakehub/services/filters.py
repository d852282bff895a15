"""Query-parameter driven filtering and stable sorting over record dicts.

Filters are plain predicate objects combined by ``FilterSpec`` with logical
AND, so the order in which they are added never changes the result.
Sorting is stable in both directions: records with equal keys keep their
original relative order.
"""

from __future__ import annotations

import operator
import re
import shlex
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Union

from fakehub.errors import ValidationError

_OPS: dict[str, Callable[[Any, Any], bool]] = {
    ">": operator.gt,
    ">=": operator.ge,
    "<": operator.lt,
    "<=": operator.le,
    "=": operator.eq,
}

_COMPARISON_RE = re.compile(r"^(>=|<=|>|<|=)?\s*(-?\d+(?:\.\d+)?)$")
_RANGE_RE = re.compile(r"^(-?\d+(?:\.\d+)?)\.\.(-?\d+(?:\.\d+)?)$")


def _get(item: dict, path: str) -> Any:
    """Dotted lookup, ``author.username`` reads ``item["author"]["username"]``.

    Lists of dicts fan out: ``assignees.username`` yields every assignee's username.
    """
    value: Any = item
    for part in path.split("."):
        if isinstance(value, list):
            value = [v.get(part) for v in value if isinstance(v, dict)]
        elif isinstance(value, dict):
            value = value.get(part)
        else:
            return None
    return value


def _norm(value: Any) -> Any:
    return value.lower() if isinstance(value, str) else value


@dataclass(frozen=True)
class Equals:
    field: str
    value: Any
    case_sensitive: bool = False

    def __call__(self, item: dict) -> bool:
        actual = _get(item, self.field)
        if self.case_sensitive:
            return actual == self.value
        return _norm(actual) == _norm(self.value)


@dataclass(frozen=True)
class AnyOf:
    """Set membership: list fields match on intersection, scalars on membership."""

    field: str
    values: frozenset

    def __call__(self, item: dict) -> bool:
        wanted = {_norm(v) for v in self.values}
        actual = _get(item, self.field)
        if isinstance(actual, (list, tuple, set, frozenset)):
            return any(_norm(v) in wanted for v in actual)
        return _norm(actual) in wanted


@dataclass(frozen=True)
class Compare:
    """Ordering comparison. Numbers compare numerically, ISO timestamps as strings."""

    field: str
    op: str
    value: float | str

    def __call__(self, item: dict) -> bool:
        actual = _get(item, self.field)
        if isinstance(self.value, str):
            if not isinstance(actual, str):
                return False
        elif isinstance(actual, bool) or not isinstance(actual, (int, float)):
            return False
        return _OPS[self.op](actual, self.value)


@dataclass(frozen=True)
class Contains:
    """Case-insensitive substring over one or more text fields."""

    fields: tuple[str, ...]
    text: str

    def __call__(self, item: dict) -> bool:
        needle = self.text.lower()
        for name in self.fields:
            value = _get(item, name)
            if isinstance(value, str) and needle in value.lower():
                return True
        return False


@dataclass(frozen=True)
class Prefix:
    field: str
    prefix: str

    def __call__(self, item: dict) -> bool:
        value = _get(item, self.field)
        return isinstance(value, str) and value.lower().startswith(self.prefix.lower())


Predicate = Union[Equals, AnyOf, Compare, Contains, Prefix]


@dataclass
class FilterSpec:
    predicates: list[Predicate] = field(default_factory=list)

    def add(self, predicate: Predicate | Iterable[Predicate]) -> "FilterSpec":
        if isinstance(predicate, (Equals, AnyOf, Compare, Contains, Prefix)):
            self.predicates.append(predicate)
        else:
            self.predicates.extend(predicate)
        return self

    def matches(self, item: dict) -> bool:
        return all(p(item) for p in self.predicates)

    def apply(self, items: Iterable[dict]) -> list[dict]:
        return [item for item in items if self.matches(item)]

    def __len__(self) -> int:
        return len(self.predicates)


def parse_comparison(field_name: str, expr: str, param: str | None = None) -> list[Compare]:
    """``">500"``, ``">=10"``, ``"<5"``, ``"42"`` or ``"10..50"`` into Compare predicates."""
    text = expr.strip()
    if text.startswith(f"{field_name}:"):
        text = text[len(field_name) + 1:]
    m = _RANGE_RE.match(text)
    if m:
        low, high = float(m.group(1)), float(m.group(2))
        if low > high:
            raise ValidationError.for_field(param or field_name, f"empty range {expr!r}")
        return [Compare(field_name, ">=", low), Compare(field_name, "<=", high)]
    m = _COMPARISON_RE.match(text)
    if not m:
        raise ValidationError.for_field(
            param or field_name, f"expected a comparison like >N, <=N, N or A..B, got {expr!r}"
        )
    return [Compare(field_name, m.group(1) or "=", float(m.group(2)))]


def split_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [v.strip() for v in value.split(",") if v.strip()]


def parse_qualifiers(q: str | None) -> tuple[str, dict[str, list[str]]]:
    """Split ``'crash language:Go label:bug stars:>10'`` into free text and qualifiers.

    Quoted phrases stay together; repeated qualifiers accumulate.
    """
    if not q:
        return "", {}
    try:
        tokens = shlex.split(q)
    except ValueError:
        tokens = q.split()
    words: list[str] = []
    qualifiers: dict[str, list[str]] = {}
    for token in tokens:
        key, sep, value = token.partition(":")
        if sep and key and value and re.fullmatch(r"[a-z_]+", key):
            qualifiers.setdefault(key, []).append(value)
        else:
            words.append(token)
    return " ".join(words), qualifiers


def _split_sortable(items: list[dict], key: Callable[[dict], Any]) -> tuple[list[dict], list[dict]]:
    keyed, missing = [], []
    for item in items:
        (missing if key(item) is None else keyed).append(item)
    return keyed, missing


def sort_items(
    items: Iterable[dict],
    key: str | None,
    order: str = "desc",
    keys: dict[str, str] | None = None,
) -> list[dict]:
    """Stable sort by a named key; records lacking the key always go last.

    ``keys`` maps public sort names (``stars``) to record fields
    (``stargazers_count``). ``key=None`` keeps the input order.
    """
    items = list(items)
    if key is None:
        return items
    keys = keys or {}
    if keys and key not in keys:
        raise ValidationError.for_field("sort", f"must be one of: {', '.join(keys)}")
    if order not in ("asc", "desc"):
        raise ValidationError.for_field("order", "must be 'asc' or 'desc'")

    field_name = keys.get(key, key)

    def sort_key(item: dict) -> Any:
        return _norm(_get(item, field_name))

    keyed, missing = _split_sortable(items, sort_key)
    keyed = sorted(keyed, key=sort_key, reverse=(order == "desc"))
    return keyed + missing
