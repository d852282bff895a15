"""Glob-style route matching with specificity ordering.

Pattern syntax:

* ``**`` matches any run of characters, slashes included
* ``*`` matches any run of characters inside one path segment
* ``{name}`` captures one path segment as a parameter

A pattern that contains ``?`` is matched against ``path?query``; any other
pattern only sees the path. When several patterns match, the one with the
fewest wildcard tokens wins and ties go to the earliest registration.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Generic, TypeVar

T = TypeVar("T")

_TOKEN_RE = re.compile(r"\*\*|\*|\{([A-Za-z_][A-Za-z0-9_]*)\}")


@dataclass(frozen=True)
class CompiledPattern:
    source: str
    regex: re.Pattern
    wildcards: int
    params: tuple[str, ...]
    matches_query: bool


def compile_pattern(pattern: str) -> CompiledPattern:
    if not pattern:
        raise ValueError("route pattern must not be empty")

    parts: list[str] = []
    params: list[str] = []
    wildcards = 0
    pos = 0
    for m in _TOKEN_RE.finditer(pattern):
        parts.append(re.escape(pattern[pos:m.start()]))
        token = m.group(0)
        if token == "**":
            parts.append(".*")
            wildcards += 1
        elif token == "*":
            parts.append("[^/]*")
            wildcards += 1
        else:
            name = m.group(1)
            if name in params:
                raise ValueError(f"duplicate parameter {{{name}}} in {pattern!r}")
            params.append(name)
            parts.append(f"(?P<{name}>[^/?]+)")
        pos = m.end()
    parts.append(re.escape(pattern[pos:]))

    return CompiledPattern(
        source=pattern,
        regex=re.compile("^" + "".join(parts) + "$"),
        wildcards=wildcards,
        params=tuple(params),
        matches_query="?" in pattern,
    )


@dataclass
class Route(Generic[T]):
    method: str | None
    pattern: CompiledPattern
    target: T
    order: int


@dataclass
class Match(Generic[T]):
    route: Route[T]
    params: dict[str, str] = field(default_factory=dict)

    @property
    def target(self) -> T:
        return self.route.target


class RouteMatcher(Generic[T]):
    """Ordered table of compiled patterns mapping requests to targets."""

    def __init__(self) -> None:
        self._routes: list[Route[T]] = []
        self._counter = 0

    def add(self, pattern: str, target: T, method: str | None = None) -> Route[T]:
        route = Route(
            method=method.upper() if method else None,
            pattern=compile_pattern(pattern),
            target=target,
            order=self._counter,
        )
        self._counter += 1
        self._routes.append(route)
        return route

    def remove(self, route: Route[T]) -> bool:
        try:
            self._routes.remove(route)
            return True
        except ValueError:
            return False

    def clear(self) -> None:
        self._routes.clear()

    def __len__(self) -> int:
        return len(self._routes)

    def __iter__(self):
        return iter(sorted(self._routes, key=lambda r: r.order))

    def match_all(self, method: str, path: str, query: str = "") -> list[Match[T]]:
        """Every matching route, most specific first."""
        method = method.upper()
        full = f"{path}?{query}" if query else path
        found: list[Match[T]] = []
        for route in self._routes:
            if route.method is not None and route.method != method:
                continue
            subject = full if route.pattern.matches_query else path
            m = route.pattern.regex.match(subject)
            if m:
                found.append(Match(route=route, params=m.groupdict()))
        found.sort(key=lambda fm: (fm.route.pattern.wildcards, fm.route.order))
        return found

    def resolve(self, method: str, path: str, query: str = "") -> Match[T] | None:
        found = self.match_all(method, path, query)
        return found[0] if found else None
