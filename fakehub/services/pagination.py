"""Slicing for list endpoints: page/per_page and limit/offset addressing."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence

from fakehub.config import settings
from fakehub.errors import ValidationCollector


@dataclass
class Page:
    items: list
    total: int
    page: int
    per_page: int

    @property
    def total_pages(self) -> int:
        return (self.total + self.per_page - 1) // self.per_page

    def to_dict(self, items_key: str = "items") -> dict[str, Any]:
        return {
            items_key: self.items,
            "total": self.total,
            "page": self.page,
            "per_page": self.per_page,
            "total_pages": self.total_pages,
        }


@dataclass
class Window:
    items: list
    total: int
    limit: int
    offset: int

    def to_dict(self, items_key: str = "items") -> dict[str, Any]:
        return {items_key: self.items, "total_count": self.total, "limit": self.limit, "offset": self.offset}


def paginate(items: Sequence, page: int = 1, per_page: int | None = None) -> Page:
    """1-based page slice. A page past the end is empty, not an error."""
    per_page = settings.default_per_page if per_page is None else per_page
    errors = ValidationCollector()
    if page < 1:
        errors.add("page", "must be at least 1")
    if not 1 <= per_page <= settings.max_per_page:
        errors.add("per_page", f"must be between 1 and {settings.max_per_page}")
    errors.raise_if_any()

    start = (page - 1) * per_page
    return Page(items=list(items[start:start + per_page]), total=len(items), page=page, per_page=per_page)


def window(items: Sequence, limit: int | None = None, offset: int = 0) -> Window:
    limit = settings.default_per_page if limit is None else limit
    errors = ValidationCollector()
    if offset < 0:
        errors.add("offset", "must not be negative")
    if not 1 <= limit <= settings.max_per_page:
        errors.add("limit", f"must be between 1 and {settings.max_per_page}")
    errors.raise_if_any()

    return Window(items=list(items[offset:offset + limit]), total=len(items), limit=limit, offset=offset)
