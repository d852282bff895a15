from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class SavedSearchCreate(BaseModel):
    name: str
    query: str = ""
    filters: dict = {}


class RouteOverrideCreate(BaseModel):
    pattern: str
    action: str = "fulfill"
    method: str | None = None
    status: int = 200
    body: Any = None
    delay_ms: int = 0
    times: int | None = None
