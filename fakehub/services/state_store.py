"""SSO relay state store, single-use with expiry."""

from __future__ import annotations

import time
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class StateStore(Protocol):
    """Interface for SSO relay-state persistence."""

    async def put_state(self, state: str, payload: Any = None, ttl_seconds: int = 600) -> None: ...

    async def consume_state(self, state: str) -> Any | None: ...


class MemoryStateStore:
    """In-memory dict, one per application instance."""

    def __init__(self) -> None:
        self._states: dict[str, tuple[float, Any]] = {}

    async def put_state(self, state: str, payload: Any = None, ttl_seconds: int = 600) -> None:
        self._prune()
        self._states[state] = (time.time() + ttl_seconds, payload)

    async def consume_state(self, state: str) -> Any | None:
        """Return the payload stored with ``state`` and forget it. None if unknown or expired."""
        entry = self._states.pop(state, None)
        if entry is None:
            return None
        expires_at, payload = entry
        if time.time() >= expires_at:
            return None
        return payload if payload is not None else True

    def _prune(self) -> None:
        now = time.time()
        for key in [k for k, (exp, _) in self._states.items() if exp <= now]:
            del self._states[key]

    def __len__(self) -> int:
        return len(self._states)
