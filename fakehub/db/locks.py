"""Per-entity locks for read-modify-write sequences on the fixture store."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager


class EntityLocks:
    """One ``asyncio.Lock`` per (kind, id).

    Two coroutines mutating the same issue, session list or run log queue up
    behind each other; different entities never block one another. A lock
    is dropped once its last holder or waiter leaves.
    """

    def __init__(self) -> None:
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._users: dict[tuple[str, str], int] = {}

    @asynccontextmanager
    async def hold(self, kind: str, entity_id: str):
        key = (kind, entity_id)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)
