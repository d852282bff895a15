"""Append-only workflow run logs with offset cursors and long-polling.

Writers append under the run's entity lock, so offsets are dense and
monotonic. Readers ask for ``offset >= N``; a reader that resumes from the
``next_offset`` it was given never sees a gap or a duplicate. A reader may
wait for new lines: appends and run completion wake it through a per-run
``asyncio.Condition``.
"""

from __future__ import annotations

import asyncio
import logging

import aiosqlite

from fakehub.config import settings
from fakehub.db.locks import EntityLocks
from fakehub.db.queries import workflows as workflow_queries
from fakehub.errors import ConflictError, ValidationError

logger = logging.getLogger(__name__)


class LogStreams:
    def __init__(self, locks: EntityLocks) -> None:
        self._locks = locks
        self._conditions: dict[str, asyncio.Condition] = {}
        self._readers: dict[str, int] = {}

    async def append(
        self, db: aiosqlite.Connection, run: dict, lines: list[str], job_id: str | None = None
    ) -> dict:
        if not lines:
            raise ValidationError.for_field("lines", "must contain at least one line")
        async with self._locks.hold("run", run["id"]):
            current = await workflow_queries.get_run(db, run["repository_id"], run["id"])
            if current["status"] == "completed":
                raise ConflictError("Run is completed; its log is closed")
            first = await workflow_queries.append_log_lines(db, run["id"], lines, job_id)
        await self.notify(run["id"])
        logger.debug("Appended %d log lines to run %s at offset %d", len(lines), run["id"], first)
        return {"first_offset": first, "next_offset": first + len(lines)}

    async def notify(self, run_id: str) -> None:
        """Wake readers waiting on this run (new lines or completion)."""
        condition = self._conditions.get(run_id)
        if condition is None:
            return
        async with condition:
            condition.notify_all()

    async def read(
        self,
        db: aiosqlite.Connection,
        run: dict,
        offset: int = 0,
        limit: int | None = None,
        wait: float = 0,
    ) -> dict:
        if offset < 0:
            raise ValidationError.for_field("offset", "must not be negative")
        if limit is None:
            limit = settings.max_per_page * 10
        if limit < 1:
            raise ValidationError.for_field("limit", "must be at least 1")
        wait = max(0.0, min(wait, settings.log_wait_max_seconds))

        run_id = run["id"]
        condition = self._conditions.setdefault(run_id, asyncio.Condition())
        self._readers[run_id] = self._readers.get(run_id, 0) + 1
        try:
            async with condition:
                lines, status = await self._snapshot(db, run, offset, limit)
                if not lines and status != "completed" and wait > 0:
                    try:
                        await asyncio.wait_for(condition.wait(), timeout=wait)
                    except asyncio.TimeoutError:
                        pass
                    lines, status = await self._snapshot(db, run, offset, limit)
        finally:
            self._readers[run_id] -= 1
            if not self._readers[run_id]:
                del self._readers[run_id]
                del self._conditions[run_id]

        total = await workflow_queries.count_log_lines(db, run["id"])
        next_offset = lines[-1]["offset"] + 1 if lines else offset
        return {
            "lines": lines,
            "offset": offset,
            "next_offset": next_offset,
            "total": total,
            "complete": status == "completed" and next_offset >= total,
        }

    @staticmethod
    async def _snapshot(db: aiosqlite.Connection, run: dict, offset: int, limit: int) -> tuple[list[dict], str]:
        current = await workflow_queries.get_run(db, run["repository_id"], run["id"])
        lines = await workflow_queries.read_log_lines(db, run["id"], offset, limit)
        return lines, current["status"]

    def __len__(self) -> int:
        return len(self._conditions)
