from __future__ import annotations

import json
import uuid

import aiosqlite

from fakehub.utils.clock import now_iso


def _decode(row) -> dict:
    entry = dict(row)
    entry["details"] = json.loads(entry["details"])
    return entry


def public_entry(entry: dict) -> dict:
    return {
        "id": entry["id"],
        "event": entry["event"],
        "actor": {"id": entry.get("actor_id"), "username": entry.get("actor")},
        "target": entry.get("target"),
        "details": entry["details"],
        "timestamp": entry["timestamp"],
    }


async def add_entry(
    db: aiosqlite.Connection,
    event: str,
    actor_id: str | None,
    actor: str | None,
    target: str | None = None,
    details: dict | None = None,
    *,
    org_id: str | None = None,
    user_id: str | None = None,
    timestamp: str | None = None,
) -> str:
    entry_id = str(uuid.uuid4())
    await db.execute(
        """INSERT INTO audit_logs (id, org_id, user_id, event, actor_id, actor, target, details, timestamp)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (entry_id, org_id, user_id, event, actor_id, actor, target,
         json.dumps(details or {}), timestamp or now_iso()),
    )
    await db.commit()
    return entry_id


async def list_for_org(db: aiosqlite.Connection, org_id: str) -> list[dict]:
    """Newest first."""
    async with db.execute(
        "SELECT * FROM audit_logs WHERE org_id = ? ORDER BY timestamp DESC, rowid DESC", (org_id,)
    ) as cursor:
        rows = await cursor.fetchall()
        return [_decode(r) for r in rows]


async def list_for_user(db: aiosqlite.Connection, user_id: str) -> list[dict]:
    async with db.execute(
        "SELECT * FROM audit_logs WHERE user_id = ? ORDER BY timestamp DESC, rowid DESC", (user_id,)
    ) as cursor:
        rows = await cursor.fetchall()
        return [_decode(r) for r in rows]
