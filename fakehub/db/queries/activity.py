from __future__ import annotations

import json
import uuid

import aiosqlite

from fakehub.utils.clock import now_iso

EVENT_TYPES = ("create", "push", "issues", "issue_comment", "pull_request", "pull_request_review")

_SELECT = """
    SELECT e.*, u.username AS actor_username, u.avatar_url AS actor_avatar_url,
           r.name AS repository_name, r.full_name AS repository_full_name,
           r.owner_login AS repository_owner_login
    FROM activity_events e
    LEFT JOIN users u ON u.id = e.actor_id
    JOIN repositories r ON r.id = e.repository_id AND r.deleted_at IS NULL
"""


def public_event(row: dict) -> dict:
    return {
        "id": row["id"],
        "type": row["type"],
        "actor": {
            "id": row.get("actor_id"),
            "username": row.get("actor_username"),
            "avatar_url": row.get("actor_avatar_url"),
        },
        "repository": {
            "id": row["repository_id"],
            "name": row["repository_name"],
            "full_name": row["repository_full_name"],
            "owner": {"login": row["repository_owner_login"]},
        },
        "payload": json.loads(row["payload"]),
        "created_at": row["created_at"],
    }


async def add_event(
    db: aiosqlite.Connection,
    event_type: str,
    actor_id: str | None,
    repo_id: str,
    payload: dict | None = None,
    *,
    created_at: str | None = None,
) -> str:
    event_id = str(uuid.uuid4())
    await db.execute(
        """INSERT INTO activity_events (id, actor_id, repository_id, type, payload, created_at)
           VALUES (?, ?, ?, ?, ?, ?)""",
        (event_id, actor_id, repo_id, event_type, json.dumps(payload or {}), created_at or now_iso()),
    )
    await db.commit()
    return event_id


async def get_event(db: aiosqlite.Connection, event_id: str) -> dict | None:
    async with db.execute(_SELECT + " WHERE e.id = ?", (event_id,)) as cursor:
        row = await cursor.fetchone()
        return dict(row) if row else None


async def list_events(db: aiosqlite.Connection, repo_ids: list[str]) -> list[dict]:
    """Events of the given repositories, newest first."""
    if not repo_ids:
        return []
    marks = ",".join("?" for _ in repo_ids)
    async with db.execute(
        _SELECT + f" WHERE e.repository_id IN ({marks}) ORDER BY e.created_at DESC, e.rowid DESC",
        tuple(repo_ids),
    ) as cursor:
        rows = await cursor.fetchall()
        return [dict(r) for r in rows]
