from __future__ import annotations

import uuid

import aiosqlite

from fakehub.utils.clock import now_iso

_SELECT = """
    SELECT n.*, r.name AS repository_name, r.full_name AS repository_full_name,
           r.owner_login AS repository_owner_login
    FROM notifications n
    JOIN repositories r ON r.id = n.repository_id AND r.deleted_at IS NULL
"""


def public_notification(row: dict) -> dict:
    return {
        "id": row["id"],
        "type": row["type"],
        "title": row["title"],
        "repository": {
            "id": row["repository_id"],
            "name": row["repository_name"],
            "full_name": row["repository_full_name"],
            "owner": {"login": row["repository_owner_login"]},
        },
        "subject": {"title": row["subject_title"], "url": row.get("subject_url"), "type": row["subject_type"]},
        "reason": row["reason"],
        "unread": bool(row["unread"]),
        "updated_at": row["updated_at"],
        "last_read_at": row.get("last_read_at"),
    }


async def add_notification(
    db: aiosqlite.Connection,
    user_id: str,
    repo_id: str,
    notification_type: str,
    title: str,
    subject: dict,
    reason: str,
    *,
    unread: bool = True,
    updated_at: str | None = None,
) -> str:
    notification_id = str(uuid.uuid4())
    now = updated_at or now_iso()
    await db.execute(
        """INSERT INTO notifications
           (id, user_id, repository_id, type, title, subject_title, subject_url, subject_type,
            reason, unread, updated_at, last_read_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (notification_id, user_id, repo_id, notification_type, title, subject["title"],
         subject.get("url"), subject.get("type", notification_type), reason, int(unread), now,
         None if unread else now),
    )
    await db.commit()
    return notification_id


async def get_notification(db: aiosqlite.Connection, user_id: str, notification_id: str) -> dict | None:
    async with db.execute(_SELECT + " WHERE n.id = ? AND n.user_id = ?", (notification_id, user_id)) as cursor:
        row = await cursor.fetchone()
        return dict(row) if row else None


async def list_for_user(db: aiosqlite.Connection, user_id: str) -> list[dict]:
    """Newest first."""
    async with db.execute(
        _SELECT + " WHERE n.user_id = ? ORDER BY n.updated_at DESC, n.rowid DESC", (user_id,)
    ) as cursor:
        rows = await cursor.fetchall()
        return [dict(r) for r in rows]


async def set_unread(db: aiosqlite.Connection, user_id: str, ids: list[str] | None, unread: bool) -> int:
    """Mark the user's notifications (all of them when ``ids`` is None). Returns how many changed."""
    sql = "UPDATE notifications SET unread = ?, last_read_at = CASE WHEN ? THEN last_read_at ELSE ? END"
    sql += " WHERE user_id = ? AND unread != ?"
    params: tuple = (int(unread), int(unread), now_iso(), user_id, int(unread))
    if ids is not None:
        if not ids:
            return 0
        sql += f" AND id IN ({','.join('?' for _ in ids)})"
        params += tuple(ids)
    cursor = await db.execute(sql, params)
    await db.commit()
    return cursor.rowcount


async def delete_notification(db: aiosqlite.Connection, user_id: str, notification_id: str) -> bool:
    cursor = await db.execute(
        "DELETE FROM notifications WHERE id = ? AND user_id = ?", (notification_id, user_id)
    )
    await db.commit()
    return cursor.rowcount > 0


async def delete_read_before(db: aiosqlite.Connection, user_id: str, cutoff: str) -> int:
    cursor = await db.execute(
        "DELETE FROM notifications WHERE user_id = ? AND unread = 0 AND updated_at < ?", (user_id, cutoff)
    )
    await db.commit()
    return cursor.rowcount
