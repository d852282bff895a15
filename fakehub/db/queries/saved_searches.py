from __future__ import annotations

import json
import uuid

import aiosqlite

from fakehub.utils.clock import now_iso


def public_saved_search(row: dict) -> dict:
    return {
        "id": row["id"],
        "name": row["name"],
        "query": row["query"],
        "filters": json.loads(row["filters"]),
        "created_at": row["created_at"],
    }


async def create_saved_search(
    db: aiosqlite.Connection, user_id: str, name: str, query: str, filters: dict
) -> str:
    search_id = str(uuid.uuid4())
    await db.execute(
        "INSERT INTO saved_searches (id, user_id, name, query, filters, created_at) VALUES (?, ?, ?, ?, ?, ?)",
        (search_id, user_id, name, query, json.dumps(filters), now_iso()),
    )
    await db.commit()
    return search_id


async def get_saved_search(db: aiosqlite.Connection, search_id: str) -> dict | None:
    async with db.execute("SELECT * FROM saved_searches WHERE id = ?", (search_id,)) as cursor:
        row = await cursor.fetchone()
        return dict(row) if row else None


async def list_saved_searches(db: aiosqlite.Connection, user_id: str) -> list[dict]:
    async with db.execute(
        "SELECT * FROM saved_searches WHERE user_id = ? ORDER BY created_at, rowid", (user_id,)
    ) as cursor:
        rows = await cursor.fetchall()
        return [dict(r) for r in rows]


async def delete_saved_search(db: aiosqlite.Connection, user_id: str, search_id: str) -> bool:
    cursor = await db.execute("DELETE FROM saved_searches WHERE id = ? AND user_id = ?", (search_id, user_id))
    await db.commit()
    return cursor.rowcount > 0
