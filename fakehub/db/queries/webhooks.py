from __future__ import annotations

import json
import uuid

import aiosqlite

from fakehub.utils.clock import now_iso

EDITABLE_FIELDS = ("name", "url", "content_type", "secret", "events", "active")


def _decode(row) -> dict:
    hook = dict(row)
    hook["events"] = json.loads(hook["events"])
    hook["active"] = bool(hook["active"])
    return hook


def public_delivery(row: dict) -> dict:
    return {
        "id": row["id"],
        "event": row["event"],
        "payload": json.loads(row["payload"]),
        "signature": row.get("signature"),
        "delivered_at": row["delivered_at"],
    }


async def create_hook(
    db: aiosqlite.Connection,
    repo_id: str,
    name: str,
    url: str,
    content_type: str = "json",
    secret: str | None = None,
    events: list[str] | None = None,
    active: bool = True,
) -> str:
    hook_id = str(uuid.uuid4())
    now = now_iso()
    await db.execute(
        """INSERT INTO webhooks
           (id, repository_id, name, url, content_type, secret, events, active, created_at, updated_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (hook_id, repo_id, name, url, content_type, secret, json.dumps(events or ["push"]),
         int(active), now, now),
    )
    await db.commit()
    return hook_id


async def get_hook(db: aiosqlite.Connection, repo_id: str, hook_id: str) -> dict | None:
    async with db.execute(
        "SELECT * FROM webhooks WHERE id = ? AND repository_id = ?", (hook_id, repo_id)
    ) as cursor:
        row = await cursor.fetchone()
        return _decode(row) if row else None


async def list_hooks(db: aiosqlite.Connection, repo_id: str) -> list[dict]:
    async with db.execute(
        "SELECT * FROM webhooks WHERE repository_id = ? ORDER BY created_at, rowid", (repo_id,)
    ) as cursor:
        rows = await cursor.fetchall()
        return [_decode(r) for r in rows]


async def update_hook(db: aiosqlite.Connection, hook_id: str, fields: dict) -> None:
    updates = {k: v for k, v in fields.items() if k in EDITABLE_FIELDS}
    if "events" in updates:
        updates["events"] = json.dumps(updates["events"])
    if "active" in updates:
        updates["active"] = int(updates["active"])
    if not updates:
        return
    assignments = ", ".join(f"{k} = ?" for k in updates)
    await db.execute(
        f"UPDATE webhooks SET {assignments}, updated_at = ? WHERE id = ?",
        (*updates.values(), now_iso(), hook_id),
    )
    await db.commit()


async def delete_hook(db: aiosqlite.Connection, hook_id: str) -> bool:
    cursor = await db.execute("DELETE FROM webhooks WHERE id = ?", (hook_id,))
    await db.commit()
    return cursor.rowcount > 0


async def add_delivery(
    db: aiosqlite.Connection, hook_id: str, event: str, payload: str, signature: str | None
) -> str:
    delivery_id = str(uuid.uuid4())
    await db.execute(
        """INSERT INTO webhook_deliveries (id, hook_id, event, payload, signature, delivered_at)
           VALUES (?, ?, ?, ?, ?, ?)""",
        (delivery_id, hook_id, event, payload, signature, now_iso()),
    )
    await db.commit()
    return delivery_id


async def get_delivery(db: aiosqlite.Connection, delivery_id: str) -> dict | None:
    async with db.execute("SELECT * FROM webhook_deliveries WHERE id = ?", (delivery_id,)) as cursor:
        row = await cursor.fetchone()
        return dict(row) if row else None


async def list_deliveries(db: aiosqlite.Connection, hook_id: str) -> list[dict]:
    """Newest first."""
    async with db.execute(
        "SELECT * FROM webhook_deliveries WHERE hook_id = ? ORDER BY rowid DESC", (hook_id,)
    ) as cursor:
        rows = await cursor.fetchall()
        return [dict(r) for r in rows]
