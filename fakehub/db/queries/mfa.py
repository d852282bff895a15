"""Backup codes and WebAuthn credentials."""

from __future__ import annotations

import uuid

import aiosqlite

from fakehub.utils.clock import now_iso


async def replace_backup_codes(db: aiosqlite.Connection, user_id: str, code_hashes: list[str]) -> None:
    now = now_iso()
    await db.execute("DELETE FROM mfa_backup_codes WHERE user_id = ?", (user_id,))
    await db.executemany(
        "INSERT INTO mfa_backup_codes (id, user_id, code_hash, created_at) VALUES (?, ?, ?, ?)",
        [(str(uuid.uuid4()), user_id, h, now) for h in code_hashes],
    )
    await db.commit()


async def list_backup_codes(db: aiosqlite.Connection, user_id: str) -> list[dict]:
    async with db.execute(
        "SELECT * FROM mfa_backup_codes WHERE user_id = ? ORDER BY created_at, id", (user_id,)
    ) as cursor:
        rows = await cursor.fetchall()
        return [dict(r) for r in rows]


async def delete_backup_code(db: aiosqlite.Connection, code_id: str) -> bool:
    cursor = await db.execute("DELETE FROM mfa_backup_codes WHERE id = ?", (code_id,))
    await db.commit()
    return cursor.rowcount > 0


def public_credential(row: dict) -> dict:
    return {
        "id": row["id"],
        "name": row.get("name"),
        "sign_count": row["sign_count"],
        "created_at": row["created_at"],
        "last_used": row.get("last_used"),
    }


async def add_webauthn_credential(
    db: aiosqlite.Connection,
    user_id: str,
    credential_id: str,
    public_key: str,
    name: str | None = None,
    sign_count: int = 0,
) -> None:
    await db.execute(
        """INSERT INTO webauthn_credentials (id, user_id, name, public_key, sign_count, created_at)
           VALUES (?, ?, ?, ?, ?, ?)""",
        (credential_id, user_id, name, public_key, sign_count, now_iso()),
    )
    await db.commit()


async def get_webauthn_credential(db: aiosqlite.Connection, credential_id: str) -> dict | None:
    async with db.execute("SELECT * FROM webauthn_credentials WHERE id = ?", (credential_id,)) as cursor:
        row = await cursor.fetchone()
        return dict(row) if row else None


async def list_webauthn_credentials(db: aiosqlite.Connection, user_id: str) -> list[dict]:
    async with db.execute(
        "SELECT * FROM webauthn_credentials WHERE user_id = ? ORDER BY created_at, id", (user_id,)
    ) as cursor:
        rows = await cursor.fetchall()
        return [dict(r) for r in rows]


async def advance_sign_count(db: aiosqlite.Connection, credential_id: str, sign_count: int) -> bool:
    """Store a newer counter. False when the counter did not move forward."""
    cursor = await db.execute(
        """UPDATE webauthn_credentials SET sign_count = ?, last_used = ?
           WHERE id = ? AND (sign_count < ? OR (sign_count = 0 AND ? = 0))""",
        (sign_count, now_iso(), credential_id, sign_count, sign_count),
    )
    await db.commit()
    return cursor.rowcount > 0


async def delete_webauthn_credential(db: aiosqlite.Connection, user_id: str, credential_id: str) -> bool:
    cursor = await db.execute(
        "DELETE FROM webauthn_credentials WHERE id = ? AND user_id = ?", (credential_id, user_id)
    )
    await db.commit()
    return cursor.rowcount > 0
