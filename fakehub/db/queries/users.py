from __future__ import annotations

import uuid

import aiosqlite

from fakehub.utils.clock import now_iso

PROFILE_FIELDS = ("name", "email", "bio", "website", "location", "company", "avatar_url", "preferred_mfa")


def public_user(row: dict) -> dict:
    return {
        "id": row["id"],
        "name": row.get("name"),
        "username": row["username"],
        "email": row["email"],
        "bio": row.get("bio"),
        "website": row.get("website"),
        "location": row.get("location"),
        "company": row.get("company"),
        "avatar_url": row.get("avatar_url"),
        "mfa_enabled": bool(row.get("mfa_enabled")),
        "created_at": row["created_at"],
    }


def user_ref(row: dict) -> dict:
    return {"id": row["id"], "username": row["username"], "avatar_url": row.get("avatar_url")}


async def get_user(db: aiosqlite.Connection, user_id: str) -> dict | None:
    async with db.execute("SELECT * FROM users WHERE id = ?", (user_id,)) as cursor:
        row = await cursor.fetchone()
        return dict(row) if row else None


async def get_user_by_username(db: aiosqlite.Connection, username: str) -> dict | None:
    async with db.execute("SELECT * FROM users WHERE username = ?", (username,)) as cursor:
        row = await cursor.fetchone()
        return dict(row) if row else None


async def get_user_by_email(db: aiosqlite.Connection, email: str) -> dict | None:
    async with db.execute("SELECT * FROM users WHERE email = ?", (email,)) as cursor:
        row = await cursor.fetchone()
        return dict(row) if row else None


async def get_user_by_login(db: aiosqlite.Connection, login: str) -> dict | None:
    """Look a user up by email or username, whichever ``login`` is."""
    if "@" in login:
        return await get_user_by_email(db, login)
    return await get_user_by_username(db, login)


async def find_user(db: aiosqlite.Connection, id_or_username: str) -> dict | None:
    return await get_user(db, id_or_username) or await get_user_by_username(db, id_or_username)


async def get_users_by_ids(db: aiosqlite.Connection, user_ids: list[str]) -> dict[str, dict]:
    if not user_ids:
        return {}
    marks = ",".join("?" for _ in user_ids)
    async with db.execute(f"SELECT * FROM users WHERE id IN ({marks})", tuple(user_ids)) as cursor:
        rows = await cursor.fetchall()
        return {r["id"]: dict(r) for r in rows}


async def list_users(db: aiosqlite.Connection) -> list[dict]:
    async with db.execute("SELECT * FROM users ORDER BY created_at, username") as cursor:
        rows = await cursor.fetchall()
        return [dict(r) for r in rows]


async def create_user(
    db: aiosqlite.Connection,
    username: str,
    email: str,
    password_hash: str | None,
    name: str | None = None,
    *,
    user_id: str | None = None,
    bio: str | None = None,
    website: str | None = None,
    location: str | None = None,
    company: str | None = None,
    avatar_url: str | None = None,
    is_admin: bool = False,
    created_at: str | None = None,
) -> str:
    user_id = user_id or str(uuid.uuid4())
    now = created_at or now_iso()
    await db.execute(
        """INSERT INTO users
           (id, username, email, name, bio, website, location, company, avatar_url,
            password_hash, is_admin, created_at, updated_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (user_id, username, email, name, bio, website, location, company, avatar_url,
         password_hash, int(is_admin), now, now),
    )
    await db.commit()
    return user_id


async def update_profile(db: aiosqlite.Connection, user_id: str, fields: dict) -> None:
    """Apply every profile field in one statement."""
    updates = {k: v for k, v in fields.items() if k in PROFILE_FIELDS}
    if not updates:
        return
    assignments = ", ".join(f"{k} = ?" for k in updates)
    await db.execute(
        f"UPDATE users SET {assignments}, updated_at = ? WHERE id = ?",
        (*updates.values(), now_iso(), user_id),
    )
    await db.commit()


async def set_password_hash(db: aiosqlite.Connection, user_id: str, password_hash: str) -> None:
    await db.execute(
        "UPDATE users SET password_hash = ?, updated_at = ? WHERE id = ?",
        (password_hash, now_iso(), user_id),
    )
    await db.commit()


async def set_pending_mfa_secret(db: aiosqlite.Connection, user_id: str, secret_encrypted: str | None) -> None:
    await db.execute(
        "UPDATE users SET mfa_pending_secret_encrypted = ?, updated_at = ? WHERE id = ?",
        (secret_encrypted, now_iso(), user_id),
    )
    await db.commit()


async def enable_mfa(db: aiosqlite.Connection, user_id: str, secret_encrypted: str) -> None:
    await db.execute(
        """UPDATE users SET mfa_enabled = 1, mfa_secret_encrypted = ?,
           mfa_pending_secret_encrypted = NULL, updated_at = ? WHERE id = ?""",
        (secret_encrypted, now_iso(), user_id),
    )
    await db.commit()


async def disable_mfa(db: aiosqlite.Connection, user_id: str) -> None:
    await db.execute(
        """UPDATE users SET mfa_enabled = 0, mfa_secret_encrypted = NULL,
           mfa_pending_secret_encrypted = NULL, updated_at = ? WHERE id = ?""",
        (now_iso(), user_id),
    )
    await db.execute("DELETE FROM mfa_backup_codes WHERE user_id = ?", (user_id,))
    await db.commit()
