"""Sessions, pending logins and trusted devices."""

from __future__ import annotations

import uuid

import aiosqlite

from fakehub.utils.clock import now_iso


def public_session(row: dict, current_id: str | None) -> dict:
    return {
        "id": row["id"],
        "user_agent": row.get("user_agent"),
        "ip": row.get("ip"),
        "location": row.get("location"),
        "created_at": row["created_at"],
        "last_active": row["last_active"],
        "expires_at": row["expires_at"],
        "current": row["id"] == current_id,
    }


async def create_session(
    db: aiosqlite.Connection,
    user_id: str,
    token_hash: str,
    expires_at: str,
    user_agent: str | None = None,
    ip: str | None = None,
    location: str | None = None,
    *,
    session_id: str | None = None,
    created_at: str | None = None,
) -> str:
    session_id = session_id or str(uuid.uuid4())
    now = created_at or now_iso()
    await db.execute(
        """INSERT INTO sessions
           (id, token_hash, user_id, user_agent, ip, location, created_at, last_active, expires_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (session_id, token_hash, user_id, user_agent, ip, location, now, now, expires_at),
    )
    await db.commit()
    return session_id


async def get_live_session_by_token_hash(db: aiosqlite.Connection, token_hash: str) -> dict | None:
    async with db.execute(
        """SELECT * FROM sessions
           WHERE token_hash = ? AND revoked_at IS NULL AND expires_at > ?""",
        (token_hash, now_iso()),
    ) as cursor:
        row = await cursor.fetchone()
        return dict(row) if row else None


async def get_session(db: aiosqlite.Connection, session_id: str) -> dict | None:
    async with db.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)) as cursor:
        row = await cursor.fetchone()
        return dict(row) if row else None


async def touch_session(db: aiosqlite.Connection, session_id: str, expires_at: str) -> None:
    """Record activity and slide the expiry forward."""
    await db.execute(
        "UPDATE sessions SET last_active = ?, expires_at = ? WHERE id = ?",
        (now_iso(), expires_at, session_id),
    )
    await db.commit()


async def list_active_sessions(db: aiosqlite.Connection, user_id: str) -> list[dict]:
    async with db.execute(
        """SELECT * FROM sessions
           WHERE user_id = ? AND revoked_at IS NULL AND expires_at > ?
           ORDER BY created_at, id""",
        (user_id, now_iso()),
    ) as cursor:
        rows = await cursor.fetchall()
        return [dict(r) for r in rows]


async def revoke_session(db: aiosqlite.Connection, session_id: str) -> bool:
    cursor = await db.execute(
        "UPDATE sessions SET revoked_at = ? WHERE id = ? AND revoked_at IS NULL",
        (now_iso(), session_id),
    )
    await db.commit()
    return cursor.rowcount > 0


async def revoke_other_sessions(db: aiosqlite.Connection, user_id: str, keep_id: str | None) -> int:
    cursor = await db.execute(
        """UPDATE sessions SET revoked_at = ?
           WHERE user_id = ? AND id != ? AND revoked_at IS NULL""",
        (now_iso(), user_id, keep_id or ""),
    )
    await db.commit()
    return cursor.rowcount


async def cleanup_expired_sessions(db: aiosqlite.Connection) -> int:
    """Delete expired sessions and pending logins. Returns count deleted."""
    now = now_iso()
    result = await db.execute("DELETE FROM sessions WHERE expires_at <= ?", (now,))
    pending = await db.execute("DELETE FROM pending_logins WHERE expires_at <= ?", (now,))
    await db.commit()
    return result.rowcount + pending.rowcount


# ── Pending logins ──

async def create_pending_login(
    db: aiosqlite.Connection,
    token_hash: str,
    user_id: str,
    kind: str,
    attempts: int,
    expires_at: str,
    *,
    challenge: str | None = None,
    trust_device: bool = False,
    device_fingerprint_hash: str | None = None,
    device_name: str | None = None,
    user_agent: str | None = None,
    ip: str | None = None,
) -> None:
    await db.execute(
        """INSERT INTO pending_logins
           (token_hash, user_id, kind, challenge, trust_device, device_fingerprint_hash,
            device_name, user_agent, ip, attempts_left, expires_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (token_hash, user_id, kind, challenge, int(trust_device), device_fingerprint_hash,
         device_name, user_agent, ip, attempts, expires_at),
    )
    await db.commit()


async def get_pending_login(db: aiosqlite.Connection, token_hash: str) -> dict | None:
    async with db.execute("SELECT * FROM pending_logins WHERE token_hash = ?", (token_hash,)) as cursor:
        row = await cursor.fetchone()
        return dict(row) if row else None


async def spend_pending_attempt(db: aiosqlite.Connection, token_hash: str) -> int:
    """Burn one attempt; the pending login is dropped when none remain."""
    await db.execute(
        "UPDATE pending_logins SET attempts_left = attempts_left - 1 WHERE token_hash = ?",
        (token_hash,),
    )
    await db.execute("DELETE FROM pending_logins WHERE token_hash = ? AND attempts_left <= 0", (token_hash,))
    await db.commit()
    pending = await get_pending_login(db, token_hash)
    return pending["attempts_left"] if pending else 0


async def delete_pending_login(db: aiosqlite.Connection, token_hash: str) -> bool:
    cursor = await db.execute("DELETE FROM pending_logins WHERE token_hash = ?", (token_hash,))
    await db.commit()
    return cursor.rowcount > 0


# ── Trusted devices ──

def public_device(row: dict) -> dict:
    return {
        "id": row["id"],
        "name": row.get("name"),
        "created_at": row["created_at"],
        "last_used": row["last_used"],
        "expires_at": row["expires_at"],
    }


async def add_trusted_device(
    db: aiosqlite.Connection,
    user_id: str,
    fingerprint_hash: str,
    name: str | None,
    expires_at: str,
) -> str:
    """Trust a fingerprint, refreshing the existing record if already trusted."""
    now = now_iso()
    existing = await find_trusted_device(db, user_id, fingerprint_hash)
    if existing:
        await db.execute(
            "UPDATE trusted_devices SET name = COALESCE(?, name), last_used = ?, expires_at = ? WHERE id = ?",
            (name, now, expires_at, existing["id"]),
        )
        await db.commit()
        return existing["id"]

    # An expired, unrevoked record still holds the unique slot
    await db.execute(
        """UPDATE trusted_devices SET revoked_at = ?
           WHERE user_id = ? AND fingerprint_hash = ? AND revoked_at IS NULL""",
        (now, user_id, fingerprint_hash),
    )
    device_id = str(uuid.uuid4())
    await db.execute(
        """INSERT INTO trusted_devices
           (id, user_id, fingerprint_hash, name, created_at, last_used, expires_at)
           VALUES (?, ?, ?, ?, ?, ?, ?)""",
        (device_id, user_id, fingerprint_hash, name, now, now, expires_at),
    )
    await db.commit()
    return device_id


async def find_trusted_device(db: aiosqlite.Connection, user_id: str, fingerprint_hash: str) -> dict | None:
    async with db.execute(
        """SELECT * FROM trusted_devices
           WHERE user_id = ? AND fingerprint_hash = ? AND revoked_at IS NULL AND expires_at > ?""",
        (user_id, fingerprint_hash, now_iso()),
    ) as cursor:
        row = await cursor.fetchone()
        return dict(row) if row else None


async def touch_trusted_device(db: aiosqlite.Connection, device_id: str) -> None:
    await db.execute("UPDATE trusted_devices SET last_used = ? WHERE id = ?", (now_iso(), device_id))
    await db.commit()


async def list_trusted_devices(db: aiosqlite.Connection, user_id: str) -> list[dict]:
    async with db.execute(
        """SELECT * FROM trusted_devices
           WHERE user_id = ? AND revoked_at IS NULL AND expires_at > ?
           ORDER BY created_at, id""",
        (user_id, now_iso()),
    ) as cursor:
        rows = await cursor.fetchall()
        return [dict(r) for r in rows]


async def revoke_trusted_device(db: aiosqlite.Connection, user_id: str, device_id: str) -> bool:
    cursor = await db.execute(
        "UPDATE trusted_devices SET revoked_at = ? WHERE id = ? AND user_id = ? AND revoked_at IS NULL",
        (now_iso(), device_id, user_id),
    )
    await db.commit()
    return cursor.rowcount > 0
