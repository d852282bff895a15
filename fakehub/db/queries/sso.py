from __future__ import annotations

import uuid

import aiosqlite

from fakehub.utils.clock import now_iso


async def create_provider(
    db: aiosqlite.Connection,
    slug: str,
    kind: str,
    name: str,
    secret: str,
    email_domain: str | None = None,
    org_id: str | None = None,
) -> str:
    provider_id = str(uuid.uuid4())
    await db.execute(
        """INSERT INTO sso_providers (id, slug, kind, name, secret, email_domain, org_id, created_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
        (provider_id, slug, kind, name, secret, email_domain, org_id, now_iso()),
    )
    await db.commit()
    return provider_id


async def get_provider(db: aiosqlite.Connection, provider_id: str) -> dict | None:
    async with db.execute("SELECT * FROM sso_providers WHERE id = ?", (provider_id,)) as cursor:
        row = await cursor.fetchone()
        return dict(row) if row else None


async def get_provider_by_slug(db: aiosqlite.Connection, slug: str) -> dict | None:
    async with db.execute("SELECT * FROM sso_providers WHERE slug = ?", (slug,)) as cursor:
        row = await cursor.fetchone()
        return dict(row) if row else None


async def get_provider_for_domain(db: aiosqlite.Connection, domain: str, kind: str | None = None) -> dict | None:
    sql = "SELECT * FROM sso_providers WHERE email_domain = ?"
    params: tuple = (domain,)
    if kind:
        sql += " AND kind = ?"
        params += (kind,)
    async with db.execute(sql + " ORDER BY created_at LIMIT 1", params) as cursor:
        row = await cursor.fetchone()
        return dict(row) if row else None


async def get_identity(db: aiosqlite.Connection, provider_id: str, subject: str) -> dict | None:
    async with db.execute(
        "SELECT * FROM sso_identities WHERE provider_id = ? AND subject = ?", (provider_id, subject)
    ) as cursor:
        row = await cursor.fetchone()
        return dict(row) if row else None


async def link_identity(db: aiosqlite.Connection, provider_id: str, subject: str, user_id: str) -> None:
    await db.execute(
        """INSERT OR IGNORE INTO sso_identities (provider_id, subject, user_id, created_at)
           VALUES (?, ?, ?, ?)""",
        (provider_id, subject, user_id, now_iso()),
    )
    await db.commit()
