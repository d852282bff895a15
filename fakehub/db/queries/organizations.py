from __future__ import annotations

import json
import uuid

import aiosqlite

from fakehub.utils.clock import now_iso

_SELECT = """
    SELECT o.*,
           (SELECT COUNT(*) FROM org_members m WHERE m.org_id = o.id) AS member_count,
           (SELECT COUNT(*) FROM repositories r
             WHERE r.owner_id = o.id AND r.deleted_at IS NULL) AS repository_count
    FROM organizations o
"""

PROFILE_FIELDS = ("name", "description", "website", "location")
SETTINGS_FIELDS = ("visibility", "member_visibility", "allow_member_repositories", "require_two_factor")


def public_org(row: dict) -> dict:
    return {
        "id": row["id"],
        "name": row["name"],
        "slug": row["slug"],
        "description": row.get("description"),
        "website": row.get("website"),
        "location": row.get("location"),
        "memberCount": row["member_count"],
        "repositoryCount": row["repository_count"],
        "settings": public_settings(row),
        "created_at": row["created_at"],
    }


def public_settings(row: dict) -> dict:
    return {
        "visibility": row["visibility"],
        "memberVisibility": row["member_visibility"],
        "allowMemberRepositories": bool(row["allow_member_repositories"]),
        "requireTwoFactor": bool(row["require_two_factor"]),
    }


async def create_org(
    db: aiosqlite.Connection,
    name: str,
    slug: str,
    owner_id: str | None,
    description: str | None = None,
    website: str | None = None,
    location: str | None = None,
    *,
    org_id: str | None = None,
    visibility: str = "public",
    created_at: str | None = None,
) -> str:
    """Create an organization; ``owner_id`` becomes its first owner."""
    org_id = org_id or str(uuid.uuid4())
    now = created_at or now_iso()
    await db.execute(
        """INSERT INTO organizations
           (id, name, slug, description, website, location, visibility, created_at, updated_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (org_id, name, slug, description, website, location, visibility, now, now),
    )
    if owner_id:
        await db.execute(
            "INSERT INTO org_members (org_id, user_id, role, joined_at) VALUES (?, ?, 'owner', ?)",
            (org_id, owner_id, now),
        )
    await db.commit()
    return org_id


async def get_org(db: aiosqlite.Connection, org_id: str) -> dict | None:
    async with db.execute(_SELECT + " WHERE o.id = ?", (org_id,)) as cursor:
        row = await cursor.fetchone()
        return dict(row) if row else None


async def get_org_by_slug(db: aiosqlite.Connection, slug: str) -> dict | None:
    async with db.execute(_SELECT + " WHERE o.slug = ?", (slug,)) as cursor:
        row = await cursor.fetchone()
        return dict(row) if row else None


async def list_orgs(db: aiosqlite.Connection) -> list[dict]:
    async with db.execute(_SELECT + " ORDER BY o.name, o.slug") as cursor:
        rows = await cursor.fetchall()
        return [dict(r) for r in rows]


async def list_org_ids_for_user(db: aiosqlite.Connection, user_id: str) -> set[str]:
    async with db.execute("SELECT org_id FROM org_members WHERE user_id = ?", (user_id,)) as cursor:
        rows = await cursor.fetchall()
        return {r[0] for r in rows}


async def update_org(db: aiosqlite.Connection, org_id: str, fields: dict) -> None:
    """Profile and settings columns in one statement."""
    allowed = PROFILE_FIELDS + SETTINGS_FIELDS
    updates = {k: v for k, v in fields.items() if k in allowed}
    for key in ("allow_member_repositories", "require_two_factor"):
        if key in updates:
            updates[key] = int(updates[key])
    if not updates:
        return
    assignments = ", ".join(f"{k} = ?" for k in updates)
    await db.execute(
        f"UPDATE organizations SET {assignments}, updated_at = ? WHERE id = ?",
        (*updates.values(), now_iso(), org_id),
    )
    await db.commit()


# ── Members ──

def public_member(row: dict) -> dict:
    return {
        "id": row["user_id"],
        "username": row["username"],
        "name": row.get("name"),
        "email": row.get("email"),
        "avatar_url": row.get("avatar_url"),
        "role": row["role"],
        "mfa_enabled": bool(row.get("mfa_enabled")),
        "joined_at": row["joined_at"],
    }


async def list_members(db: aiosqlite.Connection, org_id: str) -> list[dict]:
    async with db.execute(
        """SELECT m.*, u.username, u.name, u.email, u.avatar_url, u.mfa_enabled
           FROM org_members m JOIN users u ON u.id = m.user_id
           WHERE m.org_id = ? ORDER BY m.joined_at, u.username""",
        (org_id,),
    ) as cursor:
        rows = await cursor.fetchall()
        return [dict(r) for r in rows]


async def get_member(db: aiosqlite.Connection, org_id: str, user_id: str) -> dict | None:
    async with db.execute(
        """SELECT m.*, u.username, u.name, u.email, u.avatar_url, u.mfa_enabled
           FROM org_members m JOIN users u ON u.id = m.user_id
           WHERE m.org_id = ? AND m.user_id = ?""",
        (org_id, user_id),
    ) as cursor:
        row = await cursor.fetchone()
        return dict(row) if row else None


async def add_member(
    db: aiosqlite.Connection, org_id: str, user_id: str, role: str = "member", joined_at: str | None = None
) -> None:
    await db.execute(
        """INSERT INTO org_members (org_id, user_id, role, joined_at) VALUES (?, ?, ?, ?)
           ON CONFLICT(org_id, user_id) DO UPDATE SET role=excluded.role""",
        (org_id, user_id, role, joined_at or now_iso()),
    )
    await db.commit()


async def set_member_role(db: aiosqlite.Connection, org_id: str, user_id: str, role: str) -> None:
    await db.execute(
        "UPDATE org_members SET role = ? WHERE org_id = ? AND user_id = ?", (role, org_id, user_id)
    )
    await db.commit()


async def remove_member(db: aiosqlite.Connection, org_id: str, user_id: str) -> bool:
    """Drop the membership and every team membership inside the organization."""
    await db.execute(
        """DELETE FROM team_members
           WHERE user_id = ? AND team_id IN (SELECT id FROM teams WHERE org_id = ?)""",
        (user_id, org_id),
    )
    cursor = await db.execute("DELETE FROM org_members WHERE org_id = ? AND user_id = ?", (org_id, user_id))
    await db.commit()
    return cursor.rowcount > 0


async def count_owners(db: aiosqlite.Connection, org_id: str) -> int:
    async with db.execute(
        "SELECT COUNT(*) FROM org_members WHERE org_id = ? AND role = 'owner'", (org_id,)
    ) as cursor:
        row = await cursor.fetchone()
        return row[0]


# ── Invitations ──

def public_invitation(row: dict) -> dict:
    return {
        "id": row["id"],
        "email": row["email"],
        "role": row["role"],
        "teams": json.loads(row["teams"]),
        "created_at": row["created_at"],
        "accepted_at": row.get("accepted_at"),
    }


async def create_invitation(
    db: aiosqlite.Connection, org_id: str, email: str, role: str, teams: list[str], invited_by: str
) -> str:
    invitation_id = str(uuid.uuid4())
    await db.execute(
        """INSERT INTO org_invitations (id, org_id, email, role, teams, invited_by, created_at)
           VALUES (?, ?, ?, ?, ?, ?, ?)""",
        (invitation_id, org_id, email, role, json.dumps(teams), invited_by, now_iso()),
    )
    await db.commit()
    return invitation_id


async def get_invitation(db: aiosqlite.Connection, invitation_id: str) -> dict | None:
    async with db.execute("SELECT * FROM org_invitations WHERE id = ?", (invitation_id,)) as cursor:
        row = await cursor.fetchone()
        return dict(row) if row else None


async def list_pending_invitations(db: aiosqlite.Connection, org_id: str) -> list[dict]:
    async with db.execute(
        "SELECT * FROM org_invitations WHERE org_id = ? AND accepted_at IS NULL ORDER BY created_at, id",
        (org_id,),
    ) as cursor:
        rows = await cursor.fetchall()
        return [dict(r) for r in rows]


async def mark_invitation_accepted(db: aiosqlite.Connection, invitation_id: str) -> bool:
    cursor = await db.execute(
        "UPDATE org_invitations SET accepted_at = ? WHERE id = ? AND accepted_at IS NULL",
        (now_iso(), invitation_id),
    )
    await db.commit()
    return cursor.rowcount > 0
