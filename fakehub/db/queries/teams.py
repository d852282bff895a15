from __future__ import annotations

import uuid

import aiosqlite

from fakehub.utils.clock import now_iso

_SELECT = """
    SELECT t.*,
           p.slug AS parent_slug, p.name AS parent_name,
           (SELECT COUNT(*) FROM team_members tm WHERE tm.team_id = t.id) AS member_count,
           (SELECT COUNT(*) FROM team_repositories tr WHERE tr.team_id = t.id) AS repository_count
    FROM teams t
    LEFT JOIN teams p ON p.id = t.parent_id
"""

EDITABLE_FIELDS = ("name", "slug", "description", "privacy", "parent_id")


def public_team(row: dict) -> dict:
    parent = None
    if row.get("parent_id"):
        parent = {"id": row["parent_id"], "slug": row["parent_slug"], "name": row["parent_name"]}
    return {
        "id": row["id"],
        "name": row["name"],
        "slug": row["slug"],
        "description": row.get("description"),
        "privacy": row["privacy"],
        "parent": parent,
        "memberCount": row["member_count"],
        "repositoryCount": row["repository_count"],
        "created_at": row["created_at"],
    }


async def create_team(
    db: aiosqlite.Connection,
    org_id: str,
    name: str,
    slug: str,
    description: str | None = None,
    parent_id: str | None = None,
    privacy: str = "closed",
) -> str:
    team_id = str(uuid.uuid4())
    await db.execute(
        """INSERT INTO teams (id, org_id, name, slug, description, parent_id, privacy, created_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
        (team_id, org_id, name, slug, description, parent_id, privacy, now_iso()),
    )
    await db.commit()
    return team_id


async def get_team(db: aiosqlite.Connection, team_id: str) -> dict | None:
    async with db.execute(_SELECT + " WHERE t.id = ?", (team_id,)) as cursor:
        row = await cursor.fetchone()
        return dict(row) if row else None


async def get_team_by_slug(db: aiosqlite.Connection, org_id: str, slug: str) -> dict | None:
    async with db.execute(_SELECT + " WHERE t.org_id = ? AND t.slug = ?", (org_id, slug)) as cursor:
        row = await cursor.fetchone()
        return dict(row) if row else None


async def list_teams(db: aiosqlite.Connection, org_id: str) -> list[dict]:
    async with db.execute(_SELECT + " WHERE t.org_id = ? ORDER BY t.name, t.slug", (org_id,)) as cursor:
        rows = await cursor.fetchall()
        return [dict(r) for r in rows]


async def ancestor_ids(db: aiosqlite.Connection, team_id: str) -> list[str]:
    """Parent chain of a team, nearest first, including the team itself."""
    async with db.execute(
        """WITH RECURSIVE chain(id, parent_id, depth) AS (
               SELECT id, parent_id, 0 FROM teams WHERE id = ?
               UNION ALL
               SELECT t.id, t.parent_id, c.depth + 1 FROM teams t
               JOIN chain c ON t.id = c.parent_id
               WHERE c.depth < 1000
           )
           SELECT id FROM chain ORDER BY depth""",
        (team_id,),
    ) as cursor:
        rows = await cursor.fetchall()
        return [r[0] for r in rows]


async def update_team(db: aiosqlite.Connection, team_id: str, fields: dict) -> None:
    updates = {k: v for k, v in fields.items() if k in EDITABLE_FIELDS}
    if not updates:
        return
    assignments = ", ".join(f"{k} = ?" for k in updates)
    await db.execute(f"UPDATE teams SET {assignments} WHERE id = ?", (*updates.values(), team_id))
    await db.commit()


async def delete_team(db: aiosqlite.Connection, team: dict) -> None:
    """Delete a team; its children move up to its parent."""
    await db.execute("UPDATE teams SET parent_id = ? WHERE parent_id = ?", (team.get("parent_id"), team["id"]))
    await db.execute("DELETE FROM teams WHERE id = ?", (team["id"],))
    await db.commit()


# ── Members ──

async def list_team_members(db: aiosqlite.Connection, team_id: str) -> list[dict]:
    async with db.execute(
        """SELECT u.id, u.username, u.name, u.avatar_url FROM team_members tm
           JOIN users u ON u.id = tm.user_id WHERE tm.team_id = ? ORDER BY u.username""",
        (team_id,),
    ) as cursor:
        rows = await cursor.fetchall()
        return [dict(r) for r in rows]


async def is_team_member(db: aiosqlite.Connection, team_id: str, user_id: str) -> bool:
    async with db.execute(
        "SELECT 1 FROM team_members WHERE team_id = ? AND user_id = ?", (team_id, user_id)
    ) as cursor:
        return await cursor.fetchone() is not None


async def add_team_member(db: aiosqlite.Connection, team_id: str, user_id: str) -> None:
    await db.execute(
        "INSERT OR IGNORE INTO team_members (team_id, user_id) VALUES (?, ?)", (team_id, user_id)
    )
    await db.commit()


async def remove_team_member(db: aiosqlite.Connection, team_id: str, user_id: str) -> bool:
    cursor = await db.execute(
        "DELETE FROM team_members WHERE team_id = ? AND user_id = ?", (team_id, user_id)
    )
    await db.commit()
    return cursor.rowcount > 0


# ── Repositories ──

async def list_team_repositories(db: aiosqlite.Connection, team_id: str) -> list[dict]:
    async with db.execute(
        """SELECT r.id, r.full_name, r.private, tr.permission FROM team_repositories tr
           JOIN repositories r ON r.id = tr.repository_id
           WHERE tr.team_id = ? AND r.deleted_at IS NULL ORDER BY r.full_name""",
        (team_id,),
    ) as cursor:
        rows = await cursor.fetchall()
        return [{**dict(r), "private": bool(r["private"])} for r in rows]


async def set_team_repository(db: aiosqlite.Connection, team_id: str, repo_id: str, permission: str) -> None:
    await db.execute(
        """INSERT INTO team_repositories (team_id, repository_id, permission) VALUES (?, ?, ?)
           ON CONFLICT(team_id, repository_id) DO UPDATE SET permission=excluded.permission""",
        (team_id, repo_id, permission),
    )
    await db.commit()


async def remove_team_repository(db: aiosqlite.Connection, team_id: str, repo_id: str) -> bool:
    cursor = await db.execute(
        "DELETE FROM team_repositories WHERE team_id = ? AND repository_id = ?", (team_id, repo_id)
    )
    await db.commit()
    return cursor.rowcount > 0
