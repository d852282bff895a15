from __future__ import annotations

import uuid

import aiosqlite

from fakehub.utils.clock import now_iso

SETTINGS_FIELDS = ("name", "description", "private", "language", "default_branch", "archived", "has_issues")


def public_repository(row: dict) -> dict:
    private = bool(row["private"])
    return {
        "id": row["id"],
        "name": row["name"],
        "full_name": row["full_name"],
        "description": row.get("description"),
        "private": private,
        "visibility": "private" if private else "public",
        "language": row.get("language"),
        "default_branch": row["default_branch"],
        "stargazers_count": row["stargazers_count"],
        "forks_count": row["forks_count"],
        "archived": bool(row["archived"]),
        "has_issues": bool(row["has_issues"]),
        "owner": {"id": row["owner_id"], "login": row["owner_login"], "type": row["owner_type"]},
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
    }


async def create_repository(
    db: aiosqlite.Connection,
    owner_id: str,
    owner_type: str,
    owner_login: str,
    name: str,
    description: str | None = None,
    private: bool = False,
    language: str | None = None,
    default_branch: str = "main",
    *,
    repo_id: str | None = None,
    stargazers_count: int = 0,
    forks_count: int = 0,
    has_issues: bool = True,
    created_at: str | None = None,
    updated_at: str | None = None,
) -> str:
    repo_id = repo_id or str(uuid.uuid4())
    created = created_at or now_iso()
    await db.execute(
        """INSERT INTO repositories
           (id, owner_id, owner_type, owner_login, name, full_name, description, private,
            language, default_branch, stargazers_count, forks_count, has_issues, created_at, updated_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (repo_id, owner_id, owner_type, owner_login, name, f"{owner_login}/{name}", description,
         int(private), language, default_branch, stargazers_count, forks_count, int(has_issues),
         created, updated_at or created),
    )
    await db.commit()
    return repo_id


async def get_repository(db: aiosqlite.Connection, repo_id: str) -> dict | None:
    async with db.execute(
        "SELECT * FROM repositories WHERE id = ? AND deleted_at IS NULL", (repo_id,)
    ) as cursor:
        row = await cursor.fetchone()
        return dict(row) if row else None


async def get_repository_by_full_name(db: aiosqlite.Connection, owner: str, name: str) -> dict | None:
    async with db.execute(
        "SELECT * FROM repositories WHERE full_name = ? AND deleted_at IS NULL", (f"{owner}/{name}",)
    ) as cursor:
        row = await cursor.fetchone()
        return dict(row) if row else None


async def list_repositories(db: aiosqlite.Connection, owner_id: str | None = None) -> list[dict]:
    sql = "SELECT * FROM repositories WHERE deleted_at IS NULL"
    params: tuple = ()
    if owner_id:
        sql += " AND owner_id = ?"
        params = (owner_id,)
    sql += " ORDER BY created_at, full_name"
    async with db.execute(sql, params) as cursor:
        rows = await cursor.fetchall()
        return [dict(r) for r in rows]


async def update_repository(db: aiosqlite.Connection, repo: dict, fields: dict) -> None:
    """Apply every settings field in one statement; a rename also moves ``full_name``."""
    updates = {k: v for k, v in fields.items() if k in SETTINGS_FIELDS}
    for key in ("private", "archived", "has_issues"):
        if key in updates:
            updates[key] = int(updates[key])
    if "name" in updates:
        updates["full_name"] = f"{repo['owner_login']}/{updates['name']}"
    if not updates:
        return
    assignments = ", ".join(f"{k} = ?" for k in updates)
    await db.execute(
        f"UPDATE repositories SET {assignments}, updated_at = ? WHERE id = ?",
        (*updates.values(), now_iso(), repo["id"]),
    )
    await db.commit()


async def touch_repository(db: aiosqlite.Connection, repo_id: str) -> None:
    await db.execute("UPDATE repositories SET updated_at = ? WHERE id = ?", (now_iso(), repo_id))
    await db.commit()


async def soft_delete_repository(db: aiosqlite.Connection, repo_id: str) -> bool:
    cursor = await db.execute(
        "UPDATE repositories SET deleted_at = ? WHERE id = ? AND deleted_at IS NULL",
        (now_iso(), repo_id),
    )
    await db.execute("DELETE FROM team_repositories WHERE repository_id = ?", (repo_id,))
    await db.commit()
    return cursor.rowcount > 0


async def next_number(db: aiosqlite.Connection, repo_id: str) -> int:
    """Allocate the next issue/pull request number. Hold the repository lock."""
    await db.execute("UPDATE repositories SET last_number = last_number + 1 WHERE id = ?", (repo_id,))
    async with db.execute("SELECT last_number FROM repositories WHERE id = ?", (repo_id,)) as cursor:
        row = await cursor.fetchone()
    await db.commit()
    return row[0]


async def raise_number_floor(db: aiosqlite.Connection, repo_id: str, number: int) -> None:
    """Keep the counter ahead of explicitly numbered fixture records."""
    await db.execute(
        "UPDATE repositories SET last_number = MAX(last_number, ?) WHERE id = ?", (number, repo_id)
    )
    await db.commit()
