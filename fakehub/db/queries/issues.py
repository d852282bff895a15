from __future__ import annotations

import json
import uuid

import aiosqlite

from fakehub.utils.clock import now_iso

_SELECT = """
    SELECT i.*, u.username AS author_username, u.avatar_url AS author_avatar_url,
           r.full_name AS repository_full_name
    FROM issues i
    JOIN users u ON u.id = i.author_id
    JOIN repositories r ON r.id = i.repository_id
"""

EDITABLE_FIELDS = ("title", "body", "state", "labels", "assignees", "closed_at")


def _decode(row) -> dict:
    issue = dict(row)
    issue["labels"] = json.loads(issue["labels"])
    issue["assignees"] = json.loads(issue["assignees"])
    return issue


def public_issue(issue: dict, users: dict[str, dict]) -> dict:
    """Serialize a decoded issue; ``users`` resolves assignee ids."""
    assignees = []
    for user_id in issue["assignees"]:
        u = users.get(user_id)
        if u:
            assignees.append({"id": u["id"], "username": u["username"], "avatar_url": u.get("avatar_url")})
    return {
        "id": issue["id"],
        "number": issue["number"],
        "title": issue["title"],
        "body": issue["body"],
        "state": issue["state"],
        "labels": issue["labels"],
        "author": {
            "id": issue["author_id"],
            "username": issue["author_username"],
            "avatar_url": issue.get("author_avatar_url"),
        },
        "assignees": assignees,
        "comments_count": issue["comments_count"],
        "repository": {"id": issue["repository_id"], "full_name": issue["repository_full_name"]},
        "created_at": issue["created_at"],
        "updated_at": issue["updated_at"],
        "closed_at": issue.get("closed_at"),
    }


async def create_issue(
    db: aiosqlite.Connection,
    repo_id: str,
    number: int,
    title: str,
    author_id: str,
    body: str = "",
    labels: list[str] | None = None,
    assignees: list[str] | None = None,
    *,
    state: str = "open",
    created_at: str | None = None,
    closed_at: str | None = None,
) -> str:
    issue_id = str(uuid.uuid4())
    now = created_at or now_iso()
    if state == "closed" and closed_at is None:
        closed_at = now
    await db.execute(
        """INSERT INTO issues
           (id, repository_id, number, title, body, state, labels, author_id, assignees,
            created_at, updated_at, closed_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (issue_id, repo_id, number, title, body, state, json.dumps(labels or []), author_id,
         json.dumps(assignees or []), now, now, closed_at if state == "closed" else None),
    )
    await db.commit()
    return issue_id


async def get_issue(db: aiosqlite.Connection, issue_id: str) -> dict | None:
    async with db.execute(_SELECT + " WHERE i.id = ?", (issue_id,)) as cursor:
        row = await cursor.fetchone()
        return _decode(row) if row else None


async def get_issue_by_number(db: aiosqlite.Connection, repo_id: str, number: int) -> dict | None:
    async with db.execute(_SELECT + " WHERE i.repository_id = ? AND i.number = ?", (repo_id, number)) as cursor:
        row = await cursor.fetchone()
        return _decode(row) if row else None


async def list_issues(db: aiosqlite.Connection, repo_ids: list[str]) -> list[dict]:
    """Issues of the given repositories in creation order."""
    if not repo_ids:
        return []
    marks = ",".join("?" for _ in repo_ids)
    async with db.execute(
        _SELECT + f" WHERE i.repository_id IN ({marks}) ORDER BY i.created_at, i.number", tuple(repo_ids)
    ) as cursor:
        rows = await cursor.fetchall()
        return [_decode(r) for r in rows]


async def update_issue(db: aiosqlite.Connection, issue_id: str, fields: dict) -> None:
    """Single-statement update; the state/closed_at pairing is checked by the table."""
    updates = {k: v for k, v in fields.items() if k in EDITABLE_FIELDS}
    for key in ("labels", "assignees"):
        if key in updates:
            updates[key] = json.dumps(updates[key])
    if not updates:
        return
    assignments = ", ".join(f"{k} = ?" for k in updates)
    await db.execute(
        f"UPDATE issues SET {assignments}, updated_at = ? WHERE id = ?",
        (*updates.values(), now_iso(), issue_id),
    )
    await db.commit()


# ── Comments ──

def public_comment(row: dict) -> dict:
    return {
        "id": row["id"],
        "body": row["body"],
        "author": {"id": row["author_id"], "username": row["author_username"], "avatar_url": row.get("author_avatar_url")},
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
    }


async def add_comment(db: aiosqlite.Connection, issue_id: str, author_id: str, body: str) -> str:
    comment_id = str(uuid.uuid4())
    now = now_iso()
    await db.execute(
        """INSERT INTO issue_comments (id, issue_id, author_id, body, created_at, updated_at)
           VALUES (?, ?, ?, ?, ?, ?)""",
        (comment_id, issue_id, author_id, body, now, now),
    )
    await db.execute(
        "UPDATE issues SET comments_count = comments_count + 1, updated_at = ? WHERE id = ?",
        (now, issue_id),
    )
    await db.commit()
    return comment_id


async def get_comment(db: aiosqlite.Connection, comment_id: str) -> dict | None:
    async with db.execute(
        """SELECT c.*, u.username AS author_username, u.avatar_url AS author_avatar_url
           FROM issue_comments c JOIN users u ON u.id = c.author_id WHERE c.id = ?""",
        (comment_id,),
    ) as cursor:
        row = await cursor.fetchone()
        return dict(row) if row else None


async def list_comments(db: aiosqlite.Connection, issue_id: str) -> list[dict]:
    async with db.execute(
        """SELECT c.*, u.username AS author_username, u.avatar_url AS author_avatar_url
           FROM issue_comments c JOIN users u ON u.id = c.author_id
           WHERE c.issue_id = ? ORDER BY c.created_at, c.rowid""",
        (issue_id,),
    ) as cursor:
        rows = await cursor.fetchall()
        return [dict(r) for r in rows]
