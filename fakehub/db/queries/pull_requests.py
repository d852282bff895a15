from __future__ import annotations

import uuid

import aiosqlite

from fakehub.utils.clock import now_iso

_SELECT = """
    SELECT p.*, u.username AS author_username, u.avatar_url AS author_avatar_url,
           r.full_name AS repository_full_name
    FROM pull_requests p
    JOIN users u ON u.id = p.author_id
    JOIN repositories r ON r.id = p.repository_id
"""

EDITABLE_FIELDS = ("title", "body", "state", "draft", "base_ref", "closed_at")


def public_pull_request(row: dict) -> dict:
    merged = bool(row["merged"])
    draft = bool(row["draft"])
    if merged:
        status = "merged"
    elif row["state"] == "closed":
        status = "closed"
    elif draft:
        status = "draft"
    else:
        status = "open"
    return {
        "id": row["id"],
        "number": row["number"],
        "title": row["title"],
        "body": row["body"],
        "state": row["state"],
        "status": status,
        "merged": merged,
        "draft": draft,
        "review_state": row["review_state"],
        "head_ref": row["head_ref"],
        "base_ref": row["base_ref"],
        "author": {
            "id": row["author_id"],
            "username": row["author_username"],
            "avatar_url": row.get("author_avatar_url"),
        },
        "repository": {"id": row["repository_id"], "full_name": row["repository_full_name"]},
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
        "closed_at": row.get("closed_at"),
        "merged_at": row.get("merged_at"),
    }


async def create_pull_request(
    db: aiosqlite.Connection,
    repo_id: str,
    number: int,
    title: str,
    author_id: str,
    head_ref: str,
    base_ref: str,
    body: str = "",
    draft: bool = False,
    *,
    state: str = "open",
    merged: bool = False,
    review_state: str = "pending",
    created_at: str | None = None,
) -> str:
    pr_id = str(uuid.uuid4())
    now = created_at or now_iso()
    closed_at = now if state == "closed" or merged else None
    await db.execute(
        """INSERT INTO pull_requests
           (id, repository_id, number, title, body, state, merged, draft, review_state,
            head_ref, base_ref, author_id, created_at, updated_at, closed_at, merged_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (pr_id, repo_id, number, title, body, "closed" if merged else state, int(merged), int(draft),
         review_state, head_ref, base_ref, author_id, now, now, closed_at, now if merged else None),
    )
    await db.commit()
    return pr_id


async def get_pull_request(db: aiosqlite.Connection, pr_id: str) -> dict | None:
    async with db.execute(_SELECT + " WHERE p.id = ?", (pr_id,)) as cursor:
        row = await cursor.fetchone()
        return dict(row) if row else None


async def get_pull_request_by_number(db: aiosqlite.Connection, repo_id: str, number: int) -> dict | None:
    async with db.execute(_SELECT + " WHERE p.repository_id = ? AND p.number = ?", (repo_id, number)) as cursor:
        row = await cursor.fetchone()
        return dict(row) if row else None


async def list_pull_requests(db: aiosqlite.Connection, repo_ids: list[str]) -> list[dict]:
    if not repo_ids:
        return []
    marks = ",".join("?" for _ in repo_ids)
    async with db.execute(
        _SELECT + f" WHERE p.repository_id IN ({marks}) ORDER BY p.created_at, p.number", tuple(repo_ids)
    ) as cursor:
        rows = await cursor.fetchall()
        return [dict(r) for r in rows]


async def update_pull_request(db: aiosqlite.Connection, pr_id: str, fields: dict) -> None:
    updates = {k: v for k, v in fields.items() if k in EDITABLE_FIELDS}
    if "draft" in updates:
        updates["draft"] = int(updates["draft"])
    if not updates:
        return
    assignments = ", ".join(f"{k} = ?" for k in updates)
    await db.execute(
        f"UPDATE pull_requests SET {assignments}, updated_at = ? WHERE id = ?",
        (*updates.values(), now_iso(), pr_id),
    )
    await db.commit()


async def merge_pull_request(db: aiosqlite.Connection, pr_id: str) -> None:
    now = now_iso()
    await db.execute(
        """UPDATE pull_requests SET merged = 1, state = 'closed', draft = 0,
           merged_at = ?, closed_at = ?, updated_at = ? WHERE id = ?""",
        (now, now, now, pr_id),
    )
    await db.commit()


# ── Reviews ──

def summarize_reviews(reviews: list[dict]) -> str:
    """Latest non-comment verdict per reviewer; any outstanding change request wins."""
    latest: dict[str, str] = {}
    for review in reviews:
        if review["state"] != "commented":
            latest[review["reviewer_id"]] = review["state"]
    if "changes_requested" in latest.values():
        return "changes_requested"
    if "approved" in latest.values():
        return "approved"
    return "pending"


def public_review(row: dict) -> dict:
    return {
        "id": row["id"],
        "state": row["state"],
        "body": row["body"],
        "reviewer": {"id": row["reviewer_id"], "username": row["reviewer_username"]},
        "created_at": row["created_at"],
    }


async def list_reviews(db: aiosqlite.Connection, pr_id: str) -> list[dict]:
    async with db.execute(
        """SELECT rv.*, u.username AS reviewer_username
           FROM pull_request_reviews rv JOIN users u ON u.id = rv.reviewer_id
           WHERE rv.pull_request_id = ? ORDER BY rv.created_at, rv.rowid""",
        (pr_id,),
    ) as cursor:
        rows = await cursor.fetchall()
        return [dict(r) for r in rows]


async def add_review(db: aiosqlite.Connection, pr_id: str, reviewer_id: str, state: str, body: str = "") -> str:
    """Record a review and recompute the pull request's review state."""
    review_id = str(uuid.uuid4())
    now = now_iso()
    await db.execute(
        """INSERT INTO pull_request_reviews (id, pull_request_id, reviewer_id, state, body, created_at)
           VALUES (?, ?, ?, ?, ?, ?)""",
        (review_id, pr_id, reviewer_id, state, body, now),
    )
    review_state = summarize_reviews(await list_reviews(db, pr_id))
    await db.execute(
        "UPDATE pull_requests SET review_state = ?, updated_at = ? WHERE id = ?",
        (review_state, now, pr_id),
    )
    await db.commit()
    return review_id
