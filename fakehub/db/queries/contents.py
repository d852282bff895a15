from __future__ import annotations

import hashlib

import aiosqlite

from fakehub.utils.clock import now_iso


def blob_sha(content: bytes) -> str:
    """Git's blob id: ``sha1("blob <size>\\0" + content)``."""
    return hashlib.sha1(b"blob %d\0" % len(content) + content).hexdigest()


def tree_sha(files: list[dict]) -> str:
    h = hashlib.sha1()
    for f in sorted(files, key=lambda f: f["path"]):
        h.update(f"{f['path']}:{f['sha']}".encode() + b"\0")
    return h.hexdigest()


def commit_sha(repo_id: str, ref: str, parent: str | None, message: str, stamp: str, changes: list[tuple]) -> str:
    h = hashlib.sha1()
    for part in (repo_id, ref, parent or "", message, stamp):
        h.update(part.encode() + b"\0")
    for path, sha in changes:
        h.update(f"{path}:{sha or '-'}".encode() + b"\0")
    return h.hexdigest()


def public_commit(row: dict) -> dict:
    return {
        "sha": row["sha"],
        "message": row["message"],
        "ref": row["ref"],
        "parents": [{"sha": row["parent_sha"]}] if row.get("parent_sha") else [],
        "author": {"id": row.get("author_id"), "username": row.get("author_username")},
        "created_at": row["created_at"],
    }


async def get_file(db: aiosqlite.Connection, repo_id: str, ref: str, path: str) -> dict | None:
    async with db.execute(
        "SELECT * FROM repository_files WHERE repository_id = ? AND ref = ? AND path = ?",
        (repo_id, ref, path),
    ) as cursor:
        row = await cursor.fetchone()
        return dict(row) if row else None


async def list_files(db: aiosqlite.Connection, repo_id: str, ref: str, prefix: str = "") -> list[dict]:
    """Files under ``prefix`` (a directory path without trailing slash; empty for the root)."""
    sql = "SELECT path, sha, length(content) AS size FROM repository_files WHERE repository_id = ? AND ref = ?"
    params: tuple = (repo_id, ref)
    if prefix:
        sql += " AND substr(path, 1, ?) = ?"
        params += (len(prefix) + 1, prefix + "/")
    async with db.execute(sql + " ORDER BY path", params) as cursor:
        rows = await cursor.fetchall()
        return [dict(r) for r in rows]


async def head_sha(db: aiosqlite.Connection, repo_id: str, ref: str) -> str | None:
    async with db.execute(
        "SELECT sha FROM commits WHERE repository_id = ? AND ref = ? ORDER BY rowid DESC LIMIT 1",
        (repo_id, ref),
    ) as cursor:
        row = await cursor.fetchone()
        return row[0] if row else None


async def commit(
    db: aiosqlite.Connection,
    repo_id: str,
    ref: str,
    message: str,
    author_id: str | None,
    writes: dict[str, bytes | None],
) -> dict:
    """Apply ``writes`` (path -> content, ``None`` deletes) as one commit on ``ref``.

    Callers hold the (repository, ref) contents lock.
    """
    now = now_iso()
    parent = await head_sha(db, repo_id, ref)
    changes = []
    for path, content in sorted(writes.items()):
        if content is None:
            await db.execute(
                "DELETE FROM repository_files WHERE repository_id = ? AND ref = ? AND path = ?",
                (repo_id, ref, path),
            )
            changes.append((path, None))
        else:
            sha = blob_sha(content)
            await db.execute(
                """INSERT INTO repository_files (repository_id, ref, path, content, sha, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?)
                   ON CONFLICT (repository_id, ref, path)
                   DO UPDATE SET content = excluded.content, sha = excluded.sha, updated_at = excluded.updated_at""",
                (repo_id, ref, path, content, sha, now),
            )
            changes.append((path, sha))
    sha = commit_sha(repo_id, ref, parent, message, now, changes)
    await db.execute(
        """INSERT INTO commits (sha, repository_id, ref, parent_sha, message, author_id, created_at)
           VALUES (?, ?, ?, ?, ?, ?, ?)""",
        (sha, repo_id, ref, parent, message, author_id, now),
    )
    await db.commit()
    return await get_commit(db, sha)


async def get_commit(db: aiosqlite.Connection, sha: str) -> dict | None:
    async with db.execute(
        """SELECT c.*, u.username AS author_username
           FROM commits c LEFT JOIN users u ON u.id = c.author_id WHERE c.sha = ?""",
        (sha,),
    ) as cursor:
        row = await cursor.fetchone()
        return dict(row) if row else None


async def list_commits(db: aiosqlite.Connection, repo_id: str, ref: str) -> list[dict]:
    """Newest first."""
    async with db.execute(
        """SELECT c.*, u.username AS author_username
           FROM commits c LEFT JOIN users u ON u.id = c.author_id
           WHERE c.repository_id = ? AND c.ref = ? ORDER BY c.rowid DESC""",
        (repo_id, ref),
    ) as cursor:
        rows = await cursor.fetchall()
        return [dict(r) for r in rows]
