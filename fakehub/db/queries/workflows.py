"""Workflows, runs, jobs, run logs and artifacts."""

from __future__ import annotations

import json
import uuid

import aiosqlite

from fakehub.utils.clock import now_iso

_RUN_SELECT = """
    SELECT wr.*, w.name AS workflow_name, w.path AS workflow_path
    FROM workflow_runs wr JOIN workflows w ON w.id = wr.workflow_id
"""


def public_workflow(row: dict) -> dict:
    return {
        "id": row["id"],
        "name": row["name"],
        "path": row["path"],
        "state": row["state"],
        "created_at": row["created_at"],
    }


def public_run(row: dict) -> dict:
    return {
        "id": row["id"],
        "number": row["number"],
        "name": row["workflow_name"],
        "workflow_id": row["workflow_id"],
        "status": row["status"],
        "conclusion": row.get("conclusion"),
        "head_sha": row["head_sha"],
        "head_branch": row["head_branch"],
        "event": row["event"],
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
        "started_at": row.get("started_at"),
        "completed_at": row.get("completed_at"),
    }


def public_job(row: dict) -> dict:
    return {
        "id": row["id"],
        "name": row["name"],
        "status": row["status"],
        "conclusion": row.get("conclusion"),
        "steps": json.loads(row["steps"]),
        "started_at": row.get("started_at"),
        "completed_at": row.get("completed_at"),
    }


# ── Workflows ──

async def create_workflow(
    db: aiosqlite.Connection,
    repo_id: str,
    name: str,
    path: str,
    jobs: list[dict] | None = None,
    *,
    workflow_id: str | None = None,
) -> str:
    """``jobs`` is the job template every run starts from: ``[{name, steps: [str]}]``."""
    workflow_id = workflow_id or str(uuid.uuid4())
    await db.execute(
        "INSERT INTO workflows (id, repository_id, name, path, jobs, created_at) VALUES (?, ?, ?, ?, ?, ?)",
        (workflow_id, repo_id, name, path, json.dumps(jobs or []), now_iso()),
    )
    await db.commit()
    return workflow_id


async def get_workflow(db: aiosqlite.Connection, repo_id: str, workflow_id: str) -> dict | None:
    async with db.execute(
        "SELECT * FROM workflows WHERE id = ? AND repository_id = ?", (workflow_id, repo_id)
    ) as cursor:
        row = await cursor.fetchone()
        if not row:
            return None
        workflow = dict(row)
        workflow["jobs"] = json.loads(workflow["jobs"])
        return workflow


async def list_workflows(db: aiosqlite.Connection, repo_id: str) -> list[dict]:
    async with db.execute(
        "SELECT * FROM workflows WHERE repository_id = ? ORDER BY name, id", (repo_id,)
    ) as cursor:
        rows = await cursor.fetchall()
        return [dict(r) for r in rows]


# ── Runs ──

async def create_run(
    db: aiosqlite.Connection,
    workflow: dict,
    head_sha: str,
    head_branch: str,
    event: str = "push",
    actor_id: str | None = None,
    *,
    status: str = "queued",
    conclusion: str | None = None,
    created_at: str | None = None,
) -> str:
    """Insert a run numbered after the workflow's latest one, plus its jobs.

    Hold the workflow lock so concurrent dispatches get distinct numbers.
    """
    run_id = str(uuid.uuid4())
    now = created_at or now_iso()
    async with db.execute(
        "SELECT COALESCE(MAX(number), 0) + 1 FROM workflow_runs WHERE workflow_id = ?", (workflow["id"],)
    ) as cursor:
        number = (await cursor.fetchone())[0]
    started = now if status != "queued" else None
    completed = now if status == "completed" else None
    await db.execute(
        """INSERT INTO workflow_runs
           (id, repository_id, workflow_id, number, status, conclusion, head_sha, head_branch,
            event, actor_id, created_at, updated_at, started_at, completed_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (run_id, workflow["repository_id"], workflow["id"], number, status, conclusion, head_sha,
         head_branch, event, actor_id, now, now, started, completed),
    )
    job_status = "completed" if status == "completed" else "queued"
    job_conclusion = conclusion if status == "completed" else None
    for position, job in enumerate(workflow["jobs"]):
        steps = [
            {"name": step, "status": job_status, "conclusion": job_conclusion}
            for step in job.get("steps", [])
        ]
        await db.execute(
            """INSERT INTO workflow_jobs (id, run_id, name, position, status, conclusion, steps, completed_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (str(uuid.uuid4()), run_id, job["name"], position, job_status, job_conclusion,
             json.dumps(steps), completed),
        )
    await db.commit()
    return run_id


async def get_run(db: aiosqlite.Connection, repo_id: str, run_id: str) -> dict | None:
    async with db.execute(_RUN_SELECT + " WHERE wr.id = ? AND wr.repository_id = ?", (run_id, repo_id)) as cursor:
        row = await cursor.fetchone()
        return dict(row) if row else None


async def list_runs(db: aiosqlite.Connection, repo_id: str) -> list[dict]:
    """Newest first."""
    async with db.execute(
        _RUN_SELECT + " WHERE wr.repository_id = ? ORDER BY wr.created_at DESC, wr.rowid DESC", (repo_id,)
    ) as cursor:
        rows = await cursor.fetchall()
        return [dict(r) for r in rows]


async def list_runs_for_repositories(db: aiosqlite.Connection, repo_ids: list[str]) -> list[dict]:
    if not repo_ids:
        return []
    marks = ",".join("?" for _ in repo_ids)
    async with db.execute(
        _RUN_SELECT + f" WHERE wr.repository_id IN ({marks})", tuple(repo_ids)
    ) as cursor:
        rows = await cursor.fetchall()
        return [dict(r) for r in rows]


async def set_run_status(
    db: aiosqlite.Connection, run_id: str, status: str, conclusion: str | None = None
) -> None:
    """Move a run to ``status``; ``conclusion`` must be given exactly when completing."""
    now = now_iso()
    await db.execute(
        """UPDATE workflow_runs SET status = ?, conclusion = ?, updated_at = ?,
           started_at = COALESCE(started_at, CASE WHEN ? != 'queued' THEN ? END),
           completed_at = CASE WHEN ? = 'completed' THEN ? END
           WHERE id = ?""",
        (status, conclusion, now, status, now, status, now, run_id),
    )
    await db.commit()


# ── Jobs ──

async def list_jobs(db: aiosqlite.Connection, run_id: str) -> list[dict]:
    async with db.execute(
        "SELECT * FROM workflow_jobs WHERE run_id = ? ORDER BY position", (run_id,)
    ) as cursor:
        rows = await cursor.fetchall()
        return [dict(r) for r in rows]


async def get_job(db: aiosqlite.Connection, run_id: str, job_id: str) -> dict | None:
    async with db.execute(
        "SELECT * FROM workflow_jobs WHERE id = ? AND run_id = ?", (job_id, run_id)
    ) as cursor:
        row = await cursor.fetchone()
        return dict(row) if row else None


async def update_job(
    db: aiosqlite.Connection,
    job_id: str,
    status: str,
    conclusion: str | None,
    steps: list[dict] | None = None,
) -> None:
    now = now_iso()
    await db.execute(
        """UPDATE workflow_jobs SET status = ?, conclusion = ?,
           steps = COALESCE(?, steps),
           started_at = COALESCE(started_at, CASE WHEN ? != 'queued' THEN ? END),
           completed_at = CASE WHEN ? = 'completed' THEN ? END
           WHERE id = ?""",
        (status, conclusion, json.dumps(steps) if steps is not None else None,
         status, now, status, now, job_id),
    )
    await db.commit()


async def finish_open_jobs(db: aiosqlite.Connection, run_id: str, conclusion: str) -> None:
    """Close every job still queued or running with ``conclusion``."""
    now = now_iso()
    await db.execute(
        """UPDATE workflow_jobs SET status = 'completed', conclusion = ?, completed_at = ?
           WHERE run_id = ? AND status != 'completed'""",
        (conclusion, now, run_id),
    )
    await db.commit()


# ── Logs ──

async def count_log_lines(db: aiosqlite.Connection, run_id: str) -> int:
    async with db.execute("SELECT COUNT(*) FROM run_log_lines WHERE run_id = ?", (run_id,)) as cursor:
        row = await cursor.fetchone()
        return row[0]


async def append_log_lines(
    db: aiosqlite.Connection, run_id: str, lines: list[str], job_id: str | None = None
) -> int:
    """Append after the current tail; returns the offset of the first new line.

    Hold the run lock so offsets stay dense and ordered.
    """
    start = await count_log_lines(db, run_id)
    now = now_iso()
    await db.executemany(
        "INSERT INTO run_log_lines (run_id, line_no, job_id, text, created_at) VALUES (?, ?, ?, ?, ?)",
        [(run_id, start + i, job_id, text, now) for i, text in enumerate(lines)],
    )
    await db.commit()
    return start


async def read_log_lines(db: aiosqlite.Connection, run_id: str, offset: int, limit: int) -> list[dict]:
    async with db.execute(
        """SELECT line_no, job_id, text, created_at FROM run_log_lines
           WHERE run_id = ? AND line_no >= ? ORDER BY line_no LIMIT ?""",
        (run_id, offset, limit),
    ) as cursor:
        rows = await cursor.fetchall()
        return [
            {"offset": r["line_no"], "job_id": r["job_id"], "text": r["text"], "created_at": r["created_at"]}
            for r in rows
        ]


# ── Artifacts ──

def public_artifact(row: dict) -> dict:
    return {"id": row["id"], "name": row["name"], "size": row["size"], "uploaded_at": row["uploaded_at"]}


async def add_artifact(db: aiosqlite.Connection, run_id: str, name: str, size: int) -> str:
    artifact_id = str(uuid.uuid4())
    await db.execute(
        "INSERT INTO artifacts (id, run_id, name, size, uploaded_at) VALUES (?, ?, ?, ?, ?)",
        (artifact_id, run_id, name, size, now_iso()),
    )
    await db.commit()
    return artifact_id


async def get_artifact_by_name(db: aiosqlite.Connection, run_id: str, name: str) -> dict | None:
    async with db.execute("SELECT * FROM artifacts WHERE run_id = ? AND name = ?", (run_id, name)) as cursor:
        row = await cursor.fetchone()
        return dict(row) if row else None


async def list_artifacts(db: aiosqlite.Connection, run_id: str) -> list[dict]:
    async with db.execute(
        "SELECT * FROM artifacts WHERE run_id = ? ORDER BY uploaded_at, rowid", (run_id,)
    ) as cursor:
        rows = await cursor.fetchall()
        return [dict(r) for r in rows]
