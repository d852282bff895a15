"""Workflow run lifecycle: dispatch, job progress, completion, cancel, rerun.

Status moves ``queued -> in_progress -> completed`` and never back. A run
has a conclusion exactly when it is completed; the table enforces the same
pairing. Every transition happens under the run's entity lock.
"""

from __future__ import annotations

import json
import logging

import aiosqlite

from fakehub.db.locks import EntityLocks
from fakehub.db.queries import workflows as workflow_queries
from fakehub.errors import ConflictError, NotFoundError, ValidationError
from fakehub.services.log_stream import LogStreams

logger = logging.getLogger(__name__)

STATUSES = ("queued", "in_progress", "completed")
RUN_CONCLUSIONS = ("success", "failure")
JOB_CONCLUSIONS = ("success", "failure", "cancelled", "skipped")

_ORDER = {status: i for i, status in enumerate(STATUSES)}


async def run_detail(db: aiosqlite.Connection, run: dict) -> dict:
    detail = workflow_queries.public_run(run)
    detail["jobs"] = [workflow_queries.public_job(j) for j in await workflow_queries.list_jobs(db, run["id"])]
    detail["artifacts_count"] = len(await workflow_queries.list_artifacts(db, run["id"]))
    return detail


async def dispatch(
    db: aiosqlite.Connection,
    locks: EntityLocks,
    workflow: dict,
    ref: str,
    head_sha: str,
    actor_id: str | None,
    event: str = "workflow_dispatch",
) -> dict:
    if workflow["state"] != "active":
        raise ConflictError("Workflow is disabled")
    async with locks.hold("workflow", workflow["id"]):
        run_id = await workflow_queries.create_run(db, workflow, head_sha, ref, event, actor_id)
    run = await workflow_queries.get_run(db, workflow["repository_id"], run_id)
    logger.info("Dispatched run %s (#%d) of workflow %s", run_id, run["number"], workflow["name"])
    return run


def _check_transition(current: str, new: str, what: str) -> None:
    if _ORDER[new] < _ORDER[current]:
        raise ConflictError(f"{what} cannot move from {current} to {new}")
    if current == "completed":
        raise ConflictError(f"{what} is already completed")


def _validate_status(status: str, conclusion: str | None, allowed: tuple[str, ...]) -> None:
    if status not in STATUSES:
        raise ValidationError.for_field("status", f"must be one of: {', '.join(STATUSES)}")
    if status == "completed" and conclusion not in allowed:
        raise ValidationError.for_field("conclusion", f"must be one of: {', '.join(allowed)}")
    if status != "completed" and conclusion is not None:
        raise ValidationError.for_field("conclusion", "only allowed when status is completed")


async def update_job(
    db: aiosqlite.Connection,
    locks: EntityLocks,
    streams: LogStreams,
    run: dict,
    job_id: str,
    status: str,
    conclusion: str | None = None,
    steps: list[dict] | None = None,
) -> dict:
    """Advance one job; the run follows (starts with its first job, completes with its last)."""
    _validate_status(status, conclusion, JOB_CONCLUSIONS)
    async with locks.hold("run", run["id"]):
        run = await workflow_queries.get_run(db, run["repository_id"], run["id"])
        if run["status"] == "completed":
            raise ConflictError("Run is already completed")
        job = await workflow_queries.get_job(db, run["id"], job_id)
        if not job:
            raise NotFoundError("Job not found")
        _check_transition(job["status"], status, "Job")
        if steps is None and status == "completed":
            steps = [
                {**step, "status": "completed", "conclusion": step.get("conclusion") or conclusion}
                for step in json.loads(job["steps"])
            ]
        await workflow_queries.update_job(db, job_id, status, conclusion, steps)

        if run["status"] == "queued" and status != "queued":
            await workflow_queries.set_run_status(db, run["id"], "in_progress")

        jobs = await workflow_queries.list_jobs(db, run["id"])
        finished = False
        if all(j["status"] == "completed" for j in jobs):
            failed = any(j["conclusion"] == "failure" for j in jobs)
            await workflow_queries.set_run_status(db, run["id"], "completed", "failure" if failed else "success")
            finished = True
    if finished:
        await streams.notify(run["id"])
    return await workflow_queries.get_job(db, run["id"], job_id)


async def complete_run(
    db: aiosqlite.Connection, locks: EntityLocks, streams: LogStreams, run: dict, conclusion: str
) -> dict:
    if conclusion not in RUN_CONCLUSIONS:
        raise ValidationError.for_field("conclusion", f"must be one of: {', '.join(RUN_CONCLUSIONS)}")
    async with locks.hold("run", run["id"]):
        current = await workflow_queries.get_run(db, run["repository_id"], run["id"])
        if current["status"] == "completed":
            raise ConflictError("Run is already completed")
        await workflow_queries.finish_open_jobs(db, run["id"], "skipped")
        await workflow_queries.set_run_status(db, run["id"], "completed", conclusion)
    await streams.notify(run["id"])
    logger.info("Run %s completed with %s", run["id"], conclusion)
    return await workflow_queries.get_run(db, run["repository_id"], run["id"])


async def cancel_run(db: aiosqlite.Connection, locks: EntityLocks, streams: LogStreams, run: dict) -> dict:
    async with locks.hold("run", run["id"]):
        current = await workflow_queries.get_run(db, run["repository_id"], run["id"])
        if current["status"] == "completed":
            raise ConflictError("Only queued or in-progress runs can be cancelled")
        await workflow_queries.finish_open_jobs(db, run["id"], "cancelled")
        await workflow_queries.set_run_status(db, run["id"], "completed", "cancelled")
    await streams.notify(run["id"])
    logger.info("Run %s cancelled", run["id"])
    return await workflow_queries.get_run(db, run["repository_id"], run["id"])


async def rerun(db: aiosqlite.Connection, locks: EntityLocks, run: dict, actor_id: str | None) -> dict:
    if run["status"] != "completed":
        raise ConflictError("Only completed runs can be re-run")
    workflow = await workflow_queries.get_workflow(db, run["repository_id"], run["workflow_id"])
    async with locks.hold("workflow", workflow["id"]):
        run_id = await workflow_queries.create_run(
            db, workflow, run["head_sha"], run["head_branch"], run["event"], actor_id
        )
    logger.info("Run %s re-run as %s", run["id"], run_id)
    return await workflow_queries.get_run(db, run["repository_id"], run_id)
