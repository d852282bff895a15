"""Workflows and workflow runs: dispatch, progress, logs and artifacts."""

from __future__ import annotations

import secrets

import aiosqlite
from fastapi import APIRouter, Depends

from fakehub.api.deps import get_log_streams, optional_user, require_user
from fakehub.api.envelope import created, ok
from fakehub.db.database import get_db, get_locks
from fakehub.db.locks import EntityLocks
from fakehub.db.queries import workflows as workflow_queries
from fakehub.errors import ConflictError, NotFoundError, ValidationError
from fakehub.models.workflow import ArtifactCreate, DispatchRequest, JobUpdate, LogAppend, RunComplete
from fakehub.services import access, actions_service
from fakehub.services.filters import Equals, FilterSpec
from fakehub.services.log_stream import LogStreams
from fakehub.services.pagination import window

router = APIRouter(prefix="/api/v1/repos/{owner}/{name}/actions", tags=["actions"])

RUN_FILTER_CONCLUSIONS = ("success", "failure", "cancelled")


async def _writable_repo(db: aiosqlite.Connection, owner: str, name: str, user: dict) -> dict:
    repo = await access.get_visible_repository(db, owner, name, user)
    await access.require_repository_write(db, repo, user)
    return repo


async def _get_run(db: aiosqlite.Connection, repo: dict, run_id: str) -> dict:
    run = await workflow_queries.get_run(db, repo["id"], run_id)
    if not run:
        raise NotFoundError("Workflow run not found")
    return run


# ── Workflows ──

@router.get("/workflows")
async def list_workflows(
    owner: str,
    name: str,
    user: dict | None = Depends(optional_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    repo = await access.get_visible_repository(db, owner, name, user)
    workflows = [workflow_queries.public_workflow(w) for w in await workflow_queries.list_workflows(db, repo["id"])]
    return ok({"workflows": workflows, "total_count": len(workflows)})


@router.post("/workflows/{workflow_id}/dispatches")
async def dispatch_workflow(
    owner: str,
    name: str,
    workflow_id: str,
    body: DispatchRequest | None = None,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
    locks: EntityLocks = Depends(get_locks),
):
    body = body or DispatchRequest()
    if not body.ref.strip():
        raise ValidationError.for_field("ref", "must not be empty")
    repo = await _writable_repo(db, owner, name, user)
    workflow = await workflow_queries.get_workflow(db, repo["id"], workflow_id)
    if not workflow:
        raise NotFoundError("Workflow not found")
    run = await actions_service.dispatch(
        db, locks, workflow, body.ref, body.head_sha or secrets.token_hex(20), user["id"]
    )
    return created(await actions_service.run_detail(db, run))


# ── Runs ──

@router.get("/runs")
async def list_runs(
    owner: str,
    name: str,
    status: str | None = None,
    conclusion: str | None = None,
    event: str | None = None,
    branch: str | None = None,
    workflow_id: str | None = None,
    limit: int | None = None,
    offset: int = 0,
    user: dict | None = Depends(optional_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    """Newest first, addressed by ``limit``/``offset``."""
    if status and status not in actions_service.STATUSES:
        raise ValidationError.for_field("status", f"must be one of: {', '.join(actions_service.STATUSES)}")
    if conclusion and conclusion not in RUN_FILTER_CONCLUSIONS:
        raise ValidationError.for_field("conclusion", f"must be one of: {', '.join(RUN_FILTER_CONCLUSIONS)}")
    repo = await access.get_visible_repository(db, owner, name, user)

    spec = FilterSpec()
    for field_name, value in (
        ("status", status), ("conclusion", conclusion), ("event", event),
        ("head_branch", branch), ("workflow_id", workflow_id),
    ):
        if value:
            spec.add(Equals(field_name, value, case_sensitive=field_name == "workflow_id"))
    runs = spec.apply(workflow_queries.public_run(r) for r in await workflow_queries.list_runs(db, repo["id"]))
    return ok(window(runs, limit, offset).to_dict("workflow_runs"))


@router.get("/runs/{run_id}")
async def get_run(
    owner: str,
    name: str,
    run_id: str,
    user: dict | None = Depends(optional_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    repo = await access.get_visible_repository(db, owner, name, user)
    return ok(await actions_service.run_detail(db, await _get_run(db, repo, run_id)))


@router.post("/runs/{run_id}/cancel")
async def cancel_run(
    owner: str,
    name: str,
    run_id: str,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
    locks: EntityLocks = Depends(get_locks),
    streams: LogStreams = Depends(get_log_streams),
):
    repo = await _writable_repo(db, owner, name, user)
    run = await actions_service.cancel_run(db, locks, streams, await _get_run(db, repo, run_id))
    return ok(await actions_service.run_detail(db, run))


@router.post("/runs/{run_id}/rerun")
async def rerun(
    owner: str,
    name: str,
    run_id: str,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
    locks: EntityLocks = Depends(get_locks),
):
    repo = await _writable_repo(db, owner, name, user)
    run = await actions_service.rerun(db, locks, await _get_run(db, repo, run_id), user["id"])
    return created(await actions_service.run_detail(db, run))


@router.patch("/runs/{run_id}/jobs/{job_id}")
async def update_job(
    owner: str,
    name: str,
    run_id: str,
    job_id: str,
    body: JobUpdate,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
    locks: EntityLocks = Depends(get_locks),
    streams: LogStreams = Depends(get_log_streams),
):
    repo = await _writable_repo(db, owner, name, user)
    run = await _get_run(db, repo, run_id)
    job = await actions_service.update_job(
        db, locks, streams, run, job_id, body.status, body.conclusion, body.steps
    )
    return ok(workflow_queries.public_job(job))


@router.post("/runs/{run_id}/complete")
async def complete_run(
    owner: str,
    name: str,
    run_id: str,
    body: RunComplete,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
    locks: EntityLocks = Depends(get_locks),
    streams: LogStreams = Depends(get_log_streams),
):
    repo = await _writable_repo(db, owner, name, user)
    run = await actions_service.complete_run(db, locks, streams, await _get_run(db, repo, run_id), body.conclusion)
    return ok(await actions_service.run_detail(db, run))


# ── Logs ──

@router.get("/runs/{run_id}/logs")
async def read_logs(
    owner: str,
    name: str,
    run_id: str,
    offset: int = 0,
    limit: int | None = None,
    wait: float = 0,
    user: dict | None = Depends(optional_user),
    db: aiosqlite.Connection = Depends(get_db),
    streams: LogStreams = Depends(get_log_streams),
):
    """Lines at ``offset`` and after. ``wait`` long-polls for new lines."""
    repo = await access.get_visible_repository(db, owner, name, user)
    run = await _get_run(db, repo, run_id)
    return ok(await streams.read(db, run, offset, limit, wait))


@router.post("/runs/{run_id}/logs")
async def append_logs(
    owner: str,
    name: str,
    run_id: str,
    body: LogAppend,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
    streams: LogStreams = Depends(get_log_streams),
):
    repo = await _writable_repo(db, owner, name, user)
    run = await _get_run(db, repo, run_id)
    if body.job_id and not await workflow_queries.get_job(db, run["id"], body.job_id):
        raise ValidationError.for_field("job_id", "does not belong to this run")
    return created(await streams.append(db, run, body.lines, body.job_id))


# ── Artifacts ──

@router.get("/runs/{run_id}/artifacts")
async def list_artifacts(
    owner: str,
    name: str,
    run_id: str,
    user: dict | None = Depends(optional_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    repo = await access.get_visible_repository(db, owner, name, user)
    run = await _get_run(db, repo, run_id)
    artifacts = [workflow_queries.public_artifact(a) for a in await workflow_queries.list_artifacts(db, run["id"])]
    return ok({"artifacts": artifacts, "total_count": len(artifacts)})


@router.post("/runs/{run_id}/artifacts")
async def upload_artifact(
    owner: str,
    name: str,
    run_id: str,
    body: ArtifactCreate,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
    locks: EntityLocks = Depends(get_locks),
):
    if not body.name.strip():
        raise ValidationError.for_field("name", "must not be empty")
    if body.size < 0:
        raise ValidationError.for_field("size", "must not be negative")
    repo = await _writable_repo(db, owner, name, user)
    run = await _get_run(db, repo, run_id)
    async with locks.hold("run", run["id"]):
        if await workflow_queries.get_artifact_by_name(db, run["id"], body.name):
            raise ConflictError(f"Artifact {body.name} already exists for this run")
        artifact_id = await workflow_queries.add_artifact(db, run["id"], body.name, body.size)
    artifacts = await workflow_queries.list_artifacts(db, run["id"])
    return created(workflow_queries.public_artifact(next(a for a in artifacts if a["id"] == artifact_id)))
