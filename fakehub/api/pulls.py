"""Pull requests, merges and reviews."""

from __future__ import annotations

import logging

import aiosqlite
from fastapi import APIRouter, Depends

from fakehub.api.deps import optional_user, require_user
from fakehub.api.envelope import created, ok
from fakehub.api.issues import ensure_writable
from fakehub.db.database import get_db, get_locks
from fakehub.db.locks import EntityLocks
from fakehub.db.queries import pull_requests as pr_queries
from fakehub.db.queries import repositories as repo_queries
from fakehub.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationCollector, ValidationError
from fakehub.models.issue import MergeRequest, PullRequestCreate, PullRequestUpdate, ReviewCreate
from fakehub.services import access, activity_service, notification_service
from fakehub.services.filters import sort_items
from fakehub.services.pagination import paginate
from fakehub.services.search_service import PR_SORT_KEYS, pull_request_filter, pull_request_records
from fakehub.utils.clock import now_iso

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/repositories/{owner}/{name}/pulls", tags=["pulls"])

REVIEW_STATES = ("approved", "changes_requested", "commented")
MERGE_METHODS = ("merge", "squash", "rebase")


async def _get_pull(db: aiosqlite.Connection, repo: dict, number: int) -> dict:
    pr = await pr_queries.get_pull_request_by_number(db, repo["id"], number)
    if not pr:
        raise NotFoundError("Pull request not found")
    return pr


async def _record(db: aiosqlite.Connection, user: dict, repo: dict, pr: dict, action: str) -> None:
    await activity_service.record(
        db, "pull_request", user, repo, {"action": action, "number": pr["number"], "title": pr["title"]}
    )


async def _detail(db: aiosqlite.Connection, pr: dict) -> dict:
    data = pr_queries.public_pull_request(pr)
    data["reviews"] = [pr_queries.public_review(r) for r in await pr_queries.list_reviews(db, pr["id"])]
    return data


@router.get("")
async def list_pulls(
    owner: str,
    name: str,
    state: str = "open",
    status: str | None = None,
    review_state: str | None = None,
    author: str | None = None,
    q: str | None = None,
    sort: str | None = "created",
    order: str = "desc",
    page: int = 1,
    per_page: int | None = None,
    user: dict | None = Depends(optional_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    repo = await access.get_visible_repository(db, owner, name, user)
    spec = pull_request_filter(status or state, review_state, author, q)
    pulls = sort_items(spec.apply(await pull_request_records(db, [repo])), sort, order, PR_SORT_KEYS)
    return ok(paginate(pulls, page, per_page).to_dict("pull_requests"))


@router.post("")
async def create_pull(
    owner: str,
    name: str,
    body: PullRequestCreate,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
    locks: EntityLocks = Depends(get_locks),
):
    repo = await access.get_visible_repository(db, owner, name, user)
    ensure_writable(repo)
    base = body.base or repo["default_branch"]

    errors = ValidationCollector()
    if not body.title.strip():
        errors.add("title", "must not be empty")
    if not body.head.strip():
        errors.add("head", "must not be empty")
    elif body.head == base:
        errors.add("head", "must differ from the base branch")
    errors.raise_if_any()

    async with locks.hold("repository", repo["id"]):
        number = await repo_queries.next_number(db, repo["id"])
        pr_id = await pr_queries.create_pull_request(
            db, repo["id"], number, body.title.strip(), user["id"], body.head, base, body.body, body.draft
        )
    await repo_queries.touch_repository(db, repo["id"])
    logger.info("Pull request %s#%d opened by %s", repo["full_name"], number, user["username"])
    pr = await pr_queries.get_pull_request(db, pr_id)
    await _record(db, user, repo, pr, "opened")
    await notification_service.notify(
        db, repo, await notification_service.recipients(db, user, text=body.body),
        "pull_request", f"{user['username']} mentioned you in pull request #{number}",
        notification_service.subject_for(repo, "pull_request", number, pr["title"]),
    )
    return created(await _detail(db, pr))


@router.get("/{number}")
async def get_pull(
    owner: str,
    name: str,
    number: int,
    user: dict | None = Depends(optional_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    repo = await access.get_visible_repository(db, owner, name, user)
    return ok(await _detail(db, await _get_pull(db, repo, number)))


@router.patch("/{number}")
async def update_pull(
    owner: str,
    name: str,
    number: int,
    body: PullRequestUpdate,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
    locks: EntityLocks = Depends(get_locks),
):
    repo = await access.get_visible_repository(db, owner, name, user)
    ensure_writable(repo)
    fields = body.model_dump(exclude_unset=True)
    if "base" in fields:
        fields["base_ref"] = fields.pop("base")

    errors = ValidationCollector()
    if "title" in fields and not (fields["title"] or "").strip():
        errors.add("title", "must not be empty")
    if "state" in fields and fields["state"] not in ("open", "closed"):
        errors.add("state", "must be 'open' or 'closed'")
    if "base_ref" in fields and not (fields["base_ref"] or "").strip():
        errors.add("base", "must not be empty")
    if "draft" in fields and fields["draft"] is None:
        errors.add("draft", "must be true or false")
    errors.raise_if_any()

    async with locks.hold("pull_request", f"{repo['id']}#{number}"):
        pr = await _get_pull(db, repo, number)
        if pr["author_id"] != user["id"] and await access.repository_role(db, repo, user) is None:
            raise PermissionDeniedError("Only the author or repository collaborators can edit this pull request")
        if pr["merged"]:
            raise ConflictError("Merged pull requests cannot be edited")
        state_changed = "state" in fields and fields["state"] != pr["state"]
        if state_changed:
            fields["closed_at"] = now_iso() if fields["state"] == "closed" else None
        await pr_queries.update_pull_request(db, pr["id"], fields)
        pr = await pr_queries.get_pull_request(db, pr["id"])
    if state_changed:
        await _record(db, user, repo, pr, "closed" if pr["state"] == "closed" else "reopened")
    return ok(await _detail(db, pr))


@router.post("/{number}/merge")
async def merge_pull(
    owner: str,
    name: str,
    number: int,
    body: MergeRequest | None = None,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
    locks: EntityLocks = Depends(get_locks),
):
    body = body or MergeRequest()
    if body.merge_method not in MERGE_METHODS:
        raise ValidationError.for_field("merge_method", f"must be one of: {', '.join(MERGE_METHODS)}")
    repo = await access.get_visible_repository(db, owner, name, user)
    ensure_writable(repo)
    await access.require_repository_write(db, repo, user)

    async with locks.hold("pull_request", f"{repo['id']}#{number}"):
        pr = await _get_pull(db, repo, number)
        if pr["merged"]:
            raise ConflictError("Pull request is already merged")
        if pr["state"] != "open":
            raise ConflictError("Closed pull requests cannot be merged")
        if pr["draft"]:
            raise ConflictError("Draft pull requests cannot be merged")
        if pr["review_state"] == "changes_requested":
            raise ConflictError("Changes were requested on this pull request")
        await pr_queries.merge_pull_request(db, pr["id"])
        pr = await pr_queries.get_pull_request(db, pr["id"])
    logger.info("Pull request %s#%d merged by %s (%s)", repo["full_name"], number, user["username"], body.merge_method)
    await _record(db, user, repo, pr, "merged")
    return ok(await _detail(db, pr))


@router.post("/{number}/reviews")
async def add_review(
    owner: str,
    name: str,
    number: int,
    body: ReviewCreate,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
    locks: EntityLocks = Depends(get_locks),
):
    if body.state not in REVIEW_STATES:
        raise ValidationError.for_field("state", f"must be one of: {', '.join(REVIEW_STATES)}")
    repo = await access.get_visible_repository(db, owner, name, user)

    async with locks.hold("pull_request", f"{repo['id']}#{number}"):
        pr = await _get_pull(db, repo, number)
        if pr["author_id"] == user["id"] and body.state != "commented":
            raise ValidationError.for_field("state", "authors can only comment on their own pull requests")
        if body.state == "changes_requested" and not body.body.strip():
            raise ValidationError.for_field("body", "is required when requesting changes")
        review_id = await pr_queries.add_review(db, pr["id"], user["id"], body.state, body.body)
    reviews = await pr_queries.list_reviews(db, pr["id"])
    review = next(r for r in reviews if r["id"] == review_id)
    await activity_service.record(
        db, "pull_request_review", user, repo, {"action": "submitted", "number": number, "state": body.state}
    )
    await notification_service.notify(
        db, repo, await notification_service.recipients(db, user, author_id=pr["author_id"], text=body.body),
        "pull_request", f"{user['username']} reviewed pull request #{number}",
        notification_service.subject_for(repo, "pull_request", number, pr["title"]),
    )
    return created(pr_queries.public_review(review))
