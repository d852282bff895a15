"""Issues and issue comments."""

from __future__ import annotations

import logging

import aiosqlite
from fastapi import APIRouter, Depends

from fakehub.api.deps import optional_user, require_user
from fakehub.api.envelope import created, ok
from fakehub.db.database import get_db, get_locks
from fakehub.db.locks import EntityLocks
from fakehub.db.queries import issues as issue_queries
from fakehub.db.queries import repositories as repo_queries
from fakehub.db.queries import users as user_queries
from fakehub.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationCollector, ValidationError
from fakehub.models.issue import CommentCreate, IssueCreate, IssueUpdate
from fakehub.services import access, activity_service, notification_service
from fakehub.services.filters import AnyOf, Equals, sort_items
from fakehub.services.pagination import paginate
from fakehub.services.search_service import ISSUE_SORT_KEYS, issue_filter, issue_records
from fakehub.utils.clock import now_iso
from fakehub.utils.validators import LABEL_MAX

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["issues"])


async def issue_payload(db: aiosqlite.Connection, issue: dict) -> dict:
    users = await user_queries.get_users_by_ids(db, issue["assignees"])
    return issue_queries.public_issue(issue, users)


def ensure_writable(repo: dict) -> None:
    if repo["archived"]:
        raise ConflictError("Repository is archived")


async def _repo_with_issues(db: aiosqlite.Connection, owner: str, name: str, user: dict | None) -> dict:
    repo = await access.get_visible_repository(db, owner, name, user)
    if not repo["has_issues"]:
        raise NotFoundError("Issues are disabled for this repository")
    return repo


async def _get_issue(db: aiosqlite.Connection, repo: dict, number: int) -> dict:
    issue = await issue_queries.get_issue_by_number(db, repo["id"], number)
    if not issue:
        raise NotFoundError("Issue not found")
    return issue


def _clean_labels(labels: list[str], errors: ValidationCollector) -> list[str]:
    cleaned: list[str] = []
    for label in labels:
        label = label.strip()
        if not label:
            errors.add("labels", "must not contain empty labels")
        elif len(label) > LABEL_MAX:
            errors.add("labels", f"labels must be at most {LABEL_MAX} characters")
        elif label not in cleaned:
            cleaned.append(label)
    return cleaned


async def _resolve_assignees(db: aiosqlite.Connection, usernames: list[str], errors: ValidationCollector) -> list[str]:
    ids: list[str] = []
    for username in usernames:
        user = await user_queries.get_user_by_username(db, username)
        if not user:
            errors.add("assignees", f"unknown user {username!r}")
        elif user["id"] not in ids:
            ids.append(user["id"])
    return ids


async def _require_issue_editor(db: aiosqlite.Connection, repo: dict, issue: dict, user: dict) -> None:
    if issue["author_id"] == user["id"]:
        return
    if await access.repository_role(db, repo, user) is None:
        raise PermissionDeniedError("Only the author or repository collaborators can edit this issue")


# ── Listing ──

@router.get("/issues")
async def list_all_issues(
    filter: str = "all",
    state: str = "open",
    labels: str | None = None,
    sort: str | None = "created",
    order: str = "desc",
    page: int = 1,
    per_page: int | None = None,
    user: dict | None = Depends(optional_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    """Issues across every repository the caller can see."""
    spec = issue_filter(state=state, labels=labels)
    if filter in ("assigned", "created"):
        if not user:
            raise ValidationError.for_field("filter", "requires authentication")
        if filter == "assigned":
            spec.add(AnyOf("assignees.username", frozenset([user["username"]])))
        else:
            spec.add(Equals("author.username", user["username"]))
    elif filter != "all":
        raise ValidationError.for_field("filter", "must be 'assigned', 'created' or 'all'")

    issues = spec.apply(await issue_records(db, await access.visible_repositories(db, user)))
    issues = sort_items(issues, sort, order, ISSUE_SORT_KEYS)
    return ok(paginate(issues, page, per_page).to_dict("issues"))


@router.get("/repositories/{owner}/{name}/issues")
async def list_issues(
    owner: str,
    name: str,
    state: str = "open",
    labels: str | None = None,
    assignee: str | None = None,
    author: str | None = None,
    q: str | None = None,
    search: str | None = None,
    sort: str | None = "created",
    order: str = "desc",
    page: int = 1,
    per_page: int | None = None,
    user: dict | None = Depends(optional_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    repo = await _repo_with_issues(db, owner, name, user)
    spec = issue_filter(state, labels, assignee, author, q or search)
    issues = sort_items(spec.apply(await issue_records(db, [repo])), sort, order, ISSUE_SORT_KEYS)
    return ok(paginate(issues, page, per_page).to_dict("issues"))


# ── Single issue ──

@router.post("/repositories/{owner}/{name}/issues")
async def create_issue(
    owner: str,
    name: str,
    body: IssueCreate,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
    locks: EntityLocks = Depends(get_locks),
):
    repo = await _repo_with_issues(db, owner, name, user)
    ensure_writable(repo)

    errors = ValidationCollector()
    if not body.title.strip():
        errors.add("title", "must not be empty")
    elif len(body.title) > 256:
        errors.add("title", "must be at most 256 characters")
    labels = _clean_labels(body.labels, errors)
    assignees = await _resolve_assignees(db, body.assignees, errors)
    errors.raise_if_any()

    async with locks.hold("repository", repo["id"]):
        number = await repo_queries.next_number(db, repo["id"])
        issue_id = await issue_queries.create_issue(
            db, repo["id"], number, body.title.strip(), user["id"], body.body, labels, assignees
        )
    await repo_queries.touch_repository(db, repo["id"])
    logger.info("Issue %s#%d opened by %s", repo["full_name"], number, user["username"])
    issue = await issue_queries.get_issue(db, issue_id)
    await activity_service.record(db, "issues", user, repo, {"action": "opened", "number": number, "title": issue["title"]})
    await notification_service.notify(
        db, repo, await notification_service.recipients(db, user, assignee_ids=assignees, text=body.body),
        "issue", f"{user['username']} opened issue #{number}",
        notification_service.subject_for(repo, "issue", number, issue["title"]),
    )
    return created(await issue_payload(db, issue))


@router.get("/repositories/{owner}/{name}/issues/{number}")
async def get_issue(
    owner: str,
    name: str,
    number: int,
    user: dict | None = Depends(optional_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    repo = await _repo_with_issues(db, owner, name, user)
    return ok(await issue_payload(db, await _get_issue(db, repo, number)))


async def _apply_update(
    db: aiosqlite.Connection, locks: EntityLocks, repo: dict, number: int, user: dict, fields: dict
) -> dict:
    errors = ValidationCollector()
    if "title" in fields:
        title = (fields["title"] or "").strip()
        if not title:
            errors.add("title", "must not be empty")
        fields["title"] = title
    if "body" in fields and fields["body"] is None:
        fields["body"] = ""
    if "state" in fields and fields["state"] not in ("open", "closed"):
        errors.add("state", "must be 'open' or 'closed'")
    if "labels" in fields:
        fields["labels"] = _clean_labels(fields["labels"] or [], errors)
    if "assignees" in fields:
        fields["assignees"] = await _resolve_assignees(db, fields["assignees"] or [], errors)
    errors.raise_if_any()

    async with locks.hold("issue", f"{repo['id']}#{number}"):
        issue = await _get_issue(db, repo, number)
        await _require_issue_editor(db, repo, issue, user)
        state_changed = "state" in fields and fields["state"] != issue["state"]
        if state_changed:
            fields["closed_at"] = now_iso() if fields["state"] == "closed" else None
        added = [a for a in fields.get("assignees", []) if a not in issue["assignees"]]
        await issue_queries.update_issue(db, issue["id"], fields)
        issue = await issue_queries.get_issue(db, issue["id"])
    if state_changed:
        logger.info("Issue %s#%d is now %s", repo["full_name"], number, issue["state"])
        action = "closed" if issue["state"] == "closed" else "reopened"
        await activity_service.record(db, "issues", user, repo, {"action": action, "number": number, "title": issue["title"]})
    if added:
        await notification_service.notify(
            db, repo, await notification_service.recipients(db, user, assignee_ids=added),
            "issue", f"{user['username']} assigned you to issue #{number}",
            notification_service.subject_for(repo, "issue", number, issue["title"]),
        )
    return await issue_payload(db, issue)


@router.patch("/repositories/{owner}/{name}/issues/{number}")
async def update_issue(
    owner: str,
    name: str,
    number: int,
    body: IssueUpdate,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
    locks: EntityLocks = Depends(get_locks),
):
    repo = await _repo_with_issues(db, owner, name, user)
    ensure_writable(repo)
    return ok(await _apply_update(db, locks, repo, number, user, body.model_dump(exclude_unset=True)))


@router.post("/repositories/{owner}/{name}/issues/{number}/close")
async def close_issue(
    owner: str,
    name: str,
    number: int,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
    locks: EntityLocks = Depends(get_locks),
):
    repo = await _repo_with_issues(db, owner, name, user)
    ensure_writable(repo)
    return ok(await _apply_update(db, locks, repo, number, user, {"state": "closed"}))


@router.post("/repositories/{owner}/{name}/issues/{number}/reopen")
async def reopen_issue(
    owner: str,
    name: str,
    number: int,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
    locks: EntityLocks = Depends(get_locks),
):
    repo = await _repo_with_issues(db, owner, name, user)
    ensure_writable(repo)
    return ok(await _apply_update(db, locks, repo, number, user, {"state": "open"}))


# ── Comments ──

@router.get("/repositories/{owner}/{name}/issues/{number}/comments")
async def list_comments(
    owner: str,
    name: str,
    number: int,
    page: int = 1,
    per_page: int | None = None,
    user: dict | None = Depends(optional_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    repo = await _repo_with_issues(db, owner, name, user)
    issue = await _get_issue(db, repo, number)
    comments = [issue_queries.public_comment(c) for c in await issue_queries.list_comments(db, issue["id"])]
    return ok(paginate(comments, page, per_page).to_dict("comments"))


@router.post("/repositories/{owner}/{name}/issues/{number}/comments")
async def add_comment(
    owner: str,
    name: str,
    number: int,
    body: CommentCreate,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
    locks: EntityLocks = Depends(get_locks),
):
    repo = await _repo_with_issues(db, owner, name, user)
    ensure_writable(repo)
    if not body.body.strip():
        raise ValidationError.for_field("body", "must not be empty")
    async with locks.hold("issue", f"{repo['id']}#{number}"):
        issue = await _get_issue(db, repo, number)
        comment_id = await issue_queries.add_comment(db, issue["id"], user["id"], body.body)
    await activity_service.record(
        db, "issue_comment", user, repo, {"action": "created", "number": number, "comment_id": comment_id}
    )
    await notification_service.notify(
        db, repo, await notification_service.recipients(db, user, author_id=issue["author_id"], text=body.body),
        "issue", f"{user['username']} commented on issue #{number}",
        notification_service.subject_for(repo, "issue", number, issue["title"]),
    )
    return created(issue_queries.public_comment(await issue_queries.get_comment(db, comment_id)))
