"""Repository listing, creation and settings."""

from __future__ import annotations

import logging

import aiosqlite
from fastapi import APIRouter, Depends

from fakehub.api.deps import optional_user, require_user
from fakehub.api.envelope import created, ok
from fakehub.db.database import get_db, get_locks
from fakehub.db.locks import EntityLocks
from fakehub.db.queries import repositories as repo_queries
from fakehub.errors import ConflictError, PermissionDeniedError, ValidationCollector, ValidationError
from fakehub.models.repository import RepositoryCreate, RepositoryUpdate
from fakehub.services import access, activity_service, audit_service
from fakehub.services.filters import Equals, sort_items
from fakehub.services.pagination import paginate
from fakehub.services.search_service import REPO_SORT_KEYS, repository_filter
from fakehub.utils.validators import is_valid_repo_name

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/repositories", tags=["repositories"])


def _check_fields(fields: dict) -> None:
    errors = ValidationCollector()
    if "name" in fields and not is_valid_repo_name(fields["name"] or ""):
        errors.add("name", "may only contain letters, digits, '.', '-' and '_'")
    if "description" in fields and fields["description"] and len(fields["description"]) > 350:
        errors.add("description", "must be at most 350 characters")
    if "default_branch" in fields and not (fields["default_branch"] or "").strip():
        errors.add("default_branch", "must not be empty")
    for key in ("private", "archived", "has_issues"):
        if key in fields and fields[key] is None:
            errors.add(key, "must be true or false")
    errors.raise_if_any()


@router.get("")
async def list_repositories(
    search: str | None = None,
    q: str | None = None,
    owner: str | None = None,
    language: str | None = None,
    visibility: str | None = None,
    stars: str | None = None,
    state: str = "active",
    sort: str | None = "updated",
    order: str = "desc",
    page: int = 1,
    per_page: int | None = None,
    user: dict | None = Depends(optional_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    spec = repository_filter(search or q, language, stars, visibility, owner)
    if state == "active":
        spec.add(Equals("archived", False))
    elif state == "archived":
        spec.add(Equals("archived", True))
    elif state != "all":
        raise ValidationError.for_field("state", "must be 'active', 'archived' or 'all'")

    repos = [repo_queries.public_repository(r) for r in await access.visible_repositories(db, user)]
    repos = sort_items(spec.apply(repos), sort, order, REPO_SORT_KEYS)
    return ok(paginate(repos, page, per_page).to_dict("repositories"))


@router.post("")
async def create_repository(
    body: RepositoryCreate,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
    locks: EntityLocks = Depends(get_locks),
):
    _check_fields(body.model_dump())

    if body.organization:
        org = await access.get_visible_org(db, body.organization, user)
        member = await access.org_member(db, org, user)
        if not member:
            raise PermissionDeniedError("You are not a member of this organization")
        if member["role"] not in access.ADMIN_ROLES and not org["allow_member_repositories"]:
            raise PermissionDeniedError("Members may not create repositories in this organization")
        owner_id, owner_type, owner_login = org["id"], "organization", org["slug"]
    else:
        owner_id, owner_type, owner_login = user["id"], "user", user["username"]

    async with locks.hold("repository_names", owner_id):
        if await repo_queries.get_repository_by_full_name(db, owner_login, body.name):
            raise ConflictError(f"Repository {owner_login}/{body.name} already exists")
        repo_id = await repo_queries.create_repository(
            db, owner_id, owner_type, owner_login, body.name, body.description,
            body.private, body.language, body.default_branch,
        )
    if owner_type == "organization":
        await audit_service.record(db, "repository.created", user, target=f"{owner_login}/{body.name}", org_id=owner_id)
    repo = await repo_queries.get_repository(db, repo_id)
    await activity_service.record(db, "create", user, repo, {"ref_type": "repository", "private": bool(repo["private"])})
    logger.info("Repository %s/%s created by %s", owner_login, body.name, user["username"])
    return created(repo_queries.public_repository(repo))


@router.get("/{owner}/{name}")
async def get_repository(
    owner: str,
    name: str,
    user: dict | None = Depends(optional_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    repo = await access.get_visible_repository(db, owner, name, user)
    data = repo_queries.public_repository(repo)
    data["permission"] = await access.repository_role(db, repo, user)
    return ok(data)


@router.put("/{owner}/{name}")
async def update_repository(
    owner: str,
    name: str,
    body: RepositoryUpdate,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
    locks: EntityLocks = Depends(get_locks),
):
    repo = await access.get_visible_repository(db, owner, name, user)
    await access.require_repository_admin(db, repo, user)
    fields = body.model_dump(exclude_unset=True)
    _check_fields(fields)

    async with locks.hold("repository_names", repo["owner_id"]), locks.hold("repository", repo["id"]):
        if "name" in fields and fields["name"].lower() != repo["name"].lower():
            if await repo_queries.get_repository_by_full_name(db, repo["owner_login"], fields["name"]):
                raise ConflictError(f"Repository {repo['owner_login']}/{fields['name']} already exists")
        await repo_queries.update_repository(db, repo, fields)
        updated = await repo_queries.get_repository(db, repo["id"])
    return ok(repo_queries.public_repository(updated))


@router.delete("/{owner}/{name}")
async def delete_repository(
    owner: str,
    name: str,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
    locks: EntityLocks = Depends(get_locks),
):
    repo = await access.get_visible_repository(db, owner, name, user)
    await access.require_repository_admin(db, repo, user)
    async with locks.hold("repository", repo["id"]):
        await repo_queries.soft_delete_repository(db, repo["id"])
    if repo["owner_type"] == "organization":
        await audit_service.record(db, "repository.deleted", user, target=repo["full_name"], org_id=repo["owner_id"])
    logger.info("Repository %s deleted by %s", repo["full_name"], user["username"])
    return ok({"deleted": True})
