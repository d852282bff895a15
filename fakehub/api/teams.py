"""Teams inside an organization: hierarchy, members and repository grants."""

from __future__ import annotations

import logging

import aiosqlite
from fastapi import APIRouter, Depends

from fakehub.api.deps import optional_user, require_user
from fakehub.api.envelope import created, ok
from fakehub.db.database import get_db, get_locks
from fakehub.db.locks import EntityLocks
from fakehub.db.queries import organizations as org_queries
from fakehub.db.queries import repositories as repo_queries
from fakehub.db.queries import teams as team_queries
from fakehub.errors import ConflictError, NotFoundError, ValidationCollector, ValidationError
from fakehub.models.organization import TeamCreate, TeamRepositoryPermission, TeamUpdate
from fakehub.services import access, audit_service
from fakehub.services.pagination import paginate
from fakehub.utils.validators import SLUG_RE, VALID_TEAM_PERMISSIONS, VALID_TEAM_PRIVACY, slugify

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/organizations/{slug}/teams", tags=["teams"])


async def _can_see_secret(db: aiosqlite.Connection, org: dict, user: dict | None) -> bool:
    member = await access.org_member(db, org, user)
    return bool(member and member["role"] in access.ADMIN_ROLES)


async def _get_team(db: aiosqlite.Connection, org: dict, team_slug: str, user: dict | None) -> dict:
    team = await team_queries.get_team_by_slug(db, org["id"], team_slug)
    if not team:
        raise NotFoundError("Team not found")
    if team["privacy"] == "secret" and not await _can_see_secret(db, org, user):
        if not user or not await team_queries.is_team_member(db, team["id"], user["id"]):
            raise NotFoundError("Team not found")
    return team


async def _detail(db: aiosqlite.Connection, team: dict) -> dict:
    data = team_queries.public_team(team)
    data["members"] = await team_queries.list_team_members(db, team["id"])
    data["repositories"] = await team_queries.list_team_repositories(db, team["id"])
    return data


async def _resolve_parent(db: aiosqlite.Connection, org: dict, parent_slug: str) -> dict:
    parent = await team_queries.get_team_by_slug(db, org["id"], parent_slug)
    if not parent:
        raise ValidationError.for_field("parent", f"unknown team {parent_slug!r}")
    if parent["privacy"] == "secret":
        raise ValidationError.for_field("parent", "secret teams cannot have child teams")
    return parent


@router.get("")
async def list_teams(
    slug: str,
    page: int = 1,
    per_page: int | None = None,
    user: dict | None = Depends(optional_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    org = await access.get_visible_org(db, slug, user)
    teams = await team_queries.list_teams(db, org["id"])
    if not await _can_see_secret(db, org, user):
        mine = set()
        if user:
            mine = {t["id"] for t in teams if await team_queries.is_team_member(db, t["id"], user["id"])}
        teams = [t for t in teams if t["privacy"] != "secret" or t["id"] in mine]
    return ok(paginate([team_queries.public_team(t) for t in teams], page, per_page).to_dict("teams"))


@router.post("")
async def create_team(
    slug: str,
    body: TeamCreate,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
    locks: EntityLocks = Depends(get_locks),
):
    org = await access.get_visible_org(db, slug, user)
    await access.require_org_role(db, org, user)

    team_slug = body.slug or slugify(body.name)
    errors = ValidationCollector()
    if not body.name.strip():
        errors.add("name", "must not be empty")
    if not SLUG_RE.match(team_slug):
        errors.add("slug", "may only contain lowercase letters, digits and single hyphens")
    if body.privacy not in VALID_TEAM_PRIVACY:
        errors.add("privacy", "must be 'closed' or 'secret'")
    elif body.privacy == "secret" and body.parent:
        errors.add("privacy", "secret teams cannot be nested")
    errors.raise_if_any()

    async with locks.hold("org", org["id"]):
        if await team_queries.get_team_by_slug(db, org["id"], team_slug):
            raise ConflictError(f"Team {team_slug} already exists")
        parent_id = (await _resolve_parent(db, org, body.parent))["id"] if body.parent else None
        team_id = await team_queries.create_team(
            db, org["id"], body.name.strip(), team_slug, body.description, parent_id, body.privacy
        )
        await team_queries.add_team_member(db, team_id, user["id"])

    await audit_service.record(db, "team.created", user, target=team_slug, org_id=org["id"])
    return created(await _detail(db, await team_queries.get_team(db, team_id)))


@router.get("/{team_slug}")
async def get_team(
    slug: str,
    team_slug: str,
    user: dict | None = Depends(optional_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    org = await access.get_visible_org(db, slug, user)
    return ok(await _detail(db, await _get_team(db, org, team_slug, user)))


@router.patch("/{team_slug}")
async def update_team(
    slug: str,
    team_slug: str,
    body: TeamUpdate,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
    locks: EntityLocks = Depends(get_locks),
):
    org = await access.get_visible_org(db, slug, user)
    await access.require_org_role(db, org, user)
    fields = body.model_dump(exclude_unset=True)

    errors = ValidationCollector()
    if "name" in fields and not (fields["name"] or "").strip():
        errors.add("name", "must not be empty")
    if "privacy" in fields and fields["privacy"] not in VALID_TEAM_PRIVACY:
        errors.add("privacy", "must be 'closed' or 'secret'")
    errors.raise_if_any()

    async with locks.hold("org", org["id"]):
        team = await _get_team(db, org, team_slug, user)
        if "parent" in fields:
            parent_slug = fields.pop("parent")
            if parent_slug is None:
                fields["parent_id"] = None
            else:
                parent = await _resolve_parent(db, org, parent_slug)
                if team["id"] in await team_queries.ancestor_ids(db, parent["id"]):
                    raise ValidationError.for_field("parent", "would create a cycle in the team hierarchy")
                fields["parent_id"] = parent["id"]
        if fields.get("privacy", team["privacy"]) == "secret" and fields.get("parent_id", team["parent_id"]):
            raise ValidationError.for_field("privacy", "secret teams cannot be nested")
        await team_queries.update_team(db, team["id"], fields)
        team = await team_queries.get_team(db, team["id"])

    await audit_service.record(db, "team.updated", user, target=team_slug, details={"fields": sorted(fields)}, org_id=org["id"])
    return ok(await _detail(db, team))


@router.delete("/{team_slug}")
async def delete_team(
    slug: str,
    team_slug: str,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
    locks: EntityLocks = Depends(get_locks),
):
    """Child teams move up to the deleted team's parent."""
    org = await access.get_visible_org(db, slug, user)
    await access.require_org_role(db, org, user)
    async with locks.hold("org", org["id"]):
        team = await _get_team(db, org, team_slug, user)
        await team_queries.delete_team(db, team)
    await audit_service.record(db, "team.deleted", user, target=team_slug, org_id=org["id"])
    return ok({"deleted": True})


# ── Members ──

@router.put("/{team_slug}/members/{user_id}")
async def add_team_member(
    slug: str,
    team_slug: str,
    user_id: str,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    org = await access.get_visible_org(db, slug, user)
    await access.require_org_role(db, org, user)
    team = await _get_team(db, org, team_slug, user)
    member = await org_queries.get_member(db, org["id"], user_id)
    if not member:
        raise ValidationError.for_field("user_id", "must be a member of the organization")
    await team_queries.add_team_member(db, team["id"], user_id)
    await audit_service.record(db, "team.member_added", user, target=member["username"],
                               details={"team": team_slug}, org_id=org["id"])
    return ok(await _detail(db, await team_queries.get_team(db, team["id"])))


@router.delete("/{team_slug}/members/{user_id}")
async def remove_team_member(
    slug: str,
    team_slug: str,
    user_id: str,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    org = await access.get_visible_org(db, slug, user)
    await access.require_org_role(db, org, user)
    team = await _get_team(db, org, team_slug, user)
    if not await team_queries.remove_team_member(db, team["id"], user_id):
        raise NotFoundError("Team member not found")
    await audit_service.record(db, "team.member_removed", user, target=user_id,
                               details={"team": team_slug}, org_id=org["id"])
    return ok({"deleted": True})


# ── Repositories ──

async def _org_repository(db: aiosqlite.Connection, org: dict, owner: str, name: str) -> dict:
    repo = await repo_queries.get_repository_by_full_name(db, owner, name)
    if not repo or repo["owner_id"] != org["id"]:
        raise NotFoundError("Repository not found")
    return repo


@router.put("/{team_slug}/repositories/{owner}/{name}")
async def grant_repository(
    slug: str,
    team_slug: str,
    owner: str,
    name: str,
    body: TeamRepositoryPermission | None = None,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    permission = (body or TeamRepositoryPermission()).permission
    if permission not in VALID_TEAM_PERMISSIONS:
        raise ValidationError.for_field("permission", f"must be one of: {', '.join(VALID_TEAM_PERMISSIONS)}")
    org = await access.get_visible_org(db, slug, user)
    await access.require_org_role(db, org, user)
    team = await _get_team(db, org, team_slug, user)
    repo = await _org_repository(db, org, owner, name)
    await team_queries.set_team_repository(db, team["id"], repo["id"], permission)
    return ok(await _detail(db, await team_queries.get_team(db, team["id"])))


@router.delete("/{team_slug}/repositories/{owner}/{name}")
async def revoke_repository(
    slug: str,
    team_slug: str,
    owner: str,
    name: str,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    org = await access.get_visible_org(db, slug, user)
    await access.require_org_role(db, org, user)
    team = await _get_team(db, org, team_slug, user)
    repo = await _org_repository(db, org, owner, name)
    if not await team_queries.remove_team_repository(db, team["id"], repo["id"]):
        raise NotFoundError("Repository is not assigned to this team")
    return ok({"deleted": True})
