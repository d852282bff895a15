"""Organizations: profile, settings, members, invitations, audit log and analytics."""

from __future__ import annotations

import logging

import aiosqlite
from fastapi import APIRouter, Depends

from fakehub.api.deps import optional_user, require_user
from fakehub.api.envelope import created, ok
from fakehub.db.database import get_db, get_locks
from fakehub.db.locks import EntityLocks
from fakehub.db.queries import audit_logs as audit_queries
from fakehub.db.queries import organizations as org_queries
from fakehub.db.queries import teams as team_queries
from fakehub.db.queries import users as user_queries
from fakehub.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationCollector, ValidationError
from fakehub.models.organization import (
    InvitationCreate,
    MemberRoleUpdate,
    OrganizationCreate,
    OrganizationSettings,
    OrganizationUpdate,
)
from fakehub.services import access, analytics_service, audit_service
from fakehub.services.filters import Contains, Equals, FilterSpec, sort_items
from fakehub.services.pagination import paginate
from fakehub.services.search_service import ORG_SORT_KEYS, TEXT_FIELDS, organization_records
from fakehub.utils.validators import SLUG_RE, VALID_ORG_ROLES, VALID_VISIBILITY, is_valid_email, slugify

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["organizations"])


def _check_profile(fields: dict, errors: ValidationCollector) -> None:
    if "name" in fields and not (fields["name"] or "").strip():
        errors.add("name", "must not be empty")
    if "description" in fields and fields["description"] and len(fields["description"]) > 500:
        errors.add("description", "must be at most 500 characters")
    if "website" in fields and fields["website"] and not fields["website"].startswith(("http://", "https://")):
        errors.add("website", "must start with http:// or https://")


@router.get("/organizations")
async def list_organizations(
    q: str | None = None,
    sort: str | None = "name",
    order: str = "asc",
    page: int = 1,
    per_page: int | None = None,
    user: dict | None = Depends(optional_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    spec = FilterSpec()
    if q:
        spec.add(Contains(TEXT_FIELDS["organizations"], q))
    orgs = sort_items(spec.apply(await organization_records(db, user)), sort, order, ORG_SORT_KEYS)
    return ok(paginate(orgs, page, per_page).to_dict("organizations"))


@router.post("/organizations")
async def create_organization(
    body: OrganizationCreate,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
    locks: EntityLocks = Depends(get_locks),
):
    slug = body.slug or slugify(body.name)
    errors = ValidationCollector()
    _check_profile(body.model_dump(), errors)
    if not SLUG_RE.match(slug):
        errors.add("slug", "may only contain lowercase letters, digits and single hyphens")
    if body.visibility not in VALID_VISIBILITY:
        errors.add("visibility", "must be 'public' or 'private'")
    errors.raise_if_any()

    async with locks.hold("organization_slug", slug):
        if await org_queries.get_org_by_slug(db, slug):
            raise ConflictError(f"Organization {slug} already exists")
        org_id = await org_queries.create_org(
            db, body.name.strip(), slug, user["id"], body.description, body.website, body.location,
            visibility=body.visibility,
        )
    await audit_service.record(db, "org.created", user, target=slug, org_id=org_id)
    return created(org_queries.public_org(await org_queries.get_org(db, org_id)))


@router.get("/organizations/{slug}")
async def get_organization(
    slug: str,
    user: dict | None = Depends(optional_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    org = await access.get_visible_org(db, slug, user)
    member = await access.org_member(db, org, user)
    data = org_queries.public_org(org)
    data["role"] = member["role"] if member else None
    return ok(data)


@router.patch("/organizations/{slug}")
async def update_organization(
    slug: str,
    body: OrganizationUpdate,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
    locks: EntityLocks = Depends(get_locks),
):
    org = await access.get_visible_org(db, slug, user)
    await access.require_org_role(db, org, user)
    fields = body.model_dump(exclude_unset=True)
    errors = ValidationCollector()
    _check_profile(fields, errors)
    errors.raise_if_any()

    async with locks.hold("org", org["id"]):
        await org_queries.update_org(db, org["id"], fields)
        updated = await org_queries.get_org(db, org["id"])
    await audit_service.record(db, "org.updated", user, target=slug, details={"fields": sorted(fields)}, org_id=org["id"])
    return ok(org_queries.public_org(updated))


# ── Settings ──

@router.get("/organizations/{slug}/settings")
async def get_settings(
    slug: str,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    org = await access.get_visible_org(db, slug, user)
    await access.require_org_role(db, org, user, VALID_ORG_ROLES)
    return ok(org_queries.public_settings(org))


@router.put("/organizations/{slug}/settings")
async def update_settings(
    slug: str,
    body: OrganizationSettings,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
    locks: EntityLocks = Depends(get_locks),
):
    org = await access.get_visible_org(db, slug, user)
    await access.require_org_role(db, org, user)
    fields = {k: v for k, v in body.model_dump(exclude_unset=True).items() if v is not None}

    errors = ValidationCollector()
    for key in ("visibility", "member_visibility"):
        if key in fields and fields[key] not in VALID_VISIBILITY:
            errors.add(key, "must be 'public' or 'private'")
    errors.raise_if_any()

    async with locks.hold("org", org["id"]):
        before = org_queries.public_settings(org)
        await org_queries.update_org(db, org["id"], fields)
        updated = await org_queries.get_org(db, org["id"])
    after = org_queries.public_settings(updated)
    changed = {k: {"from": before[k], "to": v} for k, v in after.items() if before[k] != v}
    if changed:
        await audit_service.record(db, "org.settings_updated", user, target=slug, details=changed, org_id=org["id"])
    return ok(after)


# ── Members ──

@router.get("/organizations/{slug}/members")
async def list_members(
    slug: str,
    role: str | None = None,
    q: str | None = None,
    page: int = 1,
    per_page: int | None = None,
    user: dict | None = Depends(optional_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    org = await access.get_visible_org(db, slug, user)
    viewer = await access.org_member(db, org, user)
    if org["member_visibility"] == "private" and not viewer:
        raise PermissionDeniedError("Members of this organization are private")

    members = [org_queries.public_member(m) for m in await org_queries.list_members(db, org["id"])]
    if not viewer or viewer["role"] not in access.ADMIN_ROLES:
        for member in members:
            member.pop("email")
    spec = FilterSpec()
    if role:
        spec.add(Equals("role", role))
    if q:
        spec.add(Contains(("username", "name"), q))
    return ok(paginate(spec.apply(members), page, per_page).to_dict("members"))


async def _require_target_member(db: aiosqlite.Connection, org: dict, user_id: str) -> dict:
    member = await org_queries.get_member(db, org["id"], user_id)
    if not member:
        raise NotFoundError("Member not found")
    return member


@router.patch("/organizations/{slug}/members/{user_id}")
async def change_member_role(
    slug: str,
    user_id: str,
    body: MemberRoleUpdate,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
    locks: EntityLocks = Depends(get_locks),
):
    if body.role not in VALID_ORG_ROLES:
        raise ValidationError.for_field("role", f"must be one of: {', '.join(VALID_ORG_ROLES)}")
    org = await access.get_visible_org(db, slug, user)
    actor = await access.require_org_role(db, org, user)

    async with locks.hold("org", org["id"]):
        target = await _require_target_member(db, org, user_id)
        if "owner" in (body.role, target["role"]) and actor["role"] != "owner":
            raise PermissionDeniedError("Only owners can grant or revoke the owner role")
        if target["role"] == "owner" and body.role != "owner" and await org_queries.count_owners(db, org["id"]) <= 1:
            raise ConflictError("An organization must keep at least one owner")
        await org_queries.set_member_role(db, org["id"], user_id, body.role)
        updated = await org_queries.get_member(db, org["id"], user_id)

    if target["role"] != body.role:
        await audit_service.record(
            db, "member.role_changed", user, target=target["username"],
            details={"from": target["role"], "to": body.role}, org_id=org["id"],
        )
    return ok(org_queries.public_member(updated))


@router.delete("/organizations/{slug}/members/{user_id}")
async def remove_member(
    slug: str,
    user_id: str,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
    locks: EntityLocks = Depends(get_locks),
):
    """Admins remove anyone; members may remove themselves."""
    org = await access.get_visible_org(db, slug, user)
    if user_id == user["id"]:
        actor = await access.require_org_role(db, org, user, VALID_ORG_ROLES)
    else:
        actor = await access.require_org_role(db, org, user)

    async with locks.hold("org", org["id"]):
        target = await _require_target_member(db, org, user_id)
        if target["role"] == "owner":
            if actor["role"] != "owner":
                raise PermissionDeniedError("Only owners can remove an owner")
            if await org_queries.count_owners(db, org["id"]) <= 1:
                raise ConflictError("An organization must keep at least one owner")
        await org_queries.remove_member(db, org["id"], user_id)

    await audit_service.record(db, "member.removed", user, target=target["username"], org_id=org["id"])
    return ok({"deleted": True})


# ── Invitations ──

@router.get("/organizations/{slug}/invitations")
async def list_invitations(
    slug: str,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    org = await access.get_visible_org(db, slug, user)
    await access.require_org_role(db, org, user)
    rows = await org_queries.list_pending_invitations(db, org["id"])
    return ok({"items": [org_queries.public_invitation(r) for r in rows]})


@router.post("/organizations/{slug}/invitations")
async def invite_member(
    slug: str,
    body: InvitationCreate,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
    locks: EntityLocks = Depends(get_locks),
):
    org = await access.get_visible_org(db, slug, user)
    actor = await access.require_org_role(db, org, user)

    email = body.email.strip().lower()
    errors = ValidationCollector()
    if not is_valid_email(email):
        errors.add("email", "must be a valid email address")
    if body.role not in VALID_ORG_ROLES:
        errors.add("role", f"must be one of: {', '.join(VALID_ORG_ROLES)}")
    elif body.role == "owner" and actor["role"] != "owner":
        errors.add("role", "only owners can invite owners")
    for team_slug in body.teams:
        if not await team_queries.get_team_by_slug(db, org["id"], team_slug):
            errors.add("teams", f"unknown team {team_slug!r}")
    errors.raise_if_any()

    async with locks.hold("org", org["id"]):
        existing = await user_queries.get_user_by_email(db, email)
        if existing and await org_queries.get_member(db, org["id"], existing["id"]):
            raise ConflictError("User is already a member of this organization")
        pending = await org_queries.list_pending_invitations(db, org["id"])
        if any(i["email"].lower() == email for i in pending):
            raise ConflictError("An invitation for this email is already pending")
        invitation_id = await org_queries.create_invitation(db, org["id"], email, body.role, body.teams, user["id"])

    await audit_service.record(
        db, "member.invited", user, target=email, details={"role": body.role, "teams": body.teams}, org_id=org["id"]
    )
    return created(org_queries.public_invitation(await org_queries.get_invitation(db, invitation_id)))


@router.post("/invitations/{invitation_id}/accept")
async def accept_invitation(
    invitation_id: str,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
    locks: EntityLocks = Depends(get_locks),
):
    invitation = await org_queries.get_invitation(db, invitation_id)
    if not invitation or invitation["email"].lower() != (user["email"] or "").lower():
        raise NotFoundError("Invitation not found")
    org = await org_queries.get_org(db, invitation["org_id"])
    if org["require_two_factor"] and not user["mfa_enabled"]:
        raise PermissionDeniedError("This organization requires two-factor authentication")

    async with locks.hold("org", org["id"]):
        if not await org_queries.mark_invitation_accepted(db, invitation_id):
            raise ConflictError("Invitation was already accepted")
        await org_queries.add_member(db, org["id"], user["id"], invitation["role"])
        for team_slug in org_queries.public_invitation(invitation)["teams"]:
            team = await team_queries.get_team_by_slug(db, org["id"], team_slug)
            if team:
                await team_queries.add_team_member(db, team["id"], user["id"])

    await audit_service.record(
        db, "member.joined", user, target=user["username"], details={"role": invitation["role"]}, org_id=org["id"]
    )
    logger.info("%s joined %s as %s", user["username"], org["slug"], invitation["role"])
    return ok(org_queries.public_member(await org_queries.get_member(db, org["id"], user["id"])))


# ── Audit log and analytics ──

@router.get("/organizations/{slug}/audit-logs")
async def org_audit_log(
    slug: str,
    event: str | None = None,
    actor: str | None = None,
    since: str | None = None,
    until: str | None = None,
    page: int = 1,
    per_page: int | None = None,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    org = await access.get_visible_org(db, slug, user)
    await access.require_org_role(db, org, user)
    entries = [audit_queries.public_entry(e) for e in await audit_queries.list_for_org(db, org["id"])]
    entries = audit_service.build_filter(event, actor, since, until).apply(entries)
    return ok(paginate(entries, page, per_page).to_dict("logs"))


@router.get("/organizations/{slug}/analytics")
async def org_analytics(
    slug: str,
    period: str = "30d",
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    org = await access.get_visible_org(db, slug, user)
    await access.require_org_role(db, org, user)
    return ok(await analytics_service.org_analytics(db, org, period))
