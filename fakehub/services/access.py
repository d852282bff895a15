"""Visibility and role checks for repositories and organizations.

Private things a caller cannot see are reported as missing (404), never as
forbidden, so their existence does not leak. Role denials on things the
caller can see are 403.
"""

from __future__ import annotations

import aiosqlite

from fakehub.db.queries import organizations as org_queries
from fakehub.db.queries import repositories as repo_queries
from fakehub.errors import AuthenticationError, NotFoundError, PermissionDeniedError

ADMIN_ROLES = ("owner", "admin")


async def viewer_org_ids(db: aiosqlite.Connection, user: dict | None) -> set[str]:
    if not user:
        return set()
    return await org_queries.list_org_ids_for_user(db, user["id"])


def can_view_repository(repo: dict, user: dict | None, org_ids: set[str]) -> bool:
    if not repo["private"]:
        return True
    if not user:
        return False
    if repo["owner_type"] == "user":
        return repo["owner_id"] == user["id"]
    return repo["owner_id"] in org_ids


async def visible_repositories(db: aiosqlite.Connection, user: dict | None) -> list[dict]:
    org_ids = await viewer_org_ids(db, user)
    return [r for r in await repo_queries.list_repositories(db) if can_view_repository(r, user, org_ids)]


async def get_visible_repository(db: aiosqlite.Connection, owner: str, name: str, user: dict | None) -> dict:
    repo = await repo_queries.get_repository_by_full_name(db, owner, name)
    if not repo or not can_view_repository(repo, user, await viewer_org_ids(db, user)):
        raise NotFoundError("Repository not found")
    return repo


async def repository_role(db: aiosqlite.Connection, repo: dict, user: dict | None) -> str | None:
    """``admin`` for the owner or org owners/admins, ``write`` for other org members."""
    if not user:
        return None
    if repo["owner_type"] == "user":
        return "admin" if repo["owner_id"] == user["id"] else None
    member = await org_queries.get_member(db, repo["owner_id"], user["id"])
    if not member:
        return None
    return "admin" if member["role"] in ADMIN_ROLES else "write"


async def require_repository_admin(db: aiosqlite.Connection, repo: dict, user: dict | None) -> None:
    if not user:
        raise AuthenticationError()
    if await repository_role(db, repo, user) != "admin":
        raise PermissionDeniedError("Repository admin access required")


async def require_repository_write(db: aiosqlite.Connection, repo: dict, user: dict | None) -> None:
    if not user:
        raise AuthenticationError()
    if await repository_role(db, repo, user) is None:
        raise PermissionDeniedError("Write access to this repository is required")


async def get_visible_org(db: aiosqlite.Connection, slug: str, user: dict | None) -> dict:
    org = await org_queries.get_org_by_slug(db, slug)
    if not org:
        raise NotFoundError("Organization not found")
    if org["visibility"] == "private" and org["id"] not in await viewer_org_ids(db, user):
        raise NotFoundError("Organization not found")
    return org


async def org_member(db: aiosqlite.Connection, org: dict, user: dict | None) -> dict | None:
    if not user:
        return None
    return await org_queries.get_member(db, org["id"], user["id"])


async def require_org_role(
    db: aiosqlite.Connection, org: dict, user: dict | None, roles: tuple[str, ...] = ADMIN_ROLES
) -> dict:
    """The caller's membership, if its role is one of ``roles``."""
    if not user:
        raise AuthenticationError()
    member = await org_member(db, org, user)
    if not member:
        raise PermissionDeniedError("You are not a member of this organization")
    if member["role"] not in roles:
        raise PermissionDeniedError(f"Requires organization role: {' or '.join(roles)}")
    return member
