"""User profiles."""

from __future__ import annotations

import aiosqlite
from fastapi import APIRouter, Depends

from fakehub.api.deps import optional_user, require_user
from fakehub.api.envelope import ok
from fakehub.db.database import get_db, get_locks
from fakehub.db.locks import EntityLocks
from fakehub.db.queries import users as user_queries
from fakehub.errors import ConflictError, NotFoundError, ValidationCollector
from fakehub.models.user import UserUpdate
from fakehub.services.filters import Contains, FilterSpec, sort_items
from fakehub.services.pagination import paginate
from fakehub.services.search_service import TEXT_FIELDS, USER_SORT_KEYS, user_records
from fakehub.utils.validators import is_valid_email

router = APIRouter(prefix="/api/v1", tags=["users"])


def _profile(user: dict, viewer: dict | None) -> dict:
    data = user_queries.public_user(user)
    if not viewer or viewer["id"] != user["id"]:
        data.pop("email")
    return data


@router.get("/users/search")
async def search_users(
    q: str | None = None,
    sort: str | None = None,
    order: str = "desc",
    page: int = 1,
    per_page: int | None = None,
    db: aiosqlite.Connection = Depends(get_db),
):
    spec = FilterSpec()
    if q:
        spec.add(Contains(TEXT_FIELDS["users"], q))
    users = sort_items(spec.apply(await user_records(db)), sort, order, USER_SORT_KEYS)
    return ok(paginate(users, page, per_page).to_dict("users"))


@router.get("/users/{username}")
async def get_user(
    username: str,
    viewer: dict | None = Depends(optional_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    user = await user_queries.get_user_by_username(db, username)
    if not user:
        raise NotFoundError("User not found")
    return ok(_profile(user, viewer))


@router.patch("/user")
async def update_user(
    body: UserUpdate,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
    locks: EntityLocks = Depends(get_locks),
):
    fields = body.model_dump(exclude_unset=True)
    errors = ValidationCollector()
    if "email" in fields and not is_valid_email(fields["email"] or ""):
        errors.add("email", "must be a valid email address")
    if "name" in fields and fields["name"] is not None and len(fields["name"]) > 100:
        errors.add("name", "must be at most 100 characters")
    if "bio" in fields and fields["bio"] is not None and len(fields["bio"]) > 500:
        errors.add("bio", "must be at most 500 characters")
    if "website" in fields and fields["website"] and not fields["website"].startswith(("http://", "https://")):
        errors.add("website", "must start with http:// or https://")
    if "preferred_mfa" in fields and fields["preferred_mfa"] not in ("totp", "webauthn"):
        errors.add("preferred_mfa", "must be 'totp' or 'webauthn'")
    errors.raise_if_any()

    async with locks.hold("user", user["id"]), locks.hold("accounts", "identity"):
        if "email" in fields:
            other = await user_queries.get_user_by_email(db, fields["email"])
            if other and other["id"] != user["id"]:
                raise ConflictError("Email is already registered")
        await user_queries.update_profile(db, user["id"], fields)
        updated = await user_queries.get_user(db, user["id"])
    return ok(user_queries.public_user(updated))
