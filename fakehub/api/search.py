"""Unified search, pull request search and saved searches."""

from __future__ import annotations

import aiosqlite
from fastapi import APIRouter, Depends

from fakehub.api.deps import optional_user, require_user
from fakehub.api.envelope import created, ok
from fakehub.db.database import get_db
from fakehub.db.queries import saved_searches as saved_queries
from fakehub.errors import NotFoundError, ValidationError
from fakehub.models.fixtures import SavedSearchCreate
from fakehub.services import access
from fakehub.services.filters import sort_items
from fakehub.services.pagination import paginate
from fakehub.services.search_service import (
    PR_SORT_KEYS,
    SearchParams,
    pull_request_filter,
    pull_request_records,
    search,
)

router = APIRouter(prefix="/api/v1/search", tags=["search"])


@router.get("")
async def unified_search(
    q: str | None = None,
    type: str | None = None,
    state: str | None = None,
    labels: str | None = None,
    assignee: str | None = None,
    author: str | None = None,
    language: str | None = None,
    stars: str | None = None,
    visibility: str | None = None,
    sort: str | None = None,
    order: str = "desc",
    page: int = 1,
    per_page: int | None = None,
    user: dict | None = Depends(optional_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    params = SearchParams(
        q=q, type=type, state=state, labels=labels, assignee=assignee, author=author,
        language=language, stars=stars, visibility=visibility, sort=sort, order=order,
        page=page, per_page=per_page,
    )
    return ok(await search(db, user, params))


@router.get("/pullrequests")
async def search_pull_requests(
    q: str | None = None,
    status: str | None = None,
    review_state: str | None = None,
    author: str | None = None,
    repo: str | None = None,
    sort: str | None = "created",
    order: str = "desc",
    page: int = 1,
    per_page: int | None = None,
    user: dict | None = Depends(optional_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    """Pull requests across every visible repository."""
    spec = pull_request_filter(status, review_state, author, q, repo)
    records = await pull_request_records(db, await access.visible_repositories(db, user))
    pulls = sort_items(spec.apply(records), sort, order, PR_SORT_KEYS)
    return ok(paginate(pulls, page, per_page).to_dict("pull_requests"))


# ── Saved searches ──

@router.get("/saved")
async def list_saved(
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    rows = await saved_queries.list_saved_searches(db, user["id"])
    return ok({"items": [saved_queries.public_saved_search(r) for r in rows]})


@router.post("/saved")
async def create_saved(
    body: SavedSearchCreate,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    name = body.name.strip()
    if not name:
        raise ValidationError.for_field("name", "must not be empty")
    search_id = await saved_queries.create_saved_search(db, user["id"], name, body.query, body.filters)
    return created(saved_queries.public_saved_search(await saved_queries.get_saved_search(db, search_id)))


@router.delete("/saved/{search_id}")
async def delete_saved(
    search_id: str,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    if not await saved_queries.delete_saved_search(db, user["id"], search_id):
        raise NotFoundError("Saved search not found")
    return ok({"deleted": True})
