"""Activity feeds: everything visible, the caller's own, and per repository."""

from __future__ import annotations

import aiosqlite
from fastapi import APIRouter, Depends

from fakehub.api.deps import optional_user
from fakehub.api.envelope import ok
from fakehub.db.database import get_db
from fakehub.db.queries import activity as activity_queries
from fakehub.errors import ValidationError
from fakehub.services import access, activity_service
from fakehub.services.filters import Equals
from fakehub.services.pagination import paginate

router = APIRouter(prefix="/api/v1", tags=["activity"])

FEED_FILTERS = ("all", "own", "following")


@router.get("/activity")
async def list_activity(
    filter: str = "all",
    type: str | None = None,
    page: int = 1,
    per_page: int | None = None,
    user: dict | None = Depends(optional_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    """``following`` is other people's activity in repositories the caller holds a role in."""
    if filter not in FEED_FILTERS:
        raise ValidationError.for_field("filter", "must be 'all', 'own' or 'following'")
    if filter != "all" and not user:
        raise ValidationError.for_field("filter", "requires authentication")

    repos = await access.visible_repositories(db, user)
    if filter == "following":
        repos = [r for r in repos if await access.repository_role(db, r, user) is not None]
    spec = activity_service.build_filter(activity_type=type, type_param="type")
    if filter == "own":
        spec.add(Equals("actor.id", user["id"], case_sensitive=True))

    events = [activity_queries.public_event(e) for e in await activity_queries.list_events(db, [r["id"] for r in repos])]
    events = spec.apply(events)
    if filter == "following":
        events = [e for e in events if e["actor"]["id"] != user["id"]]
    return ok(paginate(events, page, per_page).to_dict("activities"))


@router.get("/repositories/{owner}/{name}/activity")
async def list_repository_activity(
    owner: str,
    name: str,
    activity_type: str | None = None,
    actor: str | None = None,
    since: str | None = None,
    until: str | None = None,
    page: int = 1,
    per_page: int | None = None,
    user: dict | None = Depends(optional_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    repo = await access.get_visible_repository(db, owner, name, user)
    spec = activity_service.build_filter(activity_type, actor, since, until)
    events = [activity_queries.public_event(e) for e in await activity_queries.list_events(db, [repo["id"]])]
    return ok(paginate(spec.apply(events), page, per_page).to_dict("activities"))
