"""The caller's notification inbox."""

from __future__ import annotations

import logging

import aiosqlite
from fastapi import APIRouter, Depends

from fakehub.api.deps import require_user
from fakehub.api.envelope import ok
from fakehub.db.database import get_db
from fakehub.db.queries import notifications as notification_queries
from fakehub.errors import NotFoundError, ValidationError
from fakehub.models.user import NotificationBulkUpdate, NotificationCleanup, NotificationUpdate
from fakehub.services import access
from fakehub.services.filters import AnyOf, Equals, FilterSpec
from fakehub.services.notification_service import FILTERS, PARTICIPATING_REASONS
from fakehub.services.pagination import paginate
from fakehub.utils.clock import iso_in

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["notifications"])


async def _inbox(db: aiosqlite.Connection, user: dict) -> list[dict]:
    """The user's notifications about repositories they can still see."""
    visible = {r["id"] for r in await access.visible_repositories(db, user)}
    rows = await notification_queries.list_for_user(db, user["id"])
    return [notification_queries.public_notification(r) for r in rows if r["repository_id"] in visible]


async def _get(db: aiosqlite.Connection, user: dict, notification_id: str) -> dict:
    row = await notification_queries.get_notification(db, user["id"], notification_id)
    if not row:
        raise NotFoundError("Notification not found")
    return row


@router.get("/notifications")
async def list_notifications(
    filter: str = "unread",
    page: int = 1,
    per_page: int | None = None,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    if filter not in FILTERS:
        raise ValidationError.for_field("filter", "must be 'unread', 'all' or 'participating'")
    inbox = await _inbox(db, user)
    spec = FilterSpec()
    if filter == "unread":
        spec.add(Equals("unread", True))
    elif filter == "participating":
        spec.add(AnyOf("reason", frozenset(PARTICIPATING_REASONS)))
    data = paginate(spec.apply(inbox), page, per_page).to_dict("notifications")
    data["unread_count"] = sum(1 for n in inbox if n["unread"])
    return ok(data)


@router.patch("/notifications")
async def mark_notifications(
    body: NotificationBulkUpdate,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    """Mark the listed notifications, or all of them when ``ids`` is absent."""
    updated = await notification_queries.set_unread(db, user["id"], body.ids, body.unread)
    logger.info("Marked %d notifications %s for %s", updated, "unread" if body.unread else "read", user["username"])
    return ok({"updated": updated})


@router.get("/notifications/{notification_id}")
async def get_notification(
    notification_id: str,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    return ok(notification_queries.public_notification(await _get(db, user, notification_id)))


@router.patch("/notifications/{notification_id}")
async def mark_notification(
    notification_id: str,
    body: NotificationUpdate | None = None,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    body = body or NotificationUpdate()
    await _get(db, user, notification_id)
    await notification_queries.set_unread(db, user["id"], [notification_id], body.unread)
    return ok(notification_queries.public_notification(await _get(db, user, notification_id)))


@router.delete("/notifications/{notification_id}")
async def delete_notification(
    notification_id: str,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    if not await notification_queries.delete_notification(db, user["id"], notification_id):
        raise NotFoundError("Notification not found")
    return ok({"deleted": True})


@router.post("/user/notifications/cleanup")
async def cleanup_notifications(
    body: NotificationCleanup | None = None,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    """Delete read notifications last touched more than ``older_than_days`` ago."""
    body = body or NotificationCleanup()
    if body.older_than_days < 0:
        raise ValidationError.for_field("older_than_days", "must not be negative")
    deleted = await notification_queries.delete_read_before(db, user["id"], iso_in(days=-body.older_than_days))
    return ok({"deleted": deleted})
