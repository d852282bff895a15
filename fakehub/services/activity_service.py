"""Activity events: recording repository writes and filtering the feed."""

from __future__ import annotations

import logging

import aiosqlite

from fakehub.db.queries import activity as activity_queries
from fakehub.errors import ValidationCollector
from fakehub.services import webhook_service
from fakehub.services.filters import Compare, Equals, FilterSpec
from fakehub.utils.clock import isoformat, parse_iso

logger = logging.getLogger(__name__)


async def record(
    db: aiosqlite.Connection,
    event_type: str,
    actor: dict | None,
    repo: dict,
    payload: dict | None = None,
) -> dict:
    """Append an event to the repository's feed and hand it to the repository's webhooks."""
    event_id = await activity_queries.add_event(db, event_type, actor["id"] if actor else None, repo["id"], payload)
    event = activity_queries.public_event(await activity_queries.get_event(db, event_id))
    await webhook_service.dispatch(db, repo["id"], event_type, event)
    logger.info("Activity %s by %s on %s", event_type, actor["username"] if actor else "system", repo["full_name"])
    return event


def _timestamp(value: str, param: str, errors: ValidationCollector) -> str | None:
    try:
        return isoformat(parse_iso(value))
    except ValueError:
        errors.add(param, "must be an ISO-8601 timestamp")
        return None


def build_filter(
    activity_type: str | None = None,
    actor: str | None = None,
    since: str | None = None,
    until: str | None = None,
    *,
    type_param: str = "activity_type",
) -> FilterSpec:
    errors = ValidationCollector()
    spec = FilterSpec()
    if activity_type:
        if activity_type not in activity_queries.EVENT_TYPES:
            errors.add(type_param, f"must be one of: {', '.join(activity_queries.EVENT_TYPES)}")
        spec.add(Equals("type", activity_type))
    if actor:
        spec.add(Equals("actor.username", actor))
    if since:
        spec.add(Compare("created_at", ">=", _timestamp(since, "since", errors)))
    if until:
        spec.add(Compare("created_at", "<=", _timestamp(until, "until", errors)))
    errors.raise_if_any()
    return spec
