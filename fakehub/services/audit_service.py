"""Audit trail: recording security and organization events, and filtering them."""

from __future__ import annotations

import logging

import aiosqlite

from fakehub.db.queries import audit_logs as audit_queries
from fakehub.services.filters import Compare, Equals, FilterSpec, Prefix

logger = logging.getLogger(__name__)


async def record(
    db: aiosqlite.Connection,
    event: str,
    actor: dict | None,
    target: str | None = None,
    details: dict | None = None,
    *,
    org_id: str | None = None,
    user_id: str | None = None,
) -> str:
    """Append an entry. ``user_id`` files it in that user's security log."""
    entry_id = await audit_queries.add_entry(
        db,
        event,
        actor["id"] if actor else None,
        actor["username"] if actor else None,
        target,
        details,
        org_id=org_id,
        user_id=user_id,
    )
    logger.info("Audit %s by %s on %s", event, actor["username"] if actor else "system", target or "-")
    return entry_id


def event_filter(event: str) -> Equals | Prefix:
    """``member.invited`` matches exactly; ``member`` or ``member.*`` matches the namespace."""
    if event.endswith(".*"):
        return Prefix("event", event[:-1])
    if "." not in event:
        return Prefix("event", event + ".")
    return Equals("event", event)


def build_filter(
    event: str | None = None,
    actor: str | None = None,
    since: str | None = None,
    until: str | None = None,
) -> FilterSpec:
    spec = FilterSpec()
    if event:
        spec.add(event_filter(event))
    if actor:
        spec.add(Equals("actor.username", actor))
    if since:
        spec.add(Compare("timestamp", ">=", since))
    if until:
        spec.add(Compare("timestamp", "<=", until))
    return spec
