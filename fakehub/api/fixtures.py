"""Fixture control for test suites: route overrides and seeding.

Mounted only when ``fixture_admin_enabled`` is set. These paths bypass the
override middleware and the rate limiter, so a suite can always undo what
it registered.
"""

from __future__ import annotations

import logging
from typing import Any

import aiosqlite
from fastapi import APIRouter, Body, Depends, Request

from fakehub.api.envelope import created, ok
from fakehub.db.database import get_db
from fakehub.errors import NotFoundError, ValidationError
from fakehub.models.fixtures import RouteOverrideCreate
from fakehub.routing.overrides import ADMIN_PREFIX, RouteOverrides
from fakehub.services.fixture_loader import load_fixtures

logger = logging.getLogger(__name__)

router = APIRouter(prefix=ADMIN_PREFIX, tags=["fixtures"])


def get_overrides(request: Request) -> RouteOverrides:
    return request.app.state.route_overrides


@router.get("/routes")
async def list_overrides(overrides: RouteOverrides = Depends(get_overrides)):
    return ok({"items": overrides.list()})


@router.post("/routes")
async def add_override(body: RouteOverrideCreate, overrides: RouteOverrides = Depends(get_overrides)):
    if body.delay_ms < 0:
        raise ValidationError.for_field("delay_ms", "must not be negative")
    try:
        override = overrides.add(
            body.pattern,
            body.action,
            method=body.method,
            status=body.status,
            body=body.body,
            delay_ms=body.delay_ms,
            times=body.times,
        )
    except ValueError as e:
        raise ValidationError(str(e))
    logger.info("Registered %s override %s for %s", override.action, override.id, body.pattern)
    return created(override.to_dict())


@router.delete("/routes")
async def clear_overrides(overrides: RouteOverrides = Depends(get_overrides)):
    count = len(overrides.list())
    overrides.clear()
    return ok({"deleted": count})


@router.delete("/routes/{override_id}")
async def remove_override(override_id: str, overrides: RouteOverrides = Depends(get_overrides)):
    if not overrides.remove(override_id):
        raise NotFoundError("Override not found")
    return ok({"deleted": True})


@router.post("/seed")
async def seed(
    document: dict[str, Any] = Body(...),
    db: aiosqlite.Connection = Depends(get_db),
):
    """Load a fixture document (the same shape as the YAML fixture files)."""
    return created(await load_fixtures(db, document))
