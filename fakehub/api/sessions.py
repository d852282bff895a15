"""Active sessions, trusted devices and the per-user security log."""

from __future__ import annotations

import logging

import aiosqlite
from fastapi import APIRouter, Depends

from fakehub.api.deps import current_session, require_user
from fakehub.api.envelope import ok
from fakehub.db.database import get_db, get_locks
from fakehub.db.locks import EntityLocks
from fakehub.db.queries import audit_logs as audit_queries
from fakehub.db.queries import sessions as session_queries
from fakehub.errors import ConflictError, NotFoundError
from fakehub.services import audit_service
from fakehub.services.pagination import paginate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["sessions"])


@router.get("/auth/sessions")
async def list_sessions(
    user: dict = Depends(require_user),
    session: dict = Depends(current_session),
    db: aiosqlite.Connection = Depends(get_db),
):
    rows = await session_queries.list_active_sessions(db, user["id"])
    return ok([session_queries.public_session(r, session["id"]) for r in rows])


async def _revoke(db: aiosqlite.Connection, locks: EntityLocks, user: dict, current: dict, session_id: str):
    if session_id == current["id"]:
        raise ConflictError("Use logout to end the current session")
    async with locks.hold("sessions", user["id"]):
        target = await session_queries.get_session(db, session_id)
        if not target or target["user_id"] != user["id"] or target["revoked_at"]:
            raise NotFoundError("Session not found")
        await session_queries.revoke_session(db, session_id)
    await audit_service.record(
        db, "session.revoked", user, target=session_id,
        details={"user_agent": target["user_agent"], "ip": target["ip"]}, user_id=user["id"],
    )
    return ok({"revoked": session_id})


@router.post("/auth/sessions/{session_id}/revoke")
async def revoke_session(
    session_id: str,
    user: dict = Depends(require_user),
    session: dict = Depends(current_session),
    db: aiosqlite.Connection = Depends(get_db),
    locks: EntityLocks = Depends(get_locks),
):
    return await _revoke(db, locks, user, session, session_id)


@router.delete("/auth/sessions/{session_id}")
async def delete_session(
    session_id: str,
    user: dict = Depends(require_user),
    session: dict = Depends(current_session),
    db: aiosqlite.Connection = Depends(get_db),
    locks: EntityLocks = Depends(get_locks),
):
    return await _revoke(db, locks, user, session, session_id)


@router.post("/auth/sessions/revoke-all")
async def revoke_all_sessions(
    user: dict = Depends(require_user),
    session: dict = Depends(current_session),
    db: aiosqlite.Connection = Depends(get_db),
    locks: EntityLocks = Depends(get_locks),
):
    async with locks.hold("sessions", user["id"]):
        count = await session_queries.revoke_other_sessions(db, user["id"], session["id"])
    await audit_service.record(db, "session.revoked_all", user, target=user["username"],
                               details={"count": count}, user_id=user["id"])
    return ok({"revoked": count})


# ── Trusted devices ──

@router.get("/auth/trusted-devices")
async def list_trusted_devices(
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    rows = await session_queries.list_trusted_devices(db, user["id"])
    return ok([session_queries.public_device(r) for r in rows])


@router.delete("/auth/trusted-devices/{device_id}")
async def remove_trusted_device(
    device_id: str,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    if not await session_queries.revoke_trusted_device(db, user["id"], device_id):
        raise NotFoundError("Device not found")
    await audit_service.record(db, "device.removed", user, target=device_id, user_id=user["id"])
    return ok({"deleted": True})


@router.get("/user/security-log")
async def security_log(
    event: str | None = None,
    page: int = 1,
    per_page: int | None = None,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    entries = [audit_queries.public_entry(e) for e in await audit_queries.list_for_user(db, user["id"])]
    entries = audit_service.build_filter(event=event).apply(entries)
    return ok(paginate(entries, page, per_page).to_dict("events"))
