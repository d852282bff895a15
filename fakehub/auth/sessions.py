"""Server-side session management."""

from __future__ import annotations

import logging

import aiosqlite

from fakehub.config import settings
from fakehub.db.queries import sessions as session_queries
from fakehub.db.queries import users as user_queries
from fakehub.utils.clock import iso_in
from fakehub.utils.crypto import digest, new_token

logger = logging.getLogger(__name__)


async def create_session(
    db: aiosqlite.Connection,
    user_id: str,
    user_agent: str | None = None,
    ip: str | None = None,
    location: str | None = None,
) -> tuple[str, dict]:
    """Create a new session. Returns the raw bearer token and the session row."""
    token = new_token("fhs")
    session_id = await session_queries.create_session(
        db,
        user_id,
        digest(token),
        iso_in(hours=settings.session_ttl_hours),
        user_agent=user_agent,
        ip=ip,
        location=location,
    )
    session = await session_queries.get_session(db, session_id)
    logger.info("Session %s created for user %s", session_id, user_id)
    return token, session


async def verify_token(db: aiosqlite.Connection, token: str) -> tuple[dict, dict] | None:
    """Resolve a bearer token to ``(user, session)``, or None if invalid/expired/revoked."""
    session = await session_queries.get_live_session_by_token_hash(db, digest(token))
    if not session:
        return None
    user = await user_queries.get_user(db, session["user_id"])
    if not user:
        return None
    # Refresh session expiry on activity
    await session_queries.touch_session(db, session["id"], iso_in(hours=settings.session_ttl_hours))
    return user, session


async def cleanup_expired_sessions(db: aiosqlite.Connection) -> int:
    """Delete expired sessions and stale pending logins. Returns count deleted."""
    return await session_queries.cleanup_expired_sessions(db)
