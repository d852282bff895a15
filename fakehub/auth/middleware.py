"""Authentication middleware for FastAPI."""

from __future__ import annotations

import logging

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from fakehub.auth.sessions import verify_token

logger = logging.getLogger(__name__)

# Paths that never look at credentials
PUBLIC_PATHS = {"/health", "/"}


def bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("authorization", "")
    if auth_header[:7].lower() == "bearer " and auth_header[7:].strip():
        return auth_header[7:].strip()
    return None


class AuthMiddleware(BaseHTTPMiddleware):
    """Resolve the bearer token into ``request.state.user`` and ``request.state.session``.

    Gating is left to the route dependencies so public reads and protected
    writes can share a path.
    """

    async def dispatch(self, request: Request, call_next):
        request.state.user = None
        request.state.session = None

        path = request.url.path
        if path in PUBLIC_PATHS or path.startswith("/docs") or path.startswith("/openapi"):
            return await call_next(request)

        token = bearer_token(request)
        db = getattr(request.app.state, "db", None)
        if token and db is not None:
            resolved = await verify_token(db, token)
            if resolved:
                request.state.user, request.state.session = resolved
            else:
                logger.debug("Rejected bearer token on %s", path)

        return await call_next(request)
