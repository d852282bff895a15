"""Sliding-window rate limiter middleware."""

from __future__ import annotations

import time
from collections import defaultdict

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from fakehub.api.envelope import failure_body
from fakehub.auth.middleware import bearer_token
from fakehub.config import settings
from fakehub.utils.crypto import digest

SKIP_PATHS = {"/health", "/docs", "/openapi.json"}


class RateLimitMiddleware(BaseHTTPMiddleware):
    """In-memory sliding window rate limiter.

    Key is the bearer token digest (if present) or client IP.
    """

    def __init__(self, app, limit: int | None = None):
        super().__init__(app)
        self.limit = limit or settings.rate_limit_per_minute
        self._windows: dict[str, list[float]] = defaultdict(list)

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if path in SKIP_PATHS or path.startswith("/docs") or path.startswith("/api/v1/_fixtures"):
            return await call_next(request)

        key = self._get_key(request)
        now = time.monotonic()
        window = self._windows[key]

        # Prune timestamps older than 60 seconds
        cutoff = now - 60.0
        while window and window[0] < cutoff:
            window.pop(0)

        if len(window) >= self.limit:
            retry_after = int(60 - (now - window[0])) + 1
            return JSONResponse(
                status_code=429,
                content=failure_body("Too many requests", retryable=True),
                headers={"Retry-After": str(retry_after)},
            )

        window.append(now)
        return await call_next(request)

    def reset(self) -> None:
        self._windows.clear()

    @staticmethod
    def _get_key(request: Request) -> str:
        token = bearer_token(request)
        if token:
            return f"token:{digest(token)[:16]}"
        return f"ip:{request.client.host if request.client else 'unknown'}"
