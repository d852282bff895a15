"""Programmable route overrides: canned responses, simulated failures and latency.

Tests register overrides against glob patterns (the same shapes the browser
suites use, e.g. ``**/api/v1/search**``) and the middleware answers matching
requests before they reach the real handlers.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from fakehub.api.envelope import failure_body
from fakehub.config import settings
from fakehub.routing.matcher import Route, RouteMatcher

logger = logging.getLogger(__name__)

ACTIONS = ("fulfill", "fail", "timeout", "delay")


@dataclass
class Override:
    action: str
    status: int = 200
    body: Any = None
    delay_ms: int = 0
    times: int | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    hits: int = 0
    route: Route | None = field(default=None, repr=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "action": self.action,
            "pattern": self.route.pattern.source if self.route else None,
            "method": self.route.method if self.route else None,
            "status": self.status,
            "delay_ms": self.delay_ms,
            "times": self.times,
            "hits": self.hits,
        }


class RouteOverrides:
    """Registry of overrides for one application instance."""

    def __init__(self) -> None:
        self._matcher: RouteMatcher[Override] = RouteMatcher()

    def add(
        self,
        pattern: str,
        action: str,
        *,
        method: str | None = None,
        status: int = 200,
        body: Any = None,
        delay_ms: int = 0,
        times: int | None = None,
    ) -> Override:
        if action not in ACTIONS:
            raise ValueError(f"unknown override action {action!r}")
        if times is not None and times < 1:
            raise ValueError("times must be at least 1")
        override = Override(action=action, status=status, body=body, delay_ms=delay_ms, times=times)
        override.route = self._matcher.add(pattern, override, method=method)
        return override

    def fulfill(self, pattern: str, body: Any, status: int = 200, **kwargs) -> Override:
        return self.add(pattern, "fulfill", status=status, body=body, **kwargs)

    def fail(self, pattern: str, **kwargs) -> Override:
        return self.add(pattern, "fail", status=503, **kwargs)

    def timeout(self, pattern: str, **kwargs) -> Override:
        return self.add(pattern, "timeout", status=504, **kwargs)

    def delay(self, pattern: str, delay_ms: int, **kwargs) -> Override:
        return self.add(pattern, "delay", delay_ms=delay_ms, **kwargs)

    def remove(self, override_id: str) -> bool:
        for route in list(self._matcher):
            if route.target.id == override_id:
                return self._matcher.remove(route)
        return False

    def clear(self) -> None:
        self._matcher.clear()

    def list(self) -> list[dict]:
        return [route.target.to_dict() for route in self._matcher]

    def take(self, method: str, path: str, query: str = "") -> Override | None:
        """Most specific live override for the request, consuming one use."""
        match = self._matcher.resolve(method, path, query)
        if match is None:
            return None
        override = match.target
        override.hits += 1
        if override.times is not None:
            override.times -= 1
            if override.times <= 0:
                self._matcher.remove(match.route)
        return override


ADMIN_PREFIX = "/api/v1/_fixtures"


class RouteOverrideMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        if request.url.path.startswith(ADMIN_PREFIX):
            return await call_next(request)
        overrides: RouteOverrides | None = getattr(request.app.state, "route_overrides", None)
        override = None
        if overrides is not None:
            override = overrides.take(request.method, request.url.path, request.url.query)

        if override is None:
            if settings.simulated_latency_ms and request.url.path.startswith("/api/"):
                await asyncio.sleep(settings.simulated_latency_ms / 1000)
            return await call_next(request)

        logger.debug("Override %s (%s) answered %s %s", override.id, override.action, request.method, request.url.path)
        if override.delay_ms:
            await asyncio.sleep(override.delay_ms / 1000)

        if override.action == "delay":
            return await call_next(request)
        if override.action == "fulfill":
            return JSONResponse(status_code=override.status, content=override.body)
        if override.action == "timeout":
            return JSONResponse(
                status_code=504,
                content=failure_body("Upstream request timed out", retryable=True),
            )
        return JSONResponse(
            status_code=503,
            content=failure_body("Network error: service temporarily unavailable", retryable=True),
            headers={"Retry-After": "1"},
        )
