"""Legacy path aliases rewritten onto the canonical ``/api/v1`` routes."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from fakehub.routing.matcher import RouteMatcher

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Alias:
    legacy_prefix: str
    canonical_prefix: str

    def rewrite(self, path: str) -> str:
        return self.canonical_prefix + path[len(self.legacy_prefix):]


DEFAULT_ALIASES: list[tuple[str, Alias]] = [
    ("/api/auth/**", Alias("/api/auth", "/api/v1/auth")),
    ("/api/v1/user/sessions", Alias("/api/v1/user/sessions", "/api/v1/auth/sessions")),
    ("/api/v1/user/sessions/**", Alias("/api/v1/user/sessions", "/api/v1/auth/sessions")),
    ("/api/v1/auth/mfa/challenge", Alias("/api/v1/auth/mfa/challenge", "/api/v1/auth/mfa/verify")),
]


def build_alias_table(aliases: list[tuple[str, Alias]] | None = None) -> RouteMatcher[Alias]:
    table: RouteMatcher[Alias] = RouteMatcher()
    for pattern, alias in aliases if aliases is not None else DEFAULT_ALIASES:
        table.add(pattern, alias)
    return table


class LegacyAliasMiddleware:
    """Pure ASGI middleware so the rewritten path is what routing sees."""

    def __init__(self, app, aliases: list[tuple[str, Alias]] | None = None):
        self.app = app
        self.table = build_alias_table(aliases)

    async def __call__(self, scope, receive, send):
        if scope["type"] == "http":
            path = scope["path"]
            match = self.table.resolve(scope.get("method", "GET"), path)
            if match is not None:
                new_path = match.target.rewrite(path)
                logger.debug("Legacy path %s -> %s", path, new_path)
                scope = dict(scope)
                scope["path"] = new_path
                scope["raw_path"] = new_path.encode()
        await self.app(scope, receive, send)
