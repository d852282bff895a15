"""fakehub: FastAPI application entry point."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

import aiosqlite
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from fakehub.api.envelope import register_error_handlers
from fakehub.auth.middleware import AuthMiddleware
from fakehub.auth.rate_limiter import RateLimitMiddleware
from fakehub.auth.sessions import cleanup_expired_sessions
from fakehub.config import settings
from fakehub.db.database import close_db, open_db
from fakehub.db.locks import EntityLocks
from fakehub.routing.aliases import LegacyAliasMiddleware
from fakehub.routing.overrides import RouteOverrideMiddleware, RouteOverrides
from fakehub.services.fixture_loader import load_fixtures_file
from fakehub.services.log_stream import LogStreams
from fakehub.services.state_store import MemoryStateStore

logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)

VERSION = "0.1.0"


async def _session_cleanup_loop(app: FastAPI):
    """Background task: drop expired sessions and stale pending logins."""
    while True:
        await asyncio.sleep(settings.session_cleanup_interval_seconds)
        try:
            deleted = await cleanup_expired_sessions(app.state.db)
            if deleted:
                logger.info("Session cleanup: removed %d expired sessions", deleted)
        except Exception:
            logger.exception("Session cleanup failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("Starting fakehub...")
    owns_db = app.state.db is None
    if owns_db:
        app.state.db = await open_db(settings.database_path)
        if settings.fixtures_path:
            await load_fixtures_file(app.state.db, settings.fixtures_path)

    cleanup_task = asyncio.create_task(_session_cleanup_loop(app))
    logger.info("fakehub ready (store=%s)", settings.database_path if owns_db else "injected")
    yield

    cleanup_task.cancel()
    if owns_db:
        await close_db(app.state.db)
        app.state.db = None
    logger.info("fakehub stopped")


def create_app(db: aiosqlite.Connection | None = None) -> FastAPI:
    """Build an application. Pass ``db`` to serve an already-open fixture store."""
    app = FastAPI(
        title="fakehub",
        description="Fake contract backend for a code-hosting platform",
        version=VERSION,
        lifespan=lifespan,
    )

    app.state.db = db
    app.state.locks = EntityLocks()
    app.state.route_overrides = RouteOverrides()
    app.state.log_streams = LogStreams(app.state.locks)
    app.state.sso_states = MemoryStateStore()

    register_error_handlers(app)

    # Middleware order: Starlette is LIFO, the last added runs outermost.
    # Request order: CORS → RouteOverride → LegacyAlias → RateLimiter → Auth → route handlers
    app.add_middleware(AuthMiddleware)
    app.add_middleware(RateLimitMiddleware)
    app.add_middleware(LegacyAliasMiddleware)
    app.add_middleware(RouteOverrideMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    from fakehub.api.actions import router as actions_router
    from fakehub.api.activity import router as activity_router
    from fakehub.api.auth import router as auth_router
    from fakehub.api.contents import router as contents_router
    from fakehub.api.hooks import router as hooks_router
    from fakehub.api.issues import router as issues_router
    from fakehub.api.notifications import router as notifications_router
    from fakehub.api.organizations import router as organizations_router
    from fakehub.api.pulls import router as pulls_router
    from fakehub.api.repositories import router as repositories_router
    from fakehub.api.search import router as search_router
    from fakehub.api.sessions import router as sessions_router
    from fakehub.api.sso import router as sso_router
    from fakehub.api.teams import router as teams_router
    from fakehub.api.users import router as users_router

    app.include_router(auth_router)
    app.include_router(sso_router)
    app.include_router(sessions_router)
    app.include_router(users_router)
    app.include_router(repositories_router)
    app.include_router(contents_router)
    app.include_router(hooks_router)
    app.include_router(issues_router)
    app.include_router(pulls_router)
    app.include_router(search_router)
    app.include_router(organizations_router)
    app.include_router(teams_router)
    app.include_router(actions_router)
    app.include_router(activity_router)
    app.include_router(notifications_router)

    if settings.fixture_admin_enabled:
        from fakehub.api.fixtures import router as fixtures_router

        app.include_router(fixtures_router)

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": "fakehub", "version": VERSION}

    @app.get("/")
    async def root():
        return {"service": "fakehub", "docs": "/docs"}

    return app


app = create_app()
