"""Shared route dependencies: caller identity and per-app state."""

from __future__ import annotations

from fastapi import Request

from fakehub.auth.login import ClientInfo
from fakehub.errors import AuthenticationError
from fakehub.services.log_stream import LogStreams
from fakehub.services.state_store import StateStore


def optional_user(request: Request) -> dict | None:
    return getattr(request.state, "user", None)


def require_user(request: Request) -> dict:
    user = getattr(request.state, "user", None)
    if not user:
        raise AuthenticationError()
    return user


def optional_session(request: Request) -> dict | None:
    return getattr(request.state, "session", None)


def current_session(request: Request) -> dict:
    session = getattr(request.state, "session", None)
    if not session:
        raise AuthenticationError()
    return session


def client_info(request: Request) -> ClientInfo:
    forwarded = request.headers.get("x-forwarded-for", "")
    ip = forwarded.split(",")[0].strip() or (request.client.host if request.client else None)
    return ClientInfo(
        user_agent=request.headers.get("user-agent"),
        ip=ip,
        location=request.headers.get("x-client-location"),
    )


def get_log_streams(request: Request) -> LogStreams:
    return request.app.state.log_streams


def get_sso_states(request: Request) -> StateStore:
    return request.app.state.sso_states
