"""SAML and OIDC redirects and callbacks."""

from __future__ import annotations

import aiosqlite
from fastapi import APIRouter, Depends

from fakehub.api.deps import client_info, get_sso_states
from fakehub.api.envelope import ok
from fakehub.auth import sso
from fakehub.auth.login import ClientInfo, finish_login
from fakehub.db.database import get_db
from fakehub.models.auth import SsoCallback, SsoInitiate
from fakehub.services.state_store import StateStore

router = APIRouter(prefix="/api/v1/auth", tags=["sso"])


@router.post("/saml/initiate")
async def saml_initiate(
    body: SsoInitiate,
    db: aiosqlite.Connection = Depends(get_db),
    states: StateStore = Depends(get_sso_states),
):
    return ok(await sso.initiate(db, states, "saml", body.provider, body.email))


@router.post("/oidc/{provider}/initiate")
async def oidc_initiate(
    provider: str,
    body: SsoInitiate | None = None,
    db: aiosqlite.Connection = Depends(get_db),
    states: StateStore = Depends(get_sso_states),
):
    email = body.email if body else None
    return ok(await sso.initiate(db, states, "oidc", provider, email))


async def _callback(db, states, kind: str, body: SsoCallback, client: ClientInfo):
    user = await sso.complete(db, states, kind, body.state, body.token)
    result = await finish_login(db, user, client)
    return ok(result.to_dict())


@router.post("/saml/callback")
async def saml_callback(
    body: SsoCallback,
    db: aiosqlite.Connection = Depends(get_db),
    states: StateStore = Depends(get_sso_states),
    client: ClientInfo = Depends(client_info),
):
    return await _callback(db, states, "saml", body, client)


@router.post("/oidc/callback")
async def oidc_callback(
    body: SsoCallback,
    db: aiosqlite.Connection = Depends(get_db),
    states: StateStore = Depends(get_sso_states),
    client: ClientInfo = Depends(client_info),
):
    return await _callback(db, states, "oidc", body, client)
