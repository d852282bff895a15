"""SAML / OIDC single sign-on against fixture identity providers.

A provider-issued token is ``base64url(json claims).base64url(hmac_sha256)``
signed with the provider's shared secret. Claims carry ``iss`` (provider
slug), ``sub``, ``email``, optional ``name``/``username`` and ``exp``.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import re
import secrets
import time
from urllib.parse import urlencode

import aiosqlite

from fakehub.config import settings
from fakehub.db.queries import organizations as org_queries
from fakehub.db.queries import sso as sso_queries
from fakehub.db.queries import users as user_queries
from fakehub.auth.webauthn import b64url_decode, b64url_encode
from fakehub.errors import AuthenticationError, NotFoundError, ValidationError
from fakehub.services import audit_service
from fakehub.services.state_store import StateStore

logger = logging.getLogger(__name__)

STATE_TTL_SECONDS = 600


def sign_token(secret: str, claims: dict) -> str:
    """Identity-provider side: issue a signed assertion for ``claims``."""
    body = b64url_encode(json.dumps(claims, separators=(",", ":"), sort_keys=True).encode())
    mac = hmac.new(secret.encode(), body.encode(), hashlib.sha256).digest()
    return f"{body}.{b64url_encode(mac)}"


def verify_token(provider: dict, token: str) -> dict:
    """Check signature, issuer, expiry and email domain. Returns the claims."""
    try:
        body, signature = token.split(".", 1)
        expected = hmac.new(provider["secret"].encode(), body.encode(), hashlib.sha256).digest()
        if not hmac.compare_digest(expected, b64url_decode(signature)):
            raise AuthenticationError("Invalid SSO response")
        claims = json.loads(b64url_decode(body))
    except (ValueError, TypeError):
        raise AuthenticationError("Invalid SSO response")

    if not isinstance(claims, dict) or claims.get("iss") != provider["slug"]:
        raise AuthenticationError("Invalid SSO response")
    if not claims.get("sub") or not claims.get("email"):
        raise AuthenticationError("Invalid SSO response")
    exp = claims.get("exp")
    if exp is not None and float(exp) <= time.time():
        raise AuthenticationError("SSO response expired")
    domain = provider.get("email_domain")
    if domain and not str(claims["email"]).lower().endswith("@" + domain.lower()):
        raise AuthenticationError("Invalid SSO response")
    return claims


async def find_provider(
    db: aiosqlite.Connection, kind: str, slug: str | None = None, email: str | None = None
) -> dict:
    provider = None
    if slug:
        provider = await sso_queries.get_provider_by_slug(db, slug)
    elif email and "@" in email:
        provider = await sso_queries.get_provider_for_domain(db, email.rsplit("@", 1)[1], kind)
    else:
        raise ValidationError.for_field("provider", "provider or email is required")
    if not provider or provider["kind"] != kind:
        raise NotFoundError("SSO provider not found")
    return provider


async def initiate(
    db: aiosqlite.Connection,
    states: StateStore,
    kind: str,
    provider_slug: str | None = None,
    email: str | None = None,
) -> dict:
    """Start a redirect: returns the IdP URL and a single-use relay state."""
    provider = await find_provider(db, kind, provider_slug, email)
    state = secrets.token_urlsafe(24)
    await states.put_state(state, {"provider_id": provider["id"], "kind": kind}, STATE_TTL_SECONDS)
    query = {"state": state, "redirect_uri": f"{settings.app_base_url}/api/v1/auth/{kind}/callback"}
    if email:
        query["login_hint"] = email
    redirect_url = f"{settings.sso_base_url}/{kind}/{provider['slug']}/authorize?{urlencode(query)}"
    return {"redirect_url": redirect_url, "state": state, "provider": provider["slug"]}


async def _unique_username(db: aiosqlite.Connection, wanted: str) -> str:
    base = re.sub(r"[^A-Za-z0-9-]+", "-", wanted).strip("-")[:30] or "user"
    candidate, n = base, 1
    while await user_queries.get_user_by_username(db, candidate):
        n += 1
        candidate = f"{base}-{n}"
    return candidate


async def resolve_user(db: aiosqlite.Connection, provider: dict, claims: dict) -> dict:
    """Map (provider, subject) to a user, linking by email or provisioning one."""
    identity = await sso_queries.get_identity(db, provider["id"], str(claims["sub"]))
    if identity:
        user = await user_queries.get_user(db, identity["user_id"])
        if user:
            return user

    user = await user_queries.get_user_by_email(db, claims["email"])
    if user is None:
        username = await _unique_username(db, claims.get("username") or claims["email"].split("@")[0])
        user_id = await user_queries.create_user(db, username, claims["email"], None, claims.get("name"))
        user = await user_queries.get_user(db, user_id)
        logger.info("Provisioned user %s from SSO provider %s", username, provider["slug"])
        await audit_service.record(db, "user.provisioned", user, target=username,
                                   details={"provider": provider["slug"]}, user_id=user_id)

    await sso_queries.link_identity(db, provider["id"], str(claims["sub"]), user["id"])
    if provider.get("org_id") and not await org_queries.get_member(db, provider["org_id"], user["id"]):
        await org_queries.add_member(db, provider["org_id"], user["id"], "member")
        await audit_service.record(db, "member.added", user, target=user["username"],
                                   details={"via": "sso"}, org_id=provider["org_id"])
    return user


async def complete(db: aiosqlite.Connection, states: StateStore, kind: str, state: str, token: str) -> dict:
    """Consume the relay state, verify the assertion, return the signed-in user."""
    payload = await states.consume_state(state)
    if not isinstance(payload, dict) or payload.get("kind") != kind:
        raise AuthenticationError("Invalid or expired SSO state")
    provider = await sso_queries.get_provider(db, payload["provider_id"])
    if not provider:
        raise AuthenticationError("Invalid or expired SSO state")
    claims = verify_token(provider, token)
    return await resolve_user(db, provider, claims)
