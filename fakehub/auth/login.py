"""Login state machine.

``begin_login`` checks the first factor and answers with one of the
``PendingLogin`` variants. A second-factor step is keyed by a short-lived
temp token (stored hashed, limited attempts) and ends in ``Authenticated``
or a generic failure.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Union

import aiosqlite

from fakehub.auth import totp
from fakehub.auth.passwords import normalize_backup_code, verify_password, verify_secret
from fakehub.auth.sessions import create_session
from fakehub.auth.sso import initiate as initiate_sso
from fakehub.auth.webauthn import new_challenge, verify_assertion
from fakehub.config import settings
from fakehub.db.locks import EntityLocks
from fakehub.db.queries import mfa as mfa_queries
from fakehub.db.queries import sessions as session_queries
from fakehub.db.queries import sso as sso_queries
from fakehub.db.queries import users as user_queries
from fakehub.errors import AuthenticationError
from fakehub.services import audit_service
from fakehub.services.state_store import StateStore
from fakehub.utils.clock import is_past, iso_in
from fakehub.utils.crypto import decrypt, digest, new_token

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid credentials"


@dataclass
class ClientInfo:
    user_agent: str | None = None
    ip: str | None = None
    location: str | None = None
    device_fingerprint: str | None = None
    device_name: str | None = None
    trust_device: bool | None = None

    @property
    def fingerprint_hash(self) -> str | None:
        return digest(self.device_fingerprint) if self.device_fingerprint else None


@dataclass(frozen=True)
class Authenticated:
    user: dict
    token: str
    session: dict

    def to_dict(self) -> dict:
        return {
            "access_token": self.token,
            "token_type": "bearer",
            "expires_at": self.session["expires_at"],
            "session_id": self.session["id"],
            "user": user_queries.public_user(self.user),
        }


@dataclass(frozen=True)
class NeedsMFA:
    temp_token: str
    methods: tuple[str, ...] = ("totp", "backup_code")

    def to_dict(self) -> dict:
        return {"requiresMFA": True, "tempToken": self.temp_token, "methods": list(self.methods)}


@dataclass(frozen=True)
class NeedsWebAuthn:
    temp_token: str
    challenge: str
    credential_ids: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "requiresWebAuthn": True,
            "tempToken": self.temp_token,
            "challenge": self.challenge,
            "allowCredentials": [{"type": "public-key", "id": cid} for cid in self.credential_ids],
        }


@dataclass(frozen=True)
class NeedsSSO:
    provider: str
    kind: str
    redirect_url: str
    state: str

    def to_dict(self) -> dict:
        return {
            "requiresSSO": True,
            "provider": self.provider,
            "kind": self.kind,
            "redirect_url": self.redirect_url,
            "state": self.state,
        }


PendingLogin = Union[NeedsMFA, NeedsWebAuthn, NeedsSSO, Authenticated]


async def finish_login(
    db: aiosqlite.Connection,
    user: dict,
    client: ClientInfo,
    *,
    trust_device: bool = False,
    fingerprint_hash: str | None = None,
) -> Authenticated:
    """Issue the session; optionally remember the device for future logins."""
    token, session = await create_session(db, user["id"], client.user_agent, client.ip, client.location)
    if trust_device and fingerprint_hash:
        device_id = await session_queries.add_trusted_device(
            db,
            user["id"],
            fingerprint_hash,
            client.device_name or client.user_agent,
            iso_in(days=settings.trusted_device_ttl_days),
        )
        await audit_service.record(
            db, "device.trusted", user, target=device_id,
            details={"name": client.device_name or client.user_agent}, user_id=user["id"],
        )
    logger.info("User %s signed in (session %s)", user["username"], session["id"])
    return Authenticated(user=user, token=token, session=session)


async def begin_login(
    db: aiosqlite.Connection,
    states: StateStore,
    login: str,
    password: str,
    client: ClientInfo,
) -> PendingLogin:
    if "@" in login:
        provider = await sso_queries.get_provider_for_domain(db, login.rsplit("@", 1)[1])
        if provider:
            started = await initiate_sso(db, states, provider["kind"], provider["slug"], login)
            return NeedsSSO(provider["slug"], provider["kind"], started["redirect_url"], started["state"])

    user = await user_queries.get_user_by_login(db, login)
    if not verify_password(password, user["password_hash"] if user else None):
        logger.info("Failed login for %s", login)
        raise AuthenticationError(INVALID_CREDENTIALS)

    credentials = await mfa_queries.list_webauthn_credentials(db, user["id"])
    wants_webauthn = bool(credentials) and (user["preferred_mfa"] == "webauthn" or not user["mfa_enabled"])
    wants_totp = bool(user["mfa_enabled"]) and not wants_webauthn

    if not (wants_webauthn or wants_totp):
        return await finish_login(
            db, user, client, trust_device=bool(client.trust_device), fingerprint_hash=client.fingerprint_hash
        )

    if client.fingerprint_hash:
        device = await session_queries.find_trusted_device(db, user["id"], client.fingerprint_hash)
        if device:
            await session_queries.touch_trusted_device(db, device["id"])
            logger.info("Trusted device %s skipped second factor for %s", device["id"], user["username"])
            return await finish_login(db, user, client)

    temp_token = new_token("fht")
    challenge = new_challenge() if wants_webauthn else None
    await session_queries.create_pending_login(
        db,
        digest(temp_token),
        user["id"],
        "webauthn" if wants_webauthn else "mfa",
        settings.pending_login_max_attempts,
        iso_in(seconds=settings.pending_login_ttl_seconds),
        challenge=challenge,
        trust_device=bool(client.trust_device),
        device_fingerprint_hash=client.fingerprint_hash,
        device_name=client.device_name,
        user_agent=client.user_agent,
        ip=client.ip,
    )
    if wants_webauthn:
        return NeedsWebAuthn(temp_token, challenge, tuple(c["id"] for c in credentials))
    return NeedsMFA(temp_token)


async def _load_pending(db: aiosqlite.Connection, temp_token: str, kind: str) -> tuple[dict, dict]:
    token_hash = digest(temp_token)
    pending = await session_queries.get_pending_login(db, token_hash)
    if not pending or pending["kind"] != kind:
        raise AuthenticationError(INVALID_CREDENTIALS)
    if is_past(pending["expires_at"]):
        await session_queries.delete_pending_login(db, token_hash)
        raise AuthenticationError("Login attempt expired")
    user = await user_queries.get_user(db, pending["user_id"])
    if not user:
        raise AuthenticationError(INVALID_CREDENTIALS)
    return pending, user


async def _reject(db: aiosqlite.Connection, pending: dict, user: dict, factor: str) -> None:
    left = await session_queries.spend_pending_attempt(db, pending["token_hash"])
    logger.info("Failed %s for %s (%d attempts left)", factor, user["username"], left)
    raise AuthenticationError(INVALID_CREDENTIALS)


async def _complete(db: aiosqlite.Connection, pending: dict, user: dict, client: ClientInfo) -> Authenticated:
    await session_queries.delete_pending_login(db, pending["token_hash"])
    trust = pending["trust_device"] if client.trust_device is None else client.trust_device
    fingerprint_hash = client.fingerprint_hash or pending["device_fingerprint_hash"]
    client = ClientInfo(
        user_agent=client.user_agent or pending["user_agent"],
        ip=client.ip or pending["ip"],
        location=client.location,
        device_name=client.device_name or pending["device_name"],
    )
    return await finish_login(db, user, client, trust_device=bool(trust), fingerprint_hash=fingerprint_hash)


async def complete_totp(
    db: aiosqlite.Connection, locks: EntityLocks, temp_token: str, code: str, client: ClientInfo
) -> Authenticated:
    async with locks.hold("pending_login", digest(temp_token)):
        pending, user = await _load_pending(db, temp_token, "mfa")
        secret = user["mfa_secret_encrypted"]
        if not secret or not totp.verify_code(decrypt(secret), code):
            await _reject(db, pending, user, "TOTP code")
        return await _complete(db, pending, user, client)


async def consume_backup_code(db: aiosqlite.Connection, user: dict, code: str) -> int | None:
    """Remove a matching backup code. Returns the number left, or None if none matched.

    Callers hold the user's lock so one code cannot be spent twice.
    """
    code = normalize_backup_code(code)
    stored = await mfa_queries.list_backup_codes(db, user["id"])
    for row in stored:
        if verify_secret(code, row["code_hash"]):
            await mfa_queries.delete_backup_code(db, row["id"])
            remaining = len(stored) - 1
            await audit_service.record(
                db, "mfa.backup_code_used", user, target=user["username"],
                details={"remaining": remaining}, user_id=user["id"],
            )
            return remaining
    return None


async def complete_backup_code(
    db: aiosqlite.Connection, locks: EntityLocks, temp_token: str, code: str, client: ClientInfo
) -> Authenticated:
    async with locks.hold("pending_login", digest(temp_token)):
        pending, user = await _load_pending(db, temp_token, "mfa")
        async with locks.hold("user", user["id"]):
            remaining = await consume_backup_code(db, user, code)
        if remaining is None:
            await _reject(db, pending, user, "backup code")
        return await _complete(db, pending, user, client)


async def complete_webauthn(
    db: aiosqlite.Connection,
    locks: EntityLocks,
    temp_token: str,
    credential_id: str,
    signature: str,
    sign_count: int,
    client: ClientInfo,
) -> Authenticated:
    async with locks.hold("pending_login", digest(temp_token)):
        pending, user = await _load_pending(db, temp_token, "webauthn")
        credential = await mfa_queries.get_webauthn_credential(db, credential_id)
        if (
            not credential
            or credential["user_id"] != user["id"]
            or not verify_assertion(credential["public_key"], pending["challenge"], signature)
        ):
            await _reject(db, pending, user, "WebAuthn assertion")
        async with locks.hold("webauthn", credential_id):
            if not await mfa_queries.advance_sign_count(db, credential_id, sign_count):
                logger.warning("Sign counter did not advance for credential %s", credential_id)
                await _reject(db, pending, user, "WebAuthn assertion")
        return await _complete(db, pending, user, client)
