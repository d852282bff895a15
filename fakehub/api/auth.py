"""Password login, MFA (TOTP, backup codes), WebAuthn and account credentials."""

from __future__ import annotations

import dataclasses
import logging

import aiosqlite
from fastapi import APIRouter, Depends

from fakehub.api.deps import client_info, current_session, get_sso_states, optional_session, require_user
from fakehub.api.envelope import created, ok
from fakehub.auth import login as login_flow
from fakehub.auth import totp
from fakehub.auth.login import ClientInfo
from fakehub.auth.passwords import generate_backup_codes, hash_password, hash_secret, verify_password
from fakehub.auth.webauthn import load_public_key, to_pem
from fakehub.db.database import get_db, get_locks
from fakehub.db.locks import EntityLocks
from fakehub.db.queries import mfa as mfa_queries
from fakehub.db.queries import sessions as session_queries
from fakehub.db.queries import users as user_queries
from fakehub.errors import AuthenticationError, ConflictError, NotFoundError, ValidationCollector, ValidationError
from fakehub.models.auth import (
    BackupCodeLogin,
    ChangePassword,
    Login,
    MfaDisable,
    MfaVerify,
    Register,
    WebAuthnAuthenticate,
    WebAuthnRegister,
)
from fakehub.services import audit_service
from fakehub.services.state_store import StateStore
from fakehub.utils.crypto import decrypt, encrypt
from fakehub.utils.validators import is_valid_email, is_valid_username, password_problems

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


def _with_device(client: ClientInfo, body) -> ClientInfo:
    return dataclasses.replace(
        client,
        trust_device=body.trust_device,
        device_fingerprint=body.device_fingerprint,
        device_name=body.device_name,
    )


def _me(user: dict, session: dict | None = None) -> dict:
    data = user_queries.public_user(user)
    data["preferred_mfa"] = user.get("preferred_mfa")
    data["is_admin"] = bool(user.get("is_admin"))
    if session:
        data["session_id"] = session["id"]
    return data


# ── Account ──

@router.post("/register")
async def register(
    body: Register,
    db: aiosqlite.Connection = Depends(get_db),
    locks: EntityLocks = Depends(get_locks),
    client: ClientInfo = Depends(client_info),
):
    errors = ValidationCollector()
    if not is_valid_username(body.username):
        errors.add("username", "may only contain letters, digits and single hyphens")
    if not is_valid_email(body.email):
        errors.add("email", "must be a valid email address")
    for problem in password_problems(body.password):
        errors.add("password", problem)
    errors.raise_if_any()

    password_hash = hash_password(body.password)
    async with locks.hold("accounts", "identity"):
        if await user_queries.get_user_by_username(db, body.username):
            raise ConflictError("Username is already taken")
        if await user_queries.get_user_by_email(db, body.email):
            raise ConflictError("Email is already registered")
        user_id = await user_queries.create_user(db, body.username, body.email, password_hash, body.name)
    user = await user_queries.get_user(db, user_id)
    logger.info("Registered user %s", body.username)
    result = await login_flow.finish_login(db, user, client)
    return created(result.to_dict())


@router.post("/login")
async def login(
    body: Login,
    db: aiosqlite.Connection = Depends(get_db),
    states: StateStore = Depends(get_sso_states),
    client: ClientInfo = Depends(client_info),
):
    if not body.login:
        raise ValidationError.for_field("email", "email or username is required")
    result = await login_flow.begin_login(db, states, body.login, body.password, _with_device(client, body))
    return ok(result.to_dict())


@router.post("/logout")
async def logout(
    user: dict = Depends(require_user),
    session: dict = Depends(current_session),
    db: aiosqlite.Connection = Depends(get_db),
):
    await session_queries.revoke_session(db, session["id"])
    logger.info("User %s signed out (session %s)", user["username"], session["id"])
    return ok({"message": "Signed out"})


@router.get("/me")
async def me(user: dict = Depends(require_user), session: dict = Depends(current_session)):
    return ok(_me(user, session))


@router.post("/change-password")
async def change_password(
    body: ChangePassword,
    user: dict = Depends(require_user),
    session: dict = Depends(current_session),
    db: aiosqlite.Connection = Depends(get_db),
    locks: EntityLocks = Depends(get_locks),
):
    if not verify_password(body.current_password, user["password_hash"]):
        raise ValidationError.for_field("current_password", "is incorrect")
    problems = password_problems(body.new_password)
    if problems:
        raise ValidationError("Validation failed", {"new_password": problems})

    async with locks.hold("user", user["id"]):
        await user_queries.set_password_hash(db, user["id"], hash_password(body.new_password))
        revoked = 0
        if body.revoke_other_sessions:
            revoked = await session_queries.revoke_other_sessions(db, user["id"], session["id"])
    await audit_service.record(
        db, "password.changed", user, target=user["username"],
        details={"sessions_revoked": revoked}, user_id=user["id"],
    )
    return ok({"message": "Password changed", "sessions_revoked": revoked})


# ── TOTP ──

@router.post("/mfa/setup")
async def mfa_setup(
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    if user["mfa_enabled"]:
        raise ConflictError("MFA is already enabled")
    secret = totp.generate_secret()
    await user_queries.set_pending_mfa_secret(db, user["id"], encrypt(secret))
    return ok({
        "secret": secret,
        "otpauth_url": totp.provisioning_uri(secret, user["email"]),
    })


@router.post("/mfa/verify")
async def mfa_verify(
    body: MfaVerify,
    db: aiosqlite.Connection = Depends(get_db),
    locks: EntityLocks = Depends(get_locks),
    client: ClientInfo = Depends(client_info),
    session: dict | None = Depends(optional_session),
):
    if body.temp_token:
        result = await login_flow.complete_totp(db, locks, body.temp_token, body.code, _with_device(client, body))
        return ok(result.to_dict())

    # No temp token: confirm a pending setup for the signed-in user
    if session is None:
        raise AuthenticationError()
    async with locks.hold("user", session["user_id"]):
        user = await user_queries.get_user(db, session["user_id"])
        pending = user["mfa_pending_secret_encrypted"]
        if not pending:
            raise ConflictError("No MFA setup in progress")
        if not totp.verify_code(decrypt(pending), body.code):
            raise ValidationError.for_field("code", "is invalid or expired")
        await user_queries.enable_mfa(db, user["id"], pending)
        codes = generate_backup_codes()
        await mfa_queries.replace_backup_codes(db, user["id"], [hash_secret(c) for c in codes])
    await audit_service.record(db, "mfa.enabled", user, target=user["username"],
                               details={"method": "totp"}, user_id=user["id"])
    return ok({"enabled": True, "backup_codes": codes})


@router.post("/mfa/backup-code")
async def mfa_backup_code(
    body: BackupCodeLogin,
    db: aiosqlite.Connection = Depends(get_db),
    locks: EntityLocks = Depends(get_locks),
    client: ClientInfo = Depends(client_info),
):
    result = await login_flow.complete_backup_code(db, locks, body.temp_token, body.code, _with_device(client, body))
    return ok(result.to_dict())


@router.post("/mfa/disable")
async def mfa_disable(
    body: MfaDisable,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
    locks: EntityLocks = Depends(get_locks),
):
    if not user["mfa_enabled"]:
        raise ConflictError("MFA is not enabled")
    if not verify_password(body.password, user["password_hash"]):
        raise ValidationError.for_field("password", "is incorrect")
    async with locks.hold("user", user["id"]):
        await user_queries.disable_mfa(db, user["id"])
    await audit_service.record(db, "mfa.disabled", user, target=user["username"], user_id=user["id"])
    return ok({"enabled": False})


@router.post("/mfa/backup-codes/regenerate")
async def regenerate_backup_codes(
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
    locks: EntityLocks = Depends(get_locks),
):
    if not user["mfa_enabled"]:
        raise ConflictError("MFA is not enabled")
    codes = generate_backup_codes()
    async with locks.hold("user", user["id"]):
        await mfa_queries.replace_backup_codes(db, user["id"], [hash_secret(c) for c in codes])
    await audit_service.record(db, "mfa.backup_codes_regenerated", user, target=user["username"],
                               details={"count": len(codes)}, user_id=user["id"])
    return ok({"backup_codes": codes})


# ── WebAuthn ──

@router.post("/webauthn/register")
async def webauthn_register(
    body: WebAuthnRegister,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    if not body.credential_id.strip():
        raise ValidationError.for_field("credential_id", "must not be empty")
    public_key = to_pem(load_public_key(body.public_key))
    if await mfa_queries.get_webauthn_credential(db, body.credential_id):
        raise ConflictError("Credential is already registered")
    await mfa_queries.add_webauthn_credential(db, user["id"], body.credential_id, public_key, body.name)
    await audit_service.record(db, "webauthn.registered", user, target=body.credential_id,
                               details={"name": body.name}, user_id=user["id"])
    credential = await mfa_queries.get_webauthn_credential(db, body.credential_id)
    return created(mfa_queries.public_credential(credential))


@router.post("/webauthn/authenticate")
async def webauthn_authenticate(
    body: WebAuthnAuthenticate,
    db: aiosqlite.Connection = Depends(get_db),
    locks: EntityLocks = Depends(get_locks),
    client: ClientInfo = Depends(client_info),
):
    result = await login_flow.complete_webauthn(
        db, locks, body.temp_token, body.credential_id, body.signature, body.sign_count, _with_device(client, body)
    )
    return ok(result.to_dict())


@router.get("/webauthn/credentials")
async def list_webauthn_credentials(
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    rows = await mfa_queries.list_webauthn_credentials(db, user["id"])
    return ok({"items": [mfa_queries.public_credential(r) for r in rows]})


@router.delete("/webauthn/credentials/{credential_id}")
async def remove_webauthn_credential(
    credential_id: str,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    if not await mfa_queries.delete_webauthn_credential(db, user["id"], credential_id):
        raise NotFoundError("Credential not found")
    await audit_service.record(db, "webauthn.removed", user, target=credential_id, user_id=user["id"])
    return ok({"deleted": True})
