"""Time-based one-time passwords (RFC 6238, HMAC-SHA1)."""

from __future__ import annotations

import base64
import hmac
import secrets
import struct
import time
from urllib.parse import quote, urlencode

from fakehub.config import settings


def generate_secret() -> str:
    """160-bit base32 secret, as authenticator apps expect."""
    return base64.b32encode(secrets.token_bytes(20)).decode().rstrip("=")


def _key(secret: str) -> bytes:
    padded = secret.upper() + "=" * (-len(secret) % 8)
    return base64.b32decode(padded)


def code_at(secret: str, counter: int, digits: int | None = None) -> str:
    digits = digits or settings.totp_digits
    mac = hmac.new(_key(secret), struct.pack(">Q", counter), "sha1").digest()
    offset = mac[-1] & 0x0F
    value = struct.unpack(">I", mac[offset:offset + 4])[0] & 0x7FFFFFFF
    return str(value % 10**digits).zfill(digits)


def current_code(secret: str, at: float | None = None) -> str:
    now = time.time() if at is None else at
    return code_at(secret, int(now // settings.totp_period_seconds))


def verify_code(secret: str, code: str, at: float | None = None) -> bool:
    """Accept the code for the current step or up to ``totp_drift_steps`` either side."""
    code = code.strip().replace(" ", "")
    if not code.isdigit() or len(code) != settings.totp_digits:
        return False
    now = time.time() if at is None else at
    counter = int(now // settings.totp_period_seconds)
    drift = settings.totp_drift_steps
    return any(
        hmac.compare_digest(code_at(secret, counter + step), code)
        for step in range(-drift, drift + 1)
    )


def provisioning_uri(secret: str, account: str, issuer: str = "fakehub") -> str:
    params = urlencode({
        "secret": secret,
        "issuer": issuer,
        "digits": settings.totp_digits,
        "period": settings.totp_period_seconds,
    })
    return f"otpauth://totp/{quote(issuer)}:{quote(account)}?{params}"
