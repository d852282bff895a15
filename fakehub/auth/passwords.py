"""Password and backup-code hashing."""

from __future__ import annotations

import secrets

import bcrypt

from fakehub.config import settings
from fakehub.utils.validators import PASSWORD_MAX_BYTES

_dummy_hash: str | None = None


def hash_secret(value: str) -> str:
    return bcrypt.hashpw(value.encode(), bcrypt.gensalt(rounds=settings.bcrypt_rounds)).decode()


def verify_secret(value: str, hashed: str | None) -> bool:
    """Check ``value`` against a bcrypt hash.

    A missing hash (unknown user, SSO-only account) still costs one bcrypt
    round so the response time does not reveal which case it was. Values
    too long for bcrypt can never match a stored hash.
    """
    global _dummy_hash
    if len(value.encode()) > PASSWORD_MAX_BYTES:
        return False
    if not hashed:
        if _dummy_hash is None:
            _dummy_hash = hash_secret("dummy-password")
        bcrypt.checkpw(value.encode(), _dummy_hash.encode())
        return False
    return bcrypt.checkpw(value.encode(), hashed.encode())


hash_password = hash_secret
verify_password = verify_secret


def generate_backup_codes(count: int | None = None) -> list[str]:
    """Human-typable single-use codes, ``xxxxx-xxxxx``."""
    count = count or settings.backup_code_count
    codes = []
    for _ in range(count):
        raw = secrets.token_hex(5)
        codes.append(f"{raw[:5]}-{raw[5:]}")
    return codes


def normalize_backup_code(code: str) -> str:
    code = code.strip().lower().replace(" ", "")
    if len(code) == 10 and "-" not in code:
        code = f"{code[:5]}-{code[5:]}"
    return code
