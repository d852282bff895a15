"""WebAuthn-style credentials: P-256 public keys and ECDSA assertions.

The assertion is a DER ECDSA/SHA-256 signature over the UTF-8 challenge
string, base64url-encoded. That keeps the ceremony falsifiable (a wrong key
or a replayed counter fails) without authenticator-data parsing.
"""

from __future__ import annotations

import base64
import binascii
import secrets

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec

from fakehub.errors import ValidationError


def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode().rstrip("=")


def b64url_decode(value: str) -> bytes:
    return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))


def new_challenge() -> str:
    return b64url_encode(secrets.token_bytes(32))


def load_public_key(value: str) -> ec.EllipticCurvePublicKey:
    """Accept PEM or base64url DER SubjectPublicKeyInfo; only P-256 keys."""
    try:
        if value.lstrip().startswith("-----BEGIN"):
            key = serialization.load_pem_public_key(value.encode())
        else:
            key = serialization.load_der_public_key(b64url_decode(value))
    except (ValueError, binascii.Error, TypeError):
        raise ValidationError.for_field("public_key", "not a valid public key")
    if not isinstance(key, ec.EllipticCurvePublicKey) or not isinstance(key.curve, ec.SECP256R1):
        raise ValidationError.for_field("public_key", "must be an EC P-256 key")
    return key


def to_pem(key: ec.EllipticCurvePublicKey) -> str:
    return key.public_bytes(
        serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo
    ).decode()


def verify_assertion(public_key_pem: str, challenge: str, signature: str) -> bool:
    key = serialization.load_pem_public_key(public_key_pem.encode())
    try:
        key.verify(b64url_decode(signature), challenge.encode(), ec.ECDSA(hashes.SHA256()))
    except (InvalidSignature, ValueError, binascii.Error):
        return False
    return True


def sign_challenge(private_key: ec.EllipticCurvePrivateKey, challenge: str) -> str:
    """Authenticator side of the ceremony, used by fixtures and clients."""
    return b64url_encode(private_key.sign(challenge.encode(), ec.ECDSA(hashes.SHA256())))
