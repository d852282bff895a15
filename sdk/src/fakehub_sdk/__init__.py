"""fakehub Python SDK: talk to a fakehub server from tests and scripts."""

from fakehub_sdk.client import FakehubClient
from fakehub_sdk.exceptions import (
    AuthenticationError,
    ConflictError,
    FakehubError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitError,
    TransientError,
    ValidationError,
)

__all__ = [
    "FakehubClient",
    "FakehubError",
    "ValidationError",
    "AuthenticationError",
    "PermissionDeniedError",
    "NotFoundError",
    "ConflictError",
    "TransientError",
    "RateLimitError",
]
