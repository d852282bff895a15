"""Service error hierarchy. Every failure a handler can report is one of these."""

from __future__ import annotations


class ServiceError(Exception):
    """Base class; ``status_code`` picks the HTTP status of the failure envelope."""

    status_code = 500

    def __init__(self, message: str = "Internal server error"):
        super().__init__(message)
        self.message = message


class ValidationError(ServiceError):
    status_code = 400

    def __init__(self, message: str = "Validation failed", errors: dict[str, list[str]] | None = None):
        super().__init__(message)
        self.errors = errors or {}

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationError":
        return cls(f"{field}: {message}", {field: [message]})


class AuthenticationError(ServiceError):
    """Missing, invalid or expired credential. The message stays generic."""

    status_code = 401

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class PermissionDeniedError(ServiceError):
    status_code = 403

    def __init__(self, message: str = "You do not have permission to perform this action"):
        super().__init__(message)


class NotFoundError(ServiceError):
    status_code = 404

    def __init__(self, message: str = "Not found"):
        super().__init__(message)


class ConflictError(ServiceError):
    status_code = 409


class TransientError(ServiceError):
    """Simulated infrastructure failure. Callers may retry."""

    status_code = 503

    def __init__(
        self,
        message: str = "Service temporarily unavailable",
        status_code: int = 503,
        retry_after: int | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.retry_after = retry_after


class ValidationCollector:
    """Accumulates per-field messages so a request fails once with all of them."""

    def __init__(self) -> None:
        self.errors: dict[str, list[str]] = {}

    def add(self, field: str, message: str) -> None:
        self.errors.setdefault(field, []).append(message)

    def raise_if_any(self, message: str = "Validation failed") -> None:
        if self.errors:
            raise ValidationError(message, self.errors)
