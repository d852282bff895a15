"""fakehub SDK exceptions, one per failure class of the response envelope."""


class FakehubError(Exception):
    """Base exception for the fakehub SDK."""

    def __init__(self, message: str, status_code: int | None = None, retryable: bool = False):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.retryable = retryable


class ValidationError(FakehubError):
    """Malformed input. ``errors`` maps each field to its messages."""

    def __init__(self, message: str = "Validation failed", errors: dict[str, list[str]] | None = None):
        super().__init__(message, status_code=400)
        self.errors = errors or {}


class AuthenticationError(FakehubError):
    """Missing, invalid or expired bearer token."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message, status_code=401)


class PermissionDeniedError(FakehubError):
    def __init__(self, message: str = "Permission denied"):
        super().__init__(message, status_code=403)


class NotFoundError(FakehubError):
    """Unknown entity, or one the caller may not see."""

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message, status_code=404)


class ConflictError(FakehubError):
    def __init__(self, message: str = "Conflict"):
        super().__init__(message, status_code=409)


class TransientError(FakehubError):
    """Network failure, timeout or 503/504. Safe to retry."""

    def __init__(self, message: str = "Service temporarily unavailable", status_code: int | None = None):
        super().__init__(message, status_code=status_code, retryable=True)


class RateLimitError(TransientError):
    """Rate limit exceeded."""

    def __init__(self, retry_after: int | None = None):
        msg = "Rate limit exceeded"
        if retry_after:
            msg += f". Retry after {retry_after}s"
        super().__init__(msg, status_code=429)
        self.retry_after = retry_after
