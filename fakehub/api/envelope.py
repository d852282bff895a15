"""Response envelope: ``{success, data}`` or ``{success, error, validation_errors?}``.

Handlers return ``ok(...)`` and raise ``ServiceError`` subclasses; the
handlers registered here turn every failure, including FastAPI's own
validation and routing errors, into the failure envelope.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from fakehub.errors import ServiceError, TransientError, ValidationError

logger = logging.getLogger(__name__)


def ok(data: Any = None, status_code: int = 200) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": True, "data": jsonable_encoder(data)})


def created(data: Any) -> JSONResponse:
    return ok(data, status_code=201)


def failure_body(
    message: str,
    validation_errors: dict[str, list[str]] | None = None,
    retryable: bool = False,
) -> dict:
    body: dict[str, Any] = {"success": False, "error": message}
    if validation_errors:
        body["validation_errors"] = validation_errors
    if retryable:
        body["retryable"] = True
    return body


async def _service_error_handler(_request: Request, exc: ServiceError) -> JSONResponse:
    headers = {}
    if isinstance(exc, TransientError):
        if exc.retry_after is not None:
            headers["Retry-After"] = str(exc.retry_after)
        body = failure_body(exc.message, retryable=True)
    elif isinstance(exc, ValidationError):
        body = failure_body(exc.message, exc.errors)
    else:
        body = failure_body(exc.message)
    return JSONResponse(status_code=exc.status_code, content=body, headers=headers or None)


async def _validation_error_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
    errors: dict[str, list[str]] = {}
    for err in exc.errors():
        loc = [str(part) for part in err["loc"] if part not in ("body", "query", "path")]
        field = ".".join(loc) or "body"
        errors.setdefault(field, []).append(err["msg"])
    return JSONResponse(status_code=400, content=failure_body("Validation failed", errors))


async def _http_error_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == 404:
        message = "Not found"
    elif exc.status_code == 405:
        message = "Method not allowed"
    else:
        message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return JSONResponse(status_code=exc.status_code, content=failure_body(message), headers=getattr(exc, "headers", None))


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content=failure_body("Internal server error"))


def register_error_handlers(app: FastAPI) -> None:
    """Register exception handlers on the app."""
    app.add_exception_handler(ServiceError, _service_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _validation_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, _http_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _unhandled_error_handler)
