"""Error taxonomy and normalized error handlers.

Authentication and authorization failures render with one code and one message;
callers cannot tell a bad token from a missing role.
"""

import logging
from typing import Optional
from uuid import uuid4

from fastapi import HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.requests import Request

from backend.core.logging import get_request_id

UNAUTHORIZED_MESSAGE = "Unauthorized"


class AppError(Exception):
    code = "app_error"
    status_code = 500
    default_message = "Application error"

    def __init__(self, message: Optional[str] = None, *, code: Optional[str] = None, status_code: Optional[int] = None, request_id: Optional[str] = None):
        message = message or self.default_message
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.request_id = request_id
        self.headers: dict = {}


class AuthenticationError(AppError):
    """Missing, malformed, expired or forged session token."""
    code = "unauthorized"
    status_code = 401
    default_message = UNAUTHORIZED_MESSAGE

    def __init__(self, *, request_id: Optional[str] = None):
        super().__init__(UNAUTHORIZED_MESSAGE, request_id=request_id)


class AuthorizationError(AuthenticationError):
    """Valid identity, insufficient role. Rendered exactly like AuthenticationError."""


class InvalidCredentialsError(AppError):
    code = "invalid_credentials"
    status_code = 401
    default_message = "Invalid credentials"


class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400


class NotFoundError(AppError, ValueError):
    code = "not_found"
    status_code = 404


class ConflictError(AppError):
    code = "conflict"
    status_code = 409


class QuotaExceededError(AppError):
    code = "quota_exceeded"
    status_code = 403
    default_message = "Free limit reached. Please upgrade to premium."


class PremiumRequiredError(AppError):
    code = "premium_required"
    status_code = 403
    default_message = "Video generation is only available for premium users"


class RateLimitError(AppError):
    code = "rate_limited"
    status_code = 429
    default_message = "Too many attempts. Please try again later."

    def __init__(self, message: Optional[str] = None, *, retry_after: Optional[int] = None, request_id: Optional[str] = None):
        super().__init__(message, request_id=request_id)
        self.retry_after = retry_after
        if retry_after is not None:
            self.headers["Retry-After"] = str(max(1, int(retry_after)))


class RegistrationDisabledError(AppError):
    code = "registration_disabled"
    status_code = 403
    default_message = "Registration is currently disabled"


class MaintenanceModeError(AppError):
    code = "maintenance"
    status_code = 503
    default_message = "The service is temporarily in maintenance mode"


class LedgerWriteError(AppError):
    code = "audit_write_failed"
    status_code = 500
    default_message = "Audit log write failed; the change was not applied"


class StorageUnavailableError(AppError):
    code = "storage_unavailable"
    status_code = 503
    default_message = "Storage is temporarily unavailable"


def _extract_request_id(request: Request, fallback: Optional[str] = None) -> str:
    return (
        getattr(request.state, "request_id", None)
        or get_request_id()
        or fallback
        or str(uuid4())
    )


def _error_payload(code: str, message: str, request_id: str) -> dict:
    return {
        "error": {"code": code, "message": message, "request_id": request_id},
        "detail": message,
    }


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _extract_request_id(request)
    payload = _error_payload(exc.code, exc.message, rid)
    logger = logging.getLogger("socialstory")
    log_level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        log_level,
        "app.error",
        extra={"request_id": rid, "error_code": exc.code, "status": exc.status_code, "path": request.url.path},
    )
    response = JSONResponse(status_code=exc.status_code, content=payload)
    for name, value in exc.headers.items():
        response.headers[name] = value
    response.headers["x-request-id"] = rid
    return response


async def validation_error_handler(request: Request, exc: RequestValidationError):
    rid = _extract_request_id(request)
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"{field}: {first.get('msg', 'invalid input')}" if field else first.get("msg", "Invalid input")
    logger = logging.getLogger("socialstory")
    logger.warning("validation.error", extra={"request_id": rid, "error_code": "validation_error", "path": request.url.path})
    response = JSONResponse(status_code=400, content=_error_payload("validation_error", message, rid))
    response.headers["x-request-id"] = rid
    return response


async def http_error_handler(request: Request, exc: HTTPException):
    rid = _extract_request_id(request)
    code = "not_found" if exc.status_code == 404 else "http_error"
    message = exc.detail if exc.detail else "HTTP error"
    payload = _error_payload(code, message, rid)
    logger = logging.getLogger("socialstory")
    logger.warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    response = JSONResponse(status_code=exc.status_code, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _extract_request_id(request)
    logger = logging.getLogger("socialstory")
    logger.error("unhandled.exception", exc_info=True, extra={"request_id": rid, "error_code": "internal_error"})
    payload = _error_payload("internal_error", "Unexpected error", rid)
    response = JSONResponse(status_code=500, content=payload)
    response.headers["x-request-id"] = rid
    return response
