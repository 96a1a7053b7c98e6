"""Custom exception hierarchy and handlers."""

from __future__ import annotations

import logging

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base application exception."""

    status_code = 400
    code = "app_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ValidationException(AppException):
    """Raised when request data fails a domain validation rule."""

    status_code = 400
    code = "validation_error"


class AmountMismatchException(AppException):
    """Raised when a declared amount disagrees with the server-side price."""

    status_code = 400
    code = "amount_mismatch"


class PaymentProviderException(AppException):
    """Raised when the payment processor rejects a request."""

    status_code = 400
    code = "payment_provider_error"


class SignatureVerificationException(AppException):
    """Raised when a processor notification fails signature verification."""

    status_code = 400
    code = "invalid_signature"


class AuthenticationException(AppException):
    """Raised when the caller is not authenticated."""

    status_code = 401
    code = "unauthenticated"


class UnauthorizedException(AppException):
    """Raised when user has no rights for operation."""

    status_code = 403
    code = "forbidden"


class NotFoundException(AppException):
    """Raised when entity is not found."""

    status_code = 404
    code = "not_found"


class ConflictException(AppException):
    """Raised when entity conflicts with current state."""

    status_code = 409
    code = "conflict"


class SlotUnavailableException(ConflictException):
    """Raised when a requested slot was taken by another reservation."""

    code = "slot_unavailable"


class InvalidTransitionException(ConflictException):
    """Raised when a status change is not allowed by the state machine."""

    code = "invalid_transition"


class BusinessRuleException(AppException):
    """Raised when business rule validation fails."""

    status_code = 422
    code = "business_rule_violation"


class IdempotencyKeyReuseException(BusinessRuleException):
    """Raised when an idempotency key is replayed with a different payload."""

    code = "idempotency_key_reused"


class RateLimitException(AppException):
    """Raised when a caller exceeds the request budget."""

    status_code = 429
    code = "rate_limited"

    def __init__(self, message: str, retry_after: int | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class ServiceUnavailableException(AppException):
    """Raised when the payment processor cannot be reached."""

    status_code = 503
    code = "payment_service_unavailable"


def _error_body(code: str, message: str) -> dict[str, str]:
    return {"error": code, "message": message}


async def app_exception_handler(_: Request, exc: AppException) -> JSONResponse:
    """Handle custom domain exceptions."""
    headers = None
    retry_after = getattr(exc, "retry_after", None)
    if retry_after is not None:
        headers = {"Retry-After": str(retry_after)}
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(exc.code, exc.message),
        headers=headers,
    )


async def http_exception_handler(_: Request, exc: HTTPException) -> JSONResponse:
    """Handle FastAPI HTTP exceptions in unified shape."""
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body("http_error", str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


async def request_validation_exception_handler(
    _: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """Render request body/query validation failures as 400."""
    details = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        details.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    message = "; ".join(details) or "Invalid request"
    return JSONResponse(status_code=400, content=_error_body("validation_error", message))


async def unhandled_exception_handler(_: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.exception("Unhandled error: %s", exc)
    return JSONResponse(
        status_code=500,
        content=_error_body("internal_error", "Internal server error"),
    )


def register_exception_handlers(app) -> None:
    """Register global exception handlers."""
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
