"""
API error taxonomy and the handlers that render it.

Every error leaves the service in the same shape::

    {"success": false, "msg": "...", ...extra fields}

Subclasses fix the HTTP status; ``extra`` carries endpoint-specific
hints such as ``retryAfter`` or ``remainingAttempts``.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class APIError(HTTPException):
    """Base class for every error the API raises on purpose."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    detail: str = "Server error occurred"

    def __init__(
        self,
        detail: str | None = None,
        *,
        headers: dict[str, str] | None = None,
        **extra: Any,
    ) -> None:
        super().__init__(
            status_code=type(self).status_code,
            detail=detail or type(self).detail,
            headers=headers,
        )
        self.extra = extra


class ValidationError(APIError):
    """400 – malformed input, rejected before any state changes."""

    status_code = status.HTTP_400_BAD_REQUEST
    detail = "Invalid request"


class InvalidOtpError(ValidationError):
    """400 – the submitted code did not verify."""

    detail = "Invalid OTP"


class LockoutError(InvalidOtpError):
    """400 – every verification attempt for the current code is used up."""

    detail = "Too many failed attempts. Please request a new OTP."


class RateLimitError(APIError):
    """429 – per-phone send limit hit."""

    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    detail = "Too many attempts"

    def __init__(self, detail: str | None = None, *, retry_after: datetime | None = None, **extra: Any) -> None:
        super().__init__(detail, retryAfter=retry_after, **extra)


class QuotaExceededError(RateLimitError):
    """429 – daily OTP cap reached."""

    detail = "Daily OTP limit exceeded"


class NotFoundError(APIError):
    """404"""

    status_code = status.HTTP_404_NOT_FOUND
    detail = "No user found with this phone number"


class AccountStateError(APIError):
    """401 – deactivated or locked account."""

    status_code = status.HTTP_401_UNAUTHORIZED
    detail = "Account is deactivated. Please contact support."


class AuthenticationError(APIError):
    """401 – bad credentials."""

    status_code = status.HTTP_401_UNAUTHORIZED
    detail = "Invalid credentials"


class DeliveryError(APIError):
    """500 – every SMS provider failed."""

    detail = "Error sending OTP"


# ── Handlers ──────────────────────────────────────────────────────────────


def _failure(status_code: int, msg: str, headers: dict[str, str] | None = None, **extra: Any) -> JSONResponse:
    content = {"success": False, "msg": msg, **extra}
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(content),
        headers=headers,
    )


async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
    else:
        logger.info("%s %s rejected (%d): %s", request.method, request.url.path, exc.status_code, exc.detail)
    return _failure(exc.status_code, exc.detail, exc.headers, **exc.extra)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Body/query validation failures become a 400 with a readable message."""
    messages = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error["loc"] if part != "body")
        messages.append(f"{field}: {error['msg']}" if field else error["msg"])

    logger.info("Validation error on %s: %s", request.url.path, messages)
    return _failure(status.HTTP_400_BAD_REQUEST, ", ".join(messages) or "Invalid request")


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return _failure(status.HTTP_429_TOO_MANY_REQUESTS, f"Rate limit exceeded: {exc.detail}")


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _failure(exc.status_code, str(exc.detail), getattr(exc, "headers", None))


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _failure(status.HTTP_500_INTERNAL_SERVER_ERROR, "Server error occurred")


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
