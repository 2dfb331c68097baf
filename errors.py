"""
Application error hierarchy and FastAPI exception handlers.

AppError is the base for all typed errors. Services do not raise these
across their public operations; they return them inside a ``shared.result``
``Err`` so callers can branch on the kind. Route handlers unwrap the result,
which raises the carried error, and the global exception handler converts
it to a consistent JSON response.

Non-AppError exceptions bubble up as 500s (with Sentry reporting in production).
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from shared.logging import get_logger

log = get_logger(__name__)


class AppError(Exception):
    """Base application error. All typed errors inherit from this."""

    status_code: int = 500
    error_code: str = "internal_error"

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        details: Optional[Any] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.field = field
        self.details = details

    def to_dict(self) -> dict:
        payload: dict = {"error": self.message, "code": self.error_code}
        if self.field is not None:
            payload["field"] = self.field
        if self.details is not None:
            payload["details"] = self.details
        return payload

    def headers(self) -> Optional[dict[str, str]]:
        return None


class ValidationError(AppError):
    status_code = 400
    error_code = "validation_error"


class AuthenticationError(AppError):
    status_code = 401
    error_code = "authentication_error"


class ForbiddenError(AppError):
    status_code = 403
    error_code = "forbidden"


class NotFoundError(AppError):
    status_code = 404
    error_code = "not_found"


class ConflictError(AppError):
    status_code = 409
    error_code = "conflict"


class RateLimitError(AppError):
    status_code = 429
    error_code = "rate_limit_exceeded"


class ProviderNotConfiguredError(AppError):
    """An external sign-in provider was requested but has no credentials."""

    status_code = 501
    error_code = "provider_not_configured"


# ── Identity ──────────────────────────────────────────────────────────────────


class IdentityAmbiguousError(AppError):
    """The provider assertion carries no usable email to key the account on."""

    status_code = 422
    error_code = "identity_ambiguous"


class WriteConflictError(ConflictError):
    """A unique index rejected the write (email, handle or provider id race).

    Retryable: re-running the resolution will hit an existing record.
    """

    error_code = "write_conflict"


# ── OTP challenges ────────────────────────────────────────────────────────────


class ChallengeNotFoundError(AppError):
    status_code = 400
    error_code = "challenge_not_found"


class ChallengeExpiredError(AppError):
    status_code = 400
    error_code = "challenge_expired"


class ChallengeExhaustedError(RateLimitError):
    error_code = "challenge_exhausted"


class ChallengeMismatchError(AppError):
    status_code = 400
    error_code = "challenge_mismatch"

    def __init__(self, message: str, *, remaining_attempts: int) -> None:
        super().__init__(
            message, details={"remaining_attempts": remaining_attempts}
        )
        self.remaining_attempts = remaining_attempts


class ResendThrottledError(RateLimitError):
    error_code = "resend_throttled"

    def __init__(self, message: str, *, retry_after: int) -> None:
        super().__init__(message, details={"retry_after": retry_after})
        self.retry_after = retry_after

    def headers(self) -> Optional[dict[str, str]]:
        return {"Retry-After": str(self.retry_after)}


# ── Client ────────────────────────────────────────────────────────────────────


class StorageCorruptError(AppError):
    """A persisted client session could not be parsed. Self-heals by clearing."""

    error_code = "storage_corrupt"


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the FastAPI app."""

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict(),
            headers=exc.headers(),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        # Sentry integration: if sentry_sdk is initialized it will auto-capture
        # unhandled exceptions before this handler fires.
        log.error(
            "unhandled_exception",
            path=request.url.path,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        return JSONResponse(
            status_code=500,
            content={"error": "An internal server error occurred.", "code": "internal_error"},
        )
