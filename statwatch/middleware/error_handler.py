"""Global error hierarchy and FastAPI exception handlers.

All statwatch-specific errors extend StatwatchError. Fetch failures raised by
the executor extend FetchError so the orchestrator can record them against a
source without caring about the exact cause. The FastAPI exception handlers
render these errors (plus Pydantic's RequestValidationError and unhandled
exceptions) as a consistent JSON envelope: { success, data, error, meta }.
"""

from __future__ import annotations

import logging
import traceback

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Error hierarchy
# ---------------------------------------------------------------------------


class StatwatchError(Exception):
    """Base error for all statwatch-specific errors."""

    status_code: int = 500
    message: str = "Internal server error"

    def __init__(self, message: str | None = None, **kwargs: object) -> None:
        self.message = message or self.__class__.message
        self.details = kwargs
        super().__init__(self.message)


class FetchError(StatwatchError):
    """A single upstream fetch attempt failed."""

    status_code = 502
    message = "Upstream fetch failed"


class AuthError(FetchError):
    """Upstream rejected our credentials (401). Never retried."""

    message = "Upstream rejected credentials"


class RateLimitError(FetchError):
    """Upstream returned 429; ``retry_after`` seconds drives the next backoff."""

    status_code = 503
    message = "Upstream rate limited"

    def __init__(
        self, message: str | None = None, *, retry_after: float = 5.0, **kwargs: object
    ) -> None:
        self.retry_after = retry_after
        super().__init__(message, retry_after=retry_after, **kwargs)


class HttpError(FetchError):
    """Upstream returned a non-2xx status other than 401/429."""

    message = "Upstream returned an error status"

    def __init__(
        self,
        message: str | None = None,
        *,
        status: int = 0,
        body: str = "",
        **kwargs: object,
    ) -> None:
        self.status = status
        self.body = body
        super().__init__(message, status=status, body=body, **kwargs)


class FetchTimeoutError(FetchError):
    """Upstream did not answer within the request timeout."""

    status_code = 504
    message = "Upstream request timed out"


class SourceUnreachableError(FetchError):
    """Connection-level failure (DNS, refused, reset, proxy)."""

    message = "Upstream unreachable"


class AllSourcesFailedError(StatwatchError):
    """Every candidate source for an endpoint was tried and failed."""

    status_code = 503
    message = "All sources failed"

    def __init__(
        self,
        message: str | None = None,
        *,
        endpoint: str = "",
        errors: dict[str, str] | None = None,
        **kwargs: object,
    ) -> None:
        self.endpoint = endpoint
        self.errors = errors or {}
        super().__init__(message, endpoint=endpoint, errors=self.errors, **kwargs)


class UnknownEndpointError(StatwatchError):
    """Requested endpoint is not in the source registry."""

    status_code = 404
    message = "Unknown endpoint"


class AuthenticationError(StatwatchError):
    """Invalid or missing admin key."""

    status_code = 401
    message = "Invalid or missing admin key"


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------


def _envelope(
    status_code: int,
    error: str,
    meta: dict | None = None,
) -> JSONResponse:
    """Build a JSON envelope error response."""
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "data": None,
            "error": error,
            "meta": meta,
        },
    )


async def _statwatch_error_handler(
    _request: Request, exc: StatwatchError
) -> JSONResponse:
    """Handle StatwatchError subclasses."""
    meta = exc.details if exc.details else None
    return _envelope(exc.status_code, exc.message, meta=meta)


async def _validation_error_handler(
    _request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle FastAPI / Pydantic RequestValidationError (422)."""
    field_errors = [
        {
            "field": " -> ".join(str(loc) for loc in err["loc"]),
            "message": err["msg"],
            "type": err["type"],
        }
        for err in exc.errors()
    ]
    return _envelope(
        status_code=422,
        error="Validation error",
        meta={"fields": field_errors},
    )


async def _unhandled_error_handler(_request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unhandled exceptions: log traceback, return generic 500."""
    logger.error(
        "Unhandled exception: %s\n%s",
        exc,
        traceback.format_exc(),
    )
    return _envelope(status_code=500, error="Internal server error")


# ---------------------------------------------------------------------------
# Registration helper
# ---------------------------------------------------------------------------


def register_error_handlers(app: FastAPI) -> None:
    """Wire up all exception handlers on the FastAPI application."""
    app.add_exception_handler(StatwatchError, _statwatch_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _validation_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _unhandled_error_handler)  # type: ignore[arg-type]
