"""Middleware package: error hierarchy and admin-key auth."""

from statwatch.middleware.auth import AdminKeyAuthMiddleware
from statwatch.middleware.error_handler import (
    AllSourcesFailedError,
    AuthError,
    AuthenticationError,
    FetchError,
    FetchTimeoutError,
    HttpError,
    RateLimitError,
    SourceUnreachableError,
    StatwatchError,
    UnknownEndpointError,
    register_error_handlers,
)

__all__ = [
    "AdminKeyAuthMiddleware",
    "AllSourcesFailedError",
    "AuthError",
    "AuthenticationError",
    "FetchError",
    "FetchTimeoutError",
    "HttpError",
    "RateLimitError",
    "SourceUnreachableError",
    "StatwatchError",
    "UnknownEndpointError",
    "register_error_handlers",
]
