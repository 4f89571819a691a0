"""X-Admin-Key authentication middleware.

Read-only routes (health, metrics, data reads) are public. Routes that spend
upstream request budget or reset state (``/diagnostics/*``, ``/cache/*``)
require an ``X-Admin-Key`` header matching the configured admin key.

Uses ``hmac.compare_digest`` for constant-time comparison.
"""

from __future__ import annotations

import hmac
import logging

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from statwatch.middleware.error_handler import AuthenticationError, _envelope

logger = logging.getLogger(__name__)

# Path prefixes that require the admin key.
_PROTECTED_PREFIXES: tuple[str, ...] = ("/diagnostics", "/cache")


class AdminKeyAuthMiddleware(BaseHTTPMiddleware):
    """Starlette middleware that guards admin routes with ``X-Admin-Key``."""

    def __init__(self, app, admin_key: str) -> None:  # noqa: ANN001
        super().__init__(app)
        self._admin_key = admin_key

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if not path.startswith(_PROTECTED_PREFIXES):
            return await call_next(request)

        provided_key = request.headers.get("x-admin-key")
        source_ip = request.client.host if request.client else "unknown"

        if not provided_key or not hmac.compare_digest(provided_key, self._admin_key):
            logger.warning(
                "Rejected admin request",
                extra={
                    "event": "auth_failure",
                    "reason": "missing_admin_key" if not provided_key else "invalid_admin_key",
                    "source_ip": source_ip,
                    "path": path,
                },
            )
            return _envelope(
                status_code=AuthenticationError.status_code,
                error=AuthenticationError.message,
            )

        return await call_next(request)
