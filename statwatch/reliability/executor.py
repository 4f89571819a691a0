"""Single-source HTTP fetch with a global concurrency gate and retries.

Every attempt holds one slot of a process-wide ``asyncio.Semaphore``; waiters
are released in FIFO order. The slot is released before any retry sleep so a
backing-off request never blocks other endpoints.

Status handling:
- 401 → ``AuthError``, raised immediately (bad credentials will not heal)
- 429 → ``RateLimitError``; the next backoff uses its ``Retry-After``
- other non-2xx → ``HttpError`` with the status and a truncated body
- timeouts → ``FetchTimeoutError``; any other httpx error (transport, redirect
  loop, undecodable body, bad URL) → ``SourceUnreachableError``
- a JSON content type with an unparseable body → ``HttpError``

After the final attempt the error propagates unchanged.
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any

import httpx

from statwatch.middleware.error_handler import (
    AuthError,
    FetchError,
    FetchTimeoutError,
    HttpError,
    RateLimitError,
    SourceUnreachableError,
)

logger = logging.getLogger(__name__)

_BODY_PREVIEW_CHARS = 200
DEFAULT_MAX_RETRY_AFTER_SECONDS = 60.0

DEFAULT_HEADERS: dict[str, str] = {
    "Accept": "application/json, text/plain, */*",
    "Accept-Language": "en-US,en;q=0.9",
    "Cache-Control": "no-cache",
}


@dataclass
class FetchOptions:
    """Per-call request customisation."""

    params: dict[str, Any] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)
    method: str = "GET"


def parse_retry_after(
    value: str | None, default: float, maximum: float = DEFAULT_MAX_RETRY_AFTER_SECONDS
) -> float:
    """Parse a ``Retry-After`` header given in seconds; fall back to *default*.

    Negative and non-finite values are ignored; anything above *maximum* is
    clamped to it.
    """
    if not value:
        return default
    try:
        seconds = float(value.strip())
    except ValueError:
        return default
    if not math.isfinite(seconds) or seconds < 0:
        return default
    return min(seconds, maximum)


def normalize_body(text: str, content_type: str | None, salvage_key: str | None = None) -> Any:
    """Turn a response body into a payload.

    A body declared as JSON must parse; the ``ValueError`` propagates otherwise.
    Other content types are parsed as JSON when possible. When that fails and a
    ``salvage_key`` is given, the first flat ``{...}`` object mentioning the
    key is extracted from the text. Anything else is wrapped as ``{"raw": text}``.
    """
    if content_type and "json" in content_type.lower():
        return json.loads(text)

    try:
        return json.loads(text)
    except ValueError:
        logger.debug("Response body (%s) is not valid JSON", content_type or "no content type")

    if salvage_key:
        pattern = r"\{[^{}]*\"" + re.escape(salvage_key) + r"\"[^{}]*\}"
        match = re.search(pattern, text)
        if match:
            try:
                return json.loads(match.group(0))
            except ValueError:
                logger.debug("Salvaged fragment for %s is not valid JSON", salvage_key)

    return {"raw": text}


class FetchExecutor:
    """Performs HTTP attempts against one source URL with bounded concurrency.

    Parameters
    ----------
    max_concurrent:
        Maximum attempts in flight process-wide (default 3).
    timeout_seconds:
        Per-attempt timeout (default 8).
    max_retries:
        Attempts per call when the caller does not override it (default 3).
    retry_delay_seconds:
        Sleep between attempts (default 1.5) unless a 429 says otherwise.
    default_retry_after_seconds:
        Backoff used for a 429 without a usable ``Retry-After`` header.
    max_retry_after_seconds:
        Upper bound on a 429 backoff (default 60).
    headers:
        Default request headers, merged under per-call headers.
    proxy_url:
        Optional outbound proxy (http, https or socks5).
    transport:
        Optional httpx transport, mainly for tests.
    """

    def __init__(
        self,
        *,
        max_concurrent: int = 3,
        timeout_seconds: float = 8.0,
        max_retries: int = 3,
        retry_delay_seconds: float = 1.5,
        default_retry_after_seconds: float = 5.0,
        max_retry_after_seconds: float = DEFAULT_MAX_RETRY_AFTER_SECONDS,
        headers: dict[str, str] | None = None,
        proxy_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._max_concurrent = max_concurrent
        self._gate = asyncio.Semaphore(max_concurrent)
        self._in_flight = 0
        self._timeout = timeout_seconds
        self._max_retries = max_retries
        self._retry_delay = retry_delay_seconds
        self._default_retry_after = default_retry_after_seconds
        self._max_retry_after = max_retry_after_seconds
        self._headers = {**DEFAULT_HEADERS, **(headers or {})}
        self._proxy_url = proxy_url
        self._transport = transport

        # Stats
        self._attempts = 0
        self._failures = 0

    @property
    def in_flight(self) -> int:
        return self._in_flight

    async def perform_fetch(
        self,
        url: str,
        endpoint: str,
        options: FetchOptions | None = None,
        max_retries: int | None = None,
        salvage_key: str | None = None,
    ) -> Any:
        """Fetch *url* with retries and return the normalised payload.

        Raises
        ------
        AuthError
            On 401, without retrying.
        FetchError
            The last attempt's error once ``max_retries`` attempts failed.
        """
        options = options or FetchOptions()
        retries = max_retries if max_retries is not None else self._max_retries

        for attempt in range(1, retries + 1):
            try:
                return await self._attempt(url, endpoint, options, salvage_key)
            except AuthError:
                logger.error(
                    "Unauthorized (401) for %s; check the API key",
                    endpoint,
                    extra={"endpoint": endpoint, "url": url, "attempt": attempt},
                )
                raise
            except FetchError as exc:
                if attempt >= retries:
                    raise
                delay = (
                    exc.retry_after if isinstance(exc, RateLimitError) else self._retry_delay
                )
                logger.warning(
                    "Fetch failed for %s (attempt %d/%d), retrying in %.1fs: %s",
                    endpoint,
                    attempt,
                    retries,
                    delay,
                    exc.message,
                    extra={
                        "endpoint": endpoint,
                        "url": url,
                        "attempt": attempt,
                        "error_reason": exc.message,
                    },
                )
                await asyncio.sleep(delay)

        # Only reachable with retries < 1
        raise FetchError(f"No attempts made for {endpoint}", url=url)

    async def _attempt(
        self,
        url: str,
        endpoint: str,
        options: FetchOptions,
        salvage_key: str | None,
    ) -> Any:
        async with self._gate:
            self._in_flight += 1
            self._attempts += 1
            try:
                response = await self._send(url, options)
            except FetchError:
                self._failures += 1
                raise
            finally:
                self._in_flight -= 1

        if response.status_code == 401:
            self._failures += 1
            raise AuthError(f"Unauthorized (401) from {url}", url=url, endpoint=endpoint)

        if response.status_code == 429:
            self._failures += 1
            retry_after = parse_retry_after(
                response.headers.get("retry-after"),
                self._default_retry_after,
                self._max_retry_after,
            )
            raise RateLimitError(
                f"Rate limited by {url}; retry after {retry_after:g}s",
                retry_after=retry_after,
                url=url,
            )

        if not response.is_success:
            self._failures += 1
            body = response.text[:_BODY_PREVIEW_CHARS]
            raise HttpError(
                f"HTTP {response.status_code} from {url}",
                status=response.status_code,
                body=body,
                url=url,
            )

        try:
            return normalize_body(
                response.text, response.headers.get("content-type"), salvage_key
            )
        except ValueError as exc:
            self._failures += 1
            raise HttpError(
                f"Malformed JSON from {url}: {exc}",
                status=response.status_code,
                body=response.text[:_BODY_PREVIEW_CHARS],
                url=url,
            ) from exc

    async def _send(self, url: str, options: FetchOptions) -> httpx.Response:
        try:
            async with httpx.AsyncClient(
                proxy=self._proxy_url,
                transport=self._transport,
                timeout=httpx.Timeout(self._timeout),
                follow_redirects=True,
            ) as client:
                response = await client.request(
                    options.method,
                    url,
                    params=options.params or None,
                    headers={**self._headers, **options.headers},
                )
                return response
        except httpx.TimeoutException as exc:
            raise FetchTimeoutError(
                f"Timed out after {self._timeout:g}s fetching {url}", url=url
            ) from exc
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise SourceUnreachableError(f"Could not fetch {url}: {exc}", url=url) from exc

    def get_stats(self) -> dict:
        """Return executor statistics for the metrics endpoint."""
        return {
            "max_concurrent": self._max_concurrent,
            "in_flight": self._in_flight,
            "attempts": self._attempts,
            "failed_attempts": self._failures,
        }
