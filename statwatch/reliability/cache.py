"""Per-endpoint last-known-good cache with interval-based staleness.

A refresh runs when it is forced, when nothing is cached, or when the cached
value is older than the endpoint's interval. A failed refresh never clears the
cache: the previous value is served (and logged as degraded) or ``None`` is
returned. Only ``clear_cache`` empties an entry.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from statwatch.config.endpoints import EndpointConfig
from statwatch.middleware.error_handler import StatwatchError, UnknownEndpointError
from statwatch.models.results import CacheResult
from statwatch.reliability.executor import FetchOptions
from statwatch.reliability.orchestrator import FailoverOrchestrator

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """Last successful payload for one endpoint."""

    last_value: Any = None
    last_fetch_time: float = 0.0  # epoch seconds, 0 = never fetched


class CacheLayer:
    """Serves endpoint data from cache, refreshing through the orchestrator.

    Args:
        orchestrator: Failover orchestrator used for refreshes.
        intervals: Refresh interval in seconds per endpoint name.
        clock: Returns the current epoch time in seconds.
    """

    def __init__(
        self,
        orchestrator: FailoverOrchestrator,
        intervals: Mapping[str, float],
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._orchestrator = orchestrator
        self._intervals = dict(intervals)
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {name: CacheEntry() for name in intervals}

    def entry(self, endpoint: str) -> CacheEntry:
        try:
            return self._entries[endpoint]
        except KeyError:
            raise UnknownEndpointError(f"Unknown endpoint: {endpoint}", endpoint=endpoint) from None

    def is_stale(self, endpoint: str) -> bool:
        entry = self.entry(endpoint)
        return self._clock() - entry.last_fetch_time > self._intervals[endpoint]

    async def lookup(
        self,
        endpoint: str,
        *,
        force_refresh: bool = False,
        options: FetchOptions | None = None,
    ) -> CacheResult:
        """Return the endpoint's value and whether it is fresh or degraded.

        Never raises for fetch failures or unknown endpoints.
        """
        if endpoint not in self._entries:
            logger.error("Unknown endpoint requested: %s", endpoint, extra={"endpoint": endpoint})
            return CacheResult(value=None, fresh=False, degraded=True)

        entry = self._entries[endpoint]
        needs_refresh = force_refresh or entry.last_value is None or self.is_stale(endpoint)
        if not needs_refresh:
            return CacheResult(value=entry.last_value, fresh=True, degraded=False)

        try:
            value = await self._orchestrator.fetch_with_priority(endpoint, options)
        except StatwatchError as exc:
            logger.error(
                "Refresh failed for %s: %s",
                endpoint,
                exc.message,
                extra={"endpoint": endpoint, "error_reason": exc.message},
            )
            if entry.last_value is not None:
                logger.warning(
                    "Using cached data for %s due to fetch error",
                    endpoint,
                    extra={"endpoint": endpoint},
                )
            return CacheResult(value=entry.last_value, fresh=False, degraded=True)

        entry.last_value = value
        entry.last_fetch_time = self._clock()
        logger.info("Successfully updated %s cache", endpoint, extra={"endpoint": endpoint})
        return CacheResult(value=value, fresh=True, degraded=False)

    async def get_data(
        self,
        endpoint: str,
        *,
        force_refresh: bool = False,
        options: FetchOptions | None = None,
    ) -> Any:
        """Return the endpoint's payload, or ``None`` if none is available."""
        result = await self.lookup(endpoint, force_refresh=force_refresh, options=options)
        return result.value

    def clear_cache(self, endpoint: str | None = None) -> None:
        """Reset one entry (or all) so the next read refetches.

        Raises
        ------
        UnknownEndpointError
            If *endpoint* is given and not configured.
        """
        if endpoint is None:
            for name in self._entries:
                self._entries[name] = CacheEntry()
            logger.info("Cleared all cache entries")
            return

        self.entry(endpoint)
        self._entries[endpoint] = CacheEntry()
        logger.info("Cleared cache for %s", endpoint, extra={"endpoint": endpoint})

    def status(self, endpoints: Mapping[str, EndpointConfig]) -> dict[str, dict]:
        """Per-endpoint cache age and source count."""
        now = self._clock()
        status: dict[str, dict] = {}
        for name, entry in self._entries.items():
            config = endpoints.get(name)
            urls = [s.url for s in config.sources] if config else []
            status[name] = {
                "has_data": entry.last_value is not None,
                "last_fetch": entry.last_fetch_time,
                "age_seconds": now - entry.last_fetch_time if entry.last_fetch_time else None,
                "interval_seconds": self._intervals[name],
                "is_stale": now - entry.last_fetch_time > self._intervals[name],
                "total_sources": len(urls),
                "urls": urls,
            }
        return status
