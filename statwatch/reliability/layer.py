"""The reliability layer facade consumed by the bot and the HTTP surface.

One ``ReliabilityLayer`` owns the health tracker, executor, prioritizer,
orchestrator and cache for one endpoint registry. Build it once with
``from_settings`` and inject it where needed.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from typing import Any

import httpx

from statwatch.config.endpoints import EndpointConfig, load_endpoint_registry
from statwatch.config.settings import StatwatchSettings
from statwatch.middleware.error_handler import UnknownEndpointError
from statwatch.models.results import (
    CacheResult,
    CombinedPlayerData,
    FetchAttemptResult,
    PlayerDataSources,
)
from statwatch.reliability.cache import CacheLayer
from statwatch.reliability.executor import FetchExecutor, FetchOptions
from statwatch.reliability.health import HealthTracker
from statwatch.reliability.orchestrator import FailoverOrchestrator
from statwatch.reliability.prioritizer import Prioritizer

logger = logging.getLogger(__name__)

PLAYER_COUNT_ENDPOINT = "onlinePlayers"
BAN_RATE_ENDPOINT = "banData"

_ALL_DATA_SPACING_SECONDS = 0.2


def _to_int(value: object) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(float(value.replace(",", "").strip()))
        except ValueError:
            return 0
    return 0


def _to_float(value: object) -> float:
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip().rstrip("%"))
        except ValueError:
            return 0.0
    return 0.0


def _label(result: CacheResult, live_label: str) -> str:
    if result.value is None:
        return "Not Available"
    if result.degraded:
        return "Cached Data"
    return live_label


class ReliabilityLayer:
    """Owned, explicitly constructed reliability layer for one endpoint set."""

    def __init__(
        self,
        *,
        endpoints: Mapping[str, EndpointConfig],
        health: HealthTracker,
        executor: FetchExecutor,
        orchestrator: FailoverOrchestrator,
        cache: CacheLayer,
    ) -> None:
        self.endpoints = dict(endpoints)
        self.health = health
        self.executor = executor
        self.orchestrator = orchestrator
        self.cache = cache

    @classmethod
    def from_settings(
        cls,
        settings: StatwatchSettings,
        endpoints: Mapping[str, EndpointConfig] | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.time,
    ) -> ReliabilityLayer:
        """Wire every component from settings and an endpoint registry.

        When *endpoints* is omitted the registry is loaded from
        ``settings.endpoints_path``.
        """
        if endpoints is None:
            endpoints = load_endpoint_registry(settings.endpoints_path)

        health = HealthTracker(
            endpoints.values(),
            failure_threshold=settings.health_failure_threshold,
            clock=clock,
        )
        executor = FetchExecutor(
            max_concurrent=settings.max_concurrent_requests,
            timeout_seconds=settings.request_timeout_seconds,
            max_retries=settings.max_retries,
            retry_delay_seconds=settings.retry_delay_seconds,
            default_retry_after_seconds=settings.default_retry_after_seconds,
            max_retry_after_seconds=settings.max_retry_after_seconds,
            headers={"User-Agent": settings.user_agent},
            proxy_url=settings.proxy_url,
            transport=transport,
        )
        prioritizer = Prioritizer(
            health,
            switch_back_delay_seconds=settings.switch_back_delay_seconds,
            clock=clock,
        )
        orchestrator = FailoverOrchestrator(
            endpoints=endpoints,
            executor=executor,
            health=health,
            prioritizer=prioritizer,
            source_switch_delay_seconds=settings.source_switch_delay_seconds,
            reconciliation_window_seconds=settings.reconciliation_window_seconds,
            clock_skew_tolerance_seconds=settings.clock_skew_tolerance_seconds,
            clock=clock,
        )
        intervals = {
            name: config.interval_seconds or settings.interval_for(config.interval)
            for name, config in endpoints.items()
        }
        cache = CacheLayer(orchestrator, intervals, clock=clock)

        logger.info(
            "Reliability layer initialized with %d endpoints (%d multi-source)",
            len(endpoints),
            sum(1 for e in endpoints.values() if e.is_multi_source),
        )
        return cls(
            endpoints=endpoints,
            health=health,
            executor=executor,
            orchestrator=orchestrator,
            cache=cache,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_data(
        self,
        endpoint: str,
        *,
        force_refresh: bool = False,
        options: FetchOptions | None = None,
    ) -> Any:
        """Cached read; returns ``None`` when nothing is available."""
        return await self.cache.get_data(endpoint, force_refresh=force_refresh, options=options)

    async def get_all_data(self) -> dict[str, Any]:
        """Read every endpoint in turn, spaced out to go easy on the APIs."""
        results: dict[str, Any] = {}
        for index, name in enumerate(self.endpoints):
            if index > 0:
                await asyncio.sleep(_ALL_DATA_SPACING_SECONDS)
            results[name] = await self.get_data(name)
        return results

    async def get_combined_player_data(self) -> CombinedPlayerData:
        """Join the official player count with ban-rate data.

        Both endpoints are refreshed concurrently. Each half falls back on
        its own to cached data, or to zero when nothing was ever fetched.
        """
        logger.info("Fetching combined player data...")
        online, bans = await asyncio.gather(
            self.cache.lookup(PLAYER_COUNT_ENDPOINT, force_refresh=True),
            self.cache.lookup(BAN_RATE_ENDPOINT, force_refresh=True),
        )

        player_count = _to_int(online.value.get("online_user")) if isinstance(online.value, dict) else 0
        ban_rate = 0.0
        last_updated = datetime.now(timezone.utc).isoformat()
        if isinstance(bans.value, dict):
            ban_rate = _to_float(bans.value.get("ban_rate"))
            if bans.value.get("lastUpdated") and not bans.degraded:
                last_updated = str(bans.value["lastUpdated"])

        combined = CombinedPlayerData(
            online_user=player_count,
            ban_rate=ban_rate,
            last_updated=last_updated,
            sources=PlayerDataSources(
                player_count=_label(online, "Official Growtopia API"),
                ban_rate=_label(bans, "Ban Data API"),
            ),
        )
        logger.info("Combined data: %d players, %s%% ban rate", player_count, ban_rate)
        return combined

    async def probe_sources(
        self, endpoint: str, options: FetchOptions | None = None
    ) -> dict:
        """Fetch every source of *endpoint* and report the reconciled choice.

        Raises
        ------
        UnknownEndpointError
            If the endpoint is not configured.
        """
        results: list[FetchAttemptResult] = await self.orchestrator.gather(endpoint, options)
        chosen = self.orchestrator.compare_api_data(endpoint, results)
        return {
            "endpoint": endpoint,
            "results": [r.as_dict() for r in results],
            "selected": None
            if chosen is None
            else {"source": chosen.source, "reason": chosen.reason, "data": chosen.data},
        }

    # ------------------------------------------------------------------
    # Diagnostics / admin
    # ------------------------------------------------------------------

    def get_api_health_status(self) -> dict[str, list]:
        """Raw health records grouped by endpoint."""
        return self.health.snapshot()

    def get_api_health_summary(self) -> dict[str, list[dict]]:
        """JSON-friendly health records grouped by endpoint."""
        return self.health.summary()

    def get_cache_status(self) -> dict[str, dict]:
        """Cache age, source count and health for each endpoint."""
        status = self.cache.status(self.endpoints)
        summary = self.health.summary()
        for name, entry in status.items():
            entry["health"] = summary.get(name, [])
        return status

    def clear_cache(self, endpoint: str | None = None) -> None:
        """Reset one cache entry (or all of them)."""
        if endpoint is not None and endpoint not in self.endpoints:
            raise UnknownEndpointError(f"Unknown endpoint: {endpoint}", endpoint=endpoint)
        self.cache.clear_cache(endpoint)

    def is_ready(self) -> bool:
        """True when every endpoint still has at least one healthy source."""
        return all(
            any(record.is_healthy for record in self.health.records(name))
            for name in self.endpoints
        )
