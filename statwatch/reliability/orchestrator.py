"""Failover across an endpoint's candidate sources.

``fetch_with_priority`` tries sources strictly one after another in the order
the Prioritizer returns and stops at the first success. Every attempt's
outcome is recorded on the HealthTracker. ``AllSourcesFailedError`` is raised
only once the whole candidate list is exhausted.

``gather`` and ``compare_api_data`` serve diagnostics: fetch every source,
then choose between disagreeing payloads with the endpoint's reconciliation
policy.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Mapping
from typing import Any

from statwatch.config.endpoints import EndpointConfig, SourceConfig
from statwatch.middleware.error_handler import (
    AllSourcesFailedError,
    FetchError,
    UnknownEndpointError,
)
from statwatch.models.results import FetchAttemptResult, ReconciledResult
from statwatch.reliability.executor import FetchExecutor, FetchOptions
from statwatch.reliability.health import HealthTracker
from statwatch.reliability.prioritizer import Prioritizer
from statwatch.reliability.timestamps import observed_at

logger = logging.getLogger(__name__)


class FailoverOrchestrator:
    """Runs prioritized, sequential failover for each endpoint.

    Parameters
    ----------
    endpoints:
        Source registry keyed by endpoint name.
    executor:
        Performs the HTTP attempts.
    health:
        Shared health tracker; the orchestrator is its only writer.
    prioritizer:
        Orders multi-source endpoints.
    source_switch_delay_seconds:
        Pause before moving on to the next source (default 0.5).
    reconciliation_window_seconds:
        Default window for the ``recent_primary`` strategy (default 120).
    clock_skew_tolerance_seconds:
        How far a payload timestamp may run ahead of our clock (default 60).
    clock:
        Returns the current epoch time in seconds.
    """

    def __init__(
        self,
        *,
        endpoints: Mapping[str, EndpointConfig],
        executor: FetchExecutor,
        health: HealthTracker,
        prioritizer: Prioritizer,
        source_switch_delay_seconds: float = 0.5,
        reconciliation_window_seconds: float = 120.0,
        clock_skew_tolerance_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._endpoints = endpoints
        self._executor = executor
        self._health = health
        self._prioritizer = prioritizer
        self._switch_delay = source_switch_delay_seconds
        self._window = reconciliation_window_seconds
        self._skew_tolerance = clock_skew_tolerance_seconds
        self._clock = clock

    def endpoint(self, name: str) -> EndpointConfig:
        """Return an endpoint's configuration.

        Raises
        ------
        UnknownEndpointError
            If *name* is not in the registry.
        """
        try:
            return self._endpoints[name]
        except KeyError:
            raise UnknownEndpointError(
                f"Invalid endpoint configuration for: {name}", endpoint=name
            ) from None

    # ------------------------------------------------------------------
    # Failover
    # ------------------------------------------------------------------

    async def fetch_with_priority(
        self, endpoint_name: str, options: FetchOptions | None = None
    ) -> Any:
        """Return the first successful payload among the endpoint's sources.

        Raises
        ------
        UnknownEndpointError
            If the endpoint is not configured.
        AllSourcesFailedError
            If every source failed.
        """
        endpoint = self.endpoint(endpoint_name)

        if endpoint.is_multi_source:
            self._prioritizer.apply_second_chance(endpoint)
            ordered = self._prioritizer.prioritize(endpoint)
        else:
            ordered = list(endpoint.sources)

        errors: dict[str, str] = {}
        for index, source in enumerate(ordered):
            if index > 0:
                await asyncio.sleep(self._switch_delay)

            role = "primary" if index == 0 else f"backup {index}"
            logger.info(
                "Trying %s source for %s: %s",
                role,
                endpoint.name,
                source.name,
                extra={"endpoint": endpoint.name, "source": source.name},
            )
            result = await self._attempt(endpoint, source, options)
            if result.success:
                logger.info(
                    "%s source success for %s (%s) in %.0fms",
                    role.capitalize(),
                    endpoint.name,
                    source.name,
                    result.elapsed_ms,
                    extra={
                        "endpoint": endpoint.name,
                        "source": source.name,
                        "latency_ms": result.elapsed_ms,
                    },
                )
                return result.payload

            errors[source.name] = result.error or "unknown error"
            logger.warning(
                "%s source failed for %s (%s): %s",
                role.capitalize(),
                endpoint.name,
                source.name,
                result.error,
                extra={
                    "endpoint": endpoint.name,
                    "source": source.name,
                    "error_reason": result.error,
                },
            )

        raise AllSourcesFailedError(
            f"All sources failed for {endpoint.name}",
            endpoint=endpoint.name,
            errors=errors,
        )

    async def gather(
        self, endpoint_name: str, options: FetchOptions | None = None
    ) -> list[FetchAttemptResult]:
        """Try every source of an endpoint in configuration order."""
        endpoint = self.endpoint(endpoint_name)
        results: list[FetchAttemptResult] = []
        for index, source in enumerate(endpoint.sources):
            if index > 0:
                await asyncio.sleep(self._switch_delay)
            results.append(await self._attempt(endpoint, source, options))
        return results

    async def _attempt(
        self,
        endpoint: EndpointConfig,
        source: SourceConfig,
        options: FetchOptions | None,
    ) -> FetchAttemptResult:
        """Fetch one source and record the outcome on the health tracker."""
        started = time.perf_counter()
        try:
            payload = await self._executor.perform_fetch(
                source.url,
                endpoint.name,
                options,
                salvage_key=endpoint.salvage_key,
            )
        except FetchError as exc:
            elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
            self._health.record_failure(endpoint.name, source.url)
            return FetchAttemptResult(
                source=source.name,
                url=source.url,
                success=False,
                elapsed_ms=elapsed_ms,
                fetched_at=self._clock(),
                error=exc.message,
            )

        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
        self._health.record_success(endpoint.name, source.url, elapsed_ms)
        return FetchAttemptResult(
            source=source.name,
            url=source.url,
            success=True,
            elapsed_ms=elapsed_ms,
            fetched_at=self._clock(),
            payload=payload,
        )

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def compare_api_data(
        self, endpoint_name: str, results: list[FetchAttemptResult]
    ) -> ReconciledResult | None:
        """Choose one payload among results gathered for the same endpoint.

        Strategies (from the endpoint's reconciliation policy):

        - ``recent_primary``: the primary source wins if its timestamp is
          within the window of the most recent result; otherwise the most
          recent result wins.
        - ``primary_first``: the primary source wins whenever it returned
          data; otherwise the first successful result.
        - ``first``: the first successful result.

        Returns ``None`` when no result succeeded.
        """
        endpoint = self.endpoint(endpoint_name)
        usable = [r for r in results if r.success and r.payload is not None]
        if not usable:
            return None

        policy = endpoint.reconciliation
        if policy is None or policy.strategy == "first":
            return ReconciledResult(usable[0].payload, usable[0].source, "first available")

        primary = next((r for r in usable if r.source == policy.primary), None)

        if policy.strategy == "primary_first":
            if primary is not None and primary.payload:
                return ReconciledResult(primary.payload, primary.source, "preferred primary")
            return ReconciledResult(usable[0].payload, usable[0].source, "fallback")

        window = policy.window_seconds if policy.window_seconds is not None else self._window
        times = {
            id(r): observed_at(
                r.payload,
                r.fetched_at,
                field=policy.timestamp_field,
                skew_tolerance_seconds=self._skew_tolerance,
            )
            for r in usable
        }
        most_recent = max(usable, key=lambda r: times[id(r)])

        if primary is not None and times[id(most_recent)] - times[id(primary)] < window:
            logger.info(
                "Using %s data for %s (within %.0fs of most recent)",
                primary.source,
                endpoint.name,
                window,
                extra={"endpoint": endpoint.name, "source": primary.source},
            )
            return ReconciledResult(primary.payload, primary.source, "primary within window")

        logger.info(
            "Using %s data for %s (most recent)",
            most_recent.source,
            endpoint.name,
            extra={"endpoint": endpoint.name, "source": most_recent.source},
        )
        return ReconciledResult(most_recent.payload, most_recent.source, "most recent")
