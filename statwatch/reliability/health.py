"""Per-source health tracking for multi-source endpoints.

Tracks one SourceHealth record per (endpoint, source URL). A source flips
unhealthy once its consecutive-failure streak reaches the threshold and only
becomes healthy again after a successful attempt or an explicit second-chance
grant.

State machine:
- Healthy → Unhealthy: ``consecutive_failures`` reaches ``failure_threshold``
- Unhealthy → Healthy: any successful attempt
- Unhealthy → Healthy (provisional): ``grant_second_chance`` drops the streak
  below the threshold

Transitions are logged and handed to registered listeners.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from statwatch.config.endpoints import EndpointConfig

logger = logging.getLogger(__name__)


class HealthEvent(str, Enum):
    """Health state transitions."""

    DEGRADED = "degraded"
    RECOVERED = "recovered"
    SECOND_CHANCE = "second_chance"


@dataclass
class SourceHealth:
    """Mutable health record for a single source of a single endpoint."""

    endpoint: str
    name: str
    url: str
    success_count: int = 0
    failure_count: int = 0
    consecutive_failures: int = 0
    last_success_time: float = 0.0  # epoch seconds, 0 = never
    last_failure_time: float = 0.0
    last_response_time_ms: float = 0.0
    is_healthy: bool = True

    def as_dict(self) -> dict:
        return {
            "name": self.name,
            "url": self.url,
            "is_healthy": self.is_healthy,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "consecutive_failures": self.consecutive_failures,
            "response_time_ms": self.last_response_time_ms,
            "last_success": _iso(self.last_success_time),
            "last_failure": _iso(self.last_failure_time),
        }


@dataclass(frozen=True)
class HealthTransition:
    """Emitted when a source changes health state."""

    endpoint: str
    source: str
    url: str
    event: HealthEvent
    consecutive_failures: int
    at: float


HealthListener = Callable[[HealthTransition], None]


def _iso(timestamp: float) -> str | None:
    if not timestamp:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


class HealthTracker:
    """Tracks success/failure streaks per (endpoint, source URL).

    Args:
        endpoints: Endpoint registry; a record is created for every source.
        failure_threshold: Consecutive failures that mark a source unhealthy.
        clock: Returns the current epoch time in seconds.
    """

    def __init__(
        self,
        endpoints: Iterable[EndpointConfig] = (),
        failure_threshold: int = 3,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._failure_threshold = failure_threshold
        self._clock = clock
        self._records: dict[str, dict[str, SourceHealth]] = {}
        self._listeners: list[HealthListener] = []
        for endpoint in endpoints:
            self.register(endpoint)

    @property
    def failure_threshold(self) -> int:
        return self._failure_threshold

    def register(self, endpoint: EndpointConfig) -> None:
        """Create records for every source of an endpoint (idempotent)."""
        records = self._records.setdefault(endpoint.name, {})
        for source in endpoint.sources:
            if source.url not in records:
                records[source.url] = SourceHealth(
                    endpoint=endpoint.name, name=source.name, url=source.url
                )

    def add_listener(self, listener: HealthListener) -> None:
        self._listeners.append(listener)

    def get(self, endpoint: str, url: str) -> SourceHealth:
        """Return the record for a source, creating one for unknown pairs."""
        records = self._records.setdefault(endpoint, {})
        if url not in records:
            records[url] = SourceHealth(endpoint=endpoint, name=url, url=url)
        return records[url]

    def is_healthy(self, endpoint: str, url: str) -> bool:
        records = self._records.get(endpoint, {})
        if url not in records:
            return True
        return records[url].is_healthy

    def record_success(self, endpoint: str, url: str, latency_ms: float) -> None:
        """Record a successful attempt; clears the failure streak."""
        record = self.get(endpoint, url)
        record.success_count += 1
        record.last_success_time = self._clock()
        record.last_response_time_ms = latency_ms
        record.consecutive_failures = 0

        if not record.is_healthy:
            record.is_healthy = True
            logger.info(
                "%s marked healthy again for %s",
                record.name,
                endpoint,
                extra={"endpoint": endpoint, "source": record.name},
            )
            self._emit(record, HealthEvent.RECOVERED)

    def record_failure(self, endpoint: str, url: str) -> None:
        """Record a failed attempt; may flip the source unhealthy."""
        record = self.get(endpoint, url)
        record.failure_count += 1
        record.consecutive_failures += 1
        record.last_failure_time = self._clock()

        if record.is_healthy and record.consecutive_failures >= self._failure_threshold:
            record.is_healthy = False
            logger.warning(
                "%s marked unhealthy for %s (%d consecutive failures)",
                record.name,
                endpoint,
                record.consecutive_failures,
                extra={"endpoint": endpoint, "source": record.name},
            )
            self._emit(record, HealthEvent.DEGRADED)

    def grant_second_chance(self, endpoint: str, url: str) -> None:
        """Shorten an unhealthy source's streak by one so it can be retried.

        The source turns healthy again only if the shortened streak drops
        below the failure threshold.
        """
        record = self.get(endpoint, url)
        record.consecutive_failures = max(0, record.consecutive_failures - 1)
        if record.consecutive_failures < self._failure_threshold:
            record.is_healthy = True
        logger.info(
            "Giving %s another chance for %s (%.0fs since last failure)",
            record.name,
            endpoint,
            self._clock() - record.last_failure_time,
            extra={"endpoint": endpoint, "source": record.name},
        )
        self._emit(record, HealthEvent.SECOND_CHANCE)

    def records(self, endpoint: str) -> list[SourceHealth]:
        return list(self._records.get(endpoint, {}).values())

    def snapshot(self) -> dict[str, list[SourceHealth]]:
        """Return every record grouped by endpoint."""
        return {endpoint: list(records.values()) for endpoint, records in self._records.items()}

    def summary(self) -> dict[str, list[dict]]:
        """Return a JSON-friendly view of every record."""
        return {
            endpoint: [record.as_dict() for record in records.values()]
            for endpoint, records in self._records.items()
        }

    def _emit(self, record: SourceHealth, event: HealthEvent) -> None:
        transition = HealthTransition(
            endpoint=record.endpoint,
            source=record.name,
            url=record.url,
            event=event,
            consecutive_failures=record.consecutive_failures,
            at=self._clock(),
        )
        for listener in self._listeners:
            try:
                listener(transition)
            except Exception:  # noqa: BLE001
                logger.exception("Health listener failed for %s", record.url)
