"""Source ordering for multi-source endpoints.

``prioritize`` is a pure function of the health snapshot and the clock:

1. Affinity: the endpoint's preferred source goes first while healthy. With
   ``second_chance`` enabled it also goes first while unhealthy once the
   switch-back delay has passed since its last failure.
2. Everything else: healthy before unhealthy, healthy by ascending latency,
   unhealthy by most recent success.
3. Remaining ties keep configuration order.

The matching health mutation lives in ``apply_second_chance``, which the
orchestrator calls right before ``prioritize``.
"""

from __future__ import annotations

import time
from collections.abc import Callable

from statwatch.config.endpoints import EndpointConfig, SourceConfig
from statwatch.reliability.health import HealthTracker, SourceHealth


class Prioritizer:
    """Orders an endpoint's sources from its health records.

    Args:
        health: Shared health tracker.
        switch_back_delay_seconds: Default cooldown before an unhealthy
            preferred source is retried.
        clock: Returns the current epoch time in seconds.
    """

    def __init__(
        self,
        health: HealthTracker,
        switch_back_delay_seconds: float = 120.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._health = health
        self._switch_back_delay = switch_back_delay_seconds
        self._clock = clock

    def _delay_for(self, endpoint: EndpointConfig) -> float:
        affinity = endpoint.affinity
        if affinity is not None and affinity.switch_back_delay_seconds is not None:
            return affinity.switch_back_delay_seconds
        return self._switch_back_delay

    def _preferred(self, endpoint: EndpointConfig) -> SourceConfig | None:
        if endpoint.affinity is None:
            return None
        return endpoint.source(endpoint.affinity.preferred)

    def second_chance_due(self, endpoint: EndpointConfig) -> bool:
        """True when the unhealthy preferred source has cooled down."""
        preferred = self._preferred(endpoint)
        if preferred is None or not endpoint.affinity.second_chance:  # type: ignore[union-attr]
            return False
        record = self._health.get(endpoint.name, preferred.url)
        if record.is_healthy:
            return False
        return self._clock() - record.last_failure_time > self._delay_for(endpoint)

    def apply_second_chance(self, endpoint: EndpointConfig) -> bool:
        """Grant the preferred source a second chance if one is due."""
        if not self.second_chance_due(endpoint):
            return False
        preferred = self._preferred(endpoint)
        self._health.grant_second_chance(endpoint.name, preferred.url)  # type: ignore[union-attr]
        return True

    def prioritize(self, endpoint: EndpointConfig) -> list[SourceConfig]:
        """Return the endpoint's sources in the order they should be tried."""
        records = {s.url: self._health.get(endpoint.name, s.url) for s in endpoint.sources}
        position = {s.url: index for index, s in enumerate(endpoint.sources)}

        def generic_key(source: SourceConfig) -> tuple:
            record: SourceHealth = records[source.url]
            if record.is_healthy:
                return (0, record.last_response_time_ms, position[source.url])
            return (1, -record.last_success_time, position[source.url])

        ordered = sorted(endpoint.sources, key=generic_key)

        preferred = self._preferred(endpoint)
        if preferred is not None:
            record = records[preferred.url]
            if record.is_healthy or self.second_chance_due(endpoint):
                ordered.remove(preferred)
                ordered.insert(0, preferred)
        return ordered
