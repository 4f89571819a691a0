"""Unit tests for source ordering and second-chance handling."""

from statwatch.reliability.health import HealthTracker
from statwatch.reliability.prioritizer import Prioritizer
from tests.support import FakeClock, endpoint

URL_A = "https://a.example/data"
URL_B = "https://b.example/data"
URL_C = "https://c.example/data"


def _setup(config, threshold: int = 1, delay: float = 120.0):
    clock = FakeClock(10_000.0)
    health = HealthTracker([config], failure_threshold=threshold, clock=clock)
    return health, Prioritizer(health, switch_back_delay_seconds=delay, clock=clock), clock


def _urls(sources) -> list[str]:
    return [s.url for s in sources]


class TestGenericOrdering:
    def test_config_order_when_nothing_known(self):
        config = endpoint("stats", URL_A, URL_B, URL_C)
        _, prioritizer, _ = _setup(config)
        assert _urls(prioritizer.prioritize(config)) == [URL_A, URL_B, URL_C]

    def test_healthy_before_unhealthy(self):
        config = endpoint("stats", URL_A, URL_B)
        health, prioritizer, _ = _setup(config)
        health.record_failure("stats", URL_A)
        assert _urls(prioritizer.prioritize(config)) == [URL_B, URL_A]

    def test_healthy_sorted_by_latency(self):
        config = endpoint("stats", URL_A, URL_B, URL_C)
        health, prioritizer, _ = _setup(config)
        health.record_success("stats", URL_A, 300.0)
        health.record_success("stats", URL_B, 50.0)
        health.record_success("stats", URL_C, 120.0)
        assert _urls(prioritizer.prioritize(config)) == [URL_B, URL_C, URL_A]

    def test_unhealthy_sorted_by_most_recent_success(self):
        config = endpoint("stats", URL_A, URL_B)
        health, prioritizer, clock = _setup(config)
        health.record_success("stats", URL_A, 10.0)
        clock.advance(60)
        health.record_success("stats", URL_B, 10.0)
        health.record_failure("stats", URL_A)
        health.record_failure("stats", URL_B)
        assert _urls(prioritizer.prioritize(config)) == [URL_B, URL_A]

    def test_prioritize_does_not_mutate_health(self):
        config = endpoint(
            "stats", URL_A, URL_B, affinity={"preferred": "a.example", "second_chance": True}
        )
        health, prioritizer, clock = _setup(config)
        health.record_failure("stats", URL_A)
        clock.advance(500)
        prioritizer.prioritize(config)
        prioritizer.prioritize(config)
        assert health.get("stats", URL_A).consecutive_failures == 1
        assert health.is_healthy("stats", URL_A) is False


class TestAffinity:
    def test_preferred_first_while_healthy(self):
        config = endpoint("stats", URL_A, URL_B, affinity={"preferred": "b.example"})
        health, prioritizer, _ = _setup(config)
        health.record_success("stats", URL_A, 5.0)
        health.record_success("stats", URL_B, 500.0)
        assert _urls(prioritizer.prioritize(config)) == [URL_B, URL_A]

    def test_unhealthy_preferred_without_second_chance_goes_last(self):
        config = endpoint("stats", URL_A, URL_B, affinity={"preferred": "a.example"})
        health, prioritizer, clock = _setup(config)
        health.record_failure("stats", URL_A)
        clock.advance(10_000)
        assert prioritizer.second_chance_due(config) is False
        assert _urls(prioritizer.prioritize(config)) == [URL_B, URL_A]


class TestSecondChance:
    def _config(self, **affinity):
        return endpoint(
            "mods",
            URL_A,
            URL_B,
            affinity={"preferred": "a.example", "second_chance": True, **affinity},
        )

    def test_not_due_before_delay(self):
        config = self._config()
        health, prioritizer, clock = _setup(config)
        health.record_failure("mods", URL_A)
        clock.advance(120)  # strictly greater is required
        assert prioritizer.second_chance_due(config) is False
        assert _urls(prioritizer.prioritize(config)) == [URL_B, URL_A]

    def test_due_after_delay(self):
        config = self._config()
        health, prioritizer, clock = _setup(config)
        health.record_failure("mods", URL_A)
        clock.advance(121)
        assert prioritizer.second_chance_due(config) is True
        assert _urls(prioritizer.prioritize(config)) == [URL_A, URL_B]

    def test_apply_grants_once_due(self):
        config = self._config()
        health, prioritizer, clock = _setup(config)
        health.record_failure("mods", URL_A)
        assert prioritizer.apply_second_chance(config) is False
        clock.advance(121)
        assert prioritizer.apply_second_chance(config) is True
        assert health.is_healthy("mods", URL_A) is True
        assert health.get("mods", URL_A).consecutive_failures == 0

    def test_per_endpoint_delay_override(self):
        config = self._config(switch_back_delay_seconds=5)
        health, prioritizer, clock = _setup(config)
        health.record_failure("mods", URL_A)
        clock.advance(6)
        assert prioritizer.second_chance_due(config) is True

    def test_not_due_for_healthy_preferred(self):
        config = self._config()
        _, prioritizer, clock = _setup(config)
        clock.advance(1000)
        assert prioritizer.second_chance_due(config) is False
