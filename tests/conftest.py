"""Shared test fixtures for the statwatch test suite."""

from __future__ import annotations

import os

import pytest

from statwatch.config.endpoints import EndpointConfig, default_endpoints
from statwatch.config.settings import StatwatchSettings
from statwatch.reliability.health import HealthTracker
from statwatch.reliability.layer import ReliabilityLayer
from statwatch.reliability.prioritizer import Prioritizer
from tests.support import FakeClock, ScriptedTransport


# ---------------------------------------------------------------------------
# Ensure required env vars are set for StatwatchSettings in tests
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _set_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Set minimal env vars so StatwatchSettings can be instantiated in tests."""
    defaults = {
        "STATWATCH_ADMIN_KEY": "test-admin-key",
    }
    for key, value in defaults.items():
        if key not in os.environ:
            monkeypatch.setenv(key, value)


# ---------------------------------------------------------------------------
# Settings fixture
# ---------------------------------------------------------------------------

@pytest.fixture
def settings() -> StatwatchSettings:
    """Test settings with every delay set to zero."""
    return StatwatchSettings(
        admin_key="test-admin-key",
        endpoints_path="does/not/exist.yaml",
        retry_delay_seconds=0,
        default_retry_after_seconds=0,
        source_switch_delay_seconds=0,
        max_retries=1,
    )


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def transport() -> ScriptedTransport:
    return ScriptedTransport()


@pytest.fixture
def registry() -> dict[str, EndpointConfig]:
    return default_endpoints()


@pytest.fixture
def health(registry: dict[str, EndpointConfig], clock: FakeClock) -> HealthTracker:
    return HealthTracker(registry.values(), failure_threshold=3, clock=clock)


@pytest.fixture
def prioritizer(health: HealthTracker, clock: FakeClock) -> Prioritizer:
    return Prioritizer(health, switch_back_delay_seconds=120, clock=clock)


@pytest.fixture
def layer(
    settings: StatwatchSettings,
    registry: dict[str, EndpointConfig],
    transport: ScriptedTransport,
    clock: FakeClock,
) -> ReliabilityLayer:
    return ReliabilityLayer.from_settings(settings, registry, transport=transport, clock=clock)
