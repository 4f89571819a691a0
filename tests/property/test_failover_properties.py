"""Property tests for sequential failover and the last-known-good cache.

- Failover returns the payload of the first source (in priority order) that
  succeeds, never contacts a source after it, and raises only when every
  source failed.
- A cache entry is refreshed exactly when its age exceeds the interval.
- A failed refresh never loses the previously cached value.
"""

from __future__ import annotations

import asyncio

import httpx
import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from statwatch.middleware.error_handler import AllSourcesFailedError
from statwatch.reliability.cache import CacheLayer
from statwatch.reliability.executor import FetchExecutor
from statwatch.reliability.health import HealthTracker
from statwatch.reliability.orchestrator import FailoverOrchestrator
from statwatch.reliability.prioritizer import Prioritizer
from tests.support import FakeClock, ScriptedTransport, endpoint, ok

# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

# One outcome per source: True = succeeds
source_outcomes = st.lists(st.booleans(), min_size=1, max_size=5)

failure_kinds = st.sampled_from([500, 404, 429, "connect", "timeout"])


def _failure(kind):
    if kind == "connect":
        return httpx.ConnectError("refused")
    if kind == "timeout":
        return httpx.ReadTimeout("slow")
    return httpx.Response(kind)


def _orchestrator(urls, transport, clock):
    config = endpoint("stats", *urls)
    health = HealthTracker([config], clock=clock)
    return FailoverOrchestrator(
        endpoints={"stats": config},
        executor=FetchExecutor(
            max_retries=1,
            retry_delay_seconds=0,
            default_retry_after_seconds=0,
            transport=transport,
        ),
        health=health,
        prioritizer=Prioritizer(health, clock=clock),
        source_switch_delay_seconds=0,
        clock=clock,
    )


@settings(max_examples=100, deadline=None)
@given(outcomes=source_outcomes, kind=failure_kinds)
def test_first_success_in_order_wins(outcomes: list[bool], kind) -> None:
    urls = [f"https://s{i}.example/data" for i in range(len(outcomes))]
    transport = ScriptedTransport(
        {
            url: [ok({"source": i}) if success else _failure(kind)]
            for i, (url, success) in enumerate(zip(urls, outcomes))
        }
    )
    orchestrator = _orchestrator(urls, transport, FakeClock())

    async def _run():
        return await orchestrator.fetch_with_priority("stats")

    if any(outcomes):
        winner = outcomes.index(True)
        assert asyncio.run(_run()) == {"source": winner}
        contacted = [str(r.url) for r in transport.requests]
        assert contacted == urls[: winner + 1]
    else:
        with pytest.raises(AllSourcesFailedError) as exc_info:
            asyncio.run(_run())
        assert len(exc_info.value.errors) == len(urls)
        assert [str(r.url) for r in transport.requests] == urls


@settings(max_examples=100, deadline=None)
@given(
    interval=st.integers(min_value=1, max_value=3_600),
    elapsed=st.integers(min_value=0, max_value=7_200),
)
def test_refresh_exactly_when_interval_exceeded(interval: int, elapsed: int) -> None:
    url = "https://s0.example/data"
    clock = FakeClock()
    transport = ScriptedTransport({url: [ok({"v": 1}), ok({"v": 2})]})
    cache = CacheLayer(_orchestrator([url], transport, clock), {"stats": interval}, clock=clock)

    async def _run():
        await cache.get_data("stats")
        clock.advance(elapsed)
        return await cache.get_data("stats")

    value = asyncio.run(_run())

    refreshed = elapsed > interval
    assert value == ({"v": 2} if refreshed else {"v": 1})
    assert transport.calls(url) == (2 if refreshed else 1)


@settings(max_examples=100, deadline=None)
@given(steps=st.lists(st.booleans(), min_size=1, max_size=15))
def test_failed_refresh_keeps_last_good_value(steps: list[bool]) -> None:
    url = "https://s0.example/data"
    clock = FakeClock()
    transport = ScriptedTransport()
    cache = CacheLayer(_orchestrator([url], transport, clock), {"stats": 30}, clock=clock)

    async def _run():
        last_good = None
        for n, succeeds in enumerate(steps):
            transport.set(url, ok({"n": n}) if succeeds else httpx.Response(503))
            result = await cache.lookup("stats", force_refresh=True)
            if succeeds:
                last_good = {"n": n}
                assert (result.fresh, result.degraded) == (True, False)
            else:
                assert result.degraded is True
            assert result.value == last_good
            assert cache.entry("stats").last_value == last_good

    asyncio.run(_run())
