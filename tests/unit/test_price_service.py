"""Unit tests for Diamond Lock price tracking."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from statwatch.services.price_service import PriceService, format_number, parse_rate
from tests.support import ok

RATES_URL = "https://api.freecurrencyapi.com/v1/latest"
PRICE_URL = "https://gtid.dev/get-latest-pricedl"


@pytest.fixture
def service(layer, settings) -> PriceService:
    return PriceService(layer, settings)


class TestExchangeRates:
    @pytest.mark.asyncio
    async def test_updates_rates_and_sends_currency_params(self, service, transport, settings):
        settings.currency_api_key = "fca-key"
        transport.set(RATES_URL, ok({"data": {"IDR": 16000, "EUR": 0.9}}))

        await service.update_exchange_rates()

        assert service.exchange_rates == {"IDR": 16000.0, "EUR": 0.9}
        params = transport.requests[0].url.params
        assert params["base_currency"] == "USD"
        assert params["currencies"] == "IDR,EUR"
        assert params["apikey"] == "fca-key"

    @pytest.mark.asyncio
    async def test_missing_currency_falls_back_to_default(self, service, transport, settings):
        transport.set(RATES_URL, ok({"data": {"IDR": 16000}}))
        await service.update_exchange_rates()
        assert service.exchange_rates["EUR"] == settings.default_eur_rate

    @pytest.mark.asyncio
    async def test_non_numeric_rate_falls_back_per_currency(self, service, transport, settings):
        transport.set(RATES_URL, ok({"data": {"IDR": "n/a", "EUR": 0.9}}))
        await service.update_exchange_rates()
        assert service.exchange_rates == {"IDR": settings.default_idr_rate, "EUR": 0.9}

    @pytest.mark.asyncio
    async def test_unavailable_api_keeps_rates(self, service, transport, settings):
        transport.set(RATES_URL, httpx.Response(500))
        await service.update_exchange_rates()
        assert service.exchange_rates == {
            "IDR": settings.default_idr_rate,
            "EUR": settings.default_eur_rate,
        }

    @pytest.mark.asyncio
    async def test_unexpected_shape_keeps_rates(self, service, transport, settings):
        transport.set(RATES_URL, ok({"rates": []}))
        await service.update_exchange_rates()
        assert service.exchange_rates["IDR"] == settings.default_idr_rate


class TestDiamondLockPrice:
    @pytest.mark.asyncio
    async def test_converts_idr_price(self, service, transport):
        transport.set(PRICE_URL, ok({"prices": "1,650,000"}))

        await service.update_dl_price()

        assert service.dl_price.rp == "1,650,000"
        assert service.dl_price.usd == "100.000"
        assert service.dl_price.eur == "85.000"

    @pytest.mark.asyncio
    async def test_unreadable_price_is_ignored(self, service, transport):
        transport.set(PRICE_URL, ok({"prices": "n/a"}))
        await service.update_dl_price()
        assert service.dl_price.rp == "0"

    @pytest.mark.asyncio
    async def test_missing_price_is_ignored(self, service, transport):
        transport.set(PRICE_URL, ok({}))
        await service.update_dl_price()
        assert service.dl_price.rp == "0"


class TestSubscribers:
    @pytest.mark.asyncio
    async def test_notified_only_on_change(self, service, transport, clock):
        seen = []
        service.subscribe(seen.append)
        transport.set(PRICE_URL, ok({"prices": "1,650,000"}))

        await service.update_dl_price()
        clock.advance(31)
        await service.update_dl_price()

        assert len(seen) == 1
        assert seen[0].dl_price.rp == "1,650,000"

    @pytest.mark.asyncio
    async def test_unsubscribe(self, service, transport):
        seen = []
        unsubscribe = service.subscribe(seen.append)
        unsubscribe()
        transport.set(PRICE_URL, ok({"prices": "1000"}))
        await service.update_dl_price()
        assert seen == []

    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_block_others(self, service, transport):
        seen = []

        def broken(_snapshot):
            raise RuntimeError("display gone")

        service.subscribe(broken)
        service.subscribe(seen.append)
        transport.set(PRICE_URL, ok({"prices": "1000"}))

        await service.update_dl_price()

        assert len(seen) == 1


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_poll_survives_a_failing_update(self, service):
        calls = 0
        second_call = asyncio.Event()

        async def flaky_update() -> None:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise ValueError("bad payload")
            second_call.set()

        task = asyncio.create_task(service._poll(flaky_update, 0))
        await asyncio.wait_for(second_call.wait(), timeout=1)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert calls >= 2

    @pytest.mark.asyncio
    async def test_start_fetches_then_polls_until_stopped(self, service, transport):
        transport.set(RATES_URL, ok({"data": {"IDR": 16000, "EUR": 0.9}}))
        transport.set(PRICE_URL, ok({"prices": "32000"}))

        await service.start()
        assert service.running is True
        assert service.dl_price.rp == "32,000"
        assert service.dl_price.usd == "2.000"

        await service.stop()
        assert service.running is False


def test_parse_rate():
    assert parse_rate("16250.5", 1.0) == 16250.5
    assert parse_rate(None, 1.0) == 1.0
    assert parse_rate("n/a", 1.0) == 1.0
    assert parse_rate(0, 1.0) == 1.0
    assert parse_rate(float("inf"), 1.0) == 1.0


def test_format_number():
    assert format_number(1650000) == "1,650,000"
    assert format_number(999.9) == "999"
    assert format_number("oops") == "0"
