"""Diamond Lock price tracking on top of the reliability layer.

Polls the ``exchangeRate`` endpoint (hourly) and the ``diamondLock`` endpoint
(every 30 seconds), converts the IDR Diamond Lock price to USD and EUR, and
notifies subscribers whenever the price or the rates change. Falls back to
default exchange rates when the currency API has nothing usable.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Awaitable, Callable

from statwatch.config.settings import StatwatchSettings
from statwatch.models.results import DiamondLockPrice, PriceSnapshot
from statwatch.reliability.executor import FetchOptions
from statwatch.reliability.layer import ReliabilityLayer

logger = logging.getLogger(__name__)

EXCHANGE_RATE_ENDPOINT = "exchangeRate"
DIAMOND_LOCK_ENDPOINT = "diamondLock"

Subscriber = Callable[[PriceSnapshot], None]


def format_number(value: float) -> str:
    """Format a number with thousands separators, dropping any fraction."""
    try:
        return f"{int(float(value)):,}"
    except (TypeError, ValueError):
        return "0"


def parse_rate(value: object, default: float) -> float:
    """Read an exchange rate; *default* unless it is a positive finite number."""
    try:
        rate = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default
    return rate if math.isfinite(rate) and rate > 0 else default


class PriceService:
    """Keeps the current Diamond Lock price and exchange rates up to date.

    Parameters
    ----------
    layer:
        Reliability layer used for all reads.
    settings:
        Supplies the currency API key, currencies, poll intervals and
        default rates.
    """

    def __init__(self, layer: ReliabilityLayer, settings: StatwatchSettings) -> None:
        self._layer = layer
        self._settings = settings
        self._default_rates = {
            "IDR": settings.default_idr_rate,
            "EUR": settings.default_eur_rate,
        }
        self.exchange_rates: dict[str, float] = dict(self._default_rates)
        self.dl_price = DiamondLockPrice()
        self._subscribers: list[Subscriber] = []
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Fetch everything once, then keep polling in the background."""
        if self._tasks:
            return
        await self.update_exchange_rates()
        await self.update_dl_price()
        self._tasks = [
            asyncio.create_task(
                self._poll(self.update_exchange_rates, self._settings.exchange_rate_poll_seconds)
            ),
            asyncio.create_task(
                self._poll(self.update_dl_price, self._settings.diamond_lock_poll_seconds)
            ),
        ]
        logger.info("Price service started")

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        self._subscribers.clear()
        logger.info("Price service stopped")

    async def _poll(self, update: Callable[[], Awaitable[None]], interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await update()
            except Exception:  # noqa: BLE001
                logger.exception("Price update %s failed", update.__name__)

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    def _currency_options(self) -> FetchOptions:
        params = {
            "base_currency": self._settings.base_currency,
            "currencies": ",".join(self._settings.target_currencies),
        }
        if self._settings.currency_api_key:
            params["apikey"] = self._settings.currency_api_key
        return FetchOptions(params=params)

    async def update_exchange_rates(self) -> None:
        """Refresh exchange rates; keeps the previous rates when unusable."""
        data = await self._layer.get_data(EXCHANGE_RATE_ENDPOINT, options=self._currency_options())

        if isinstance(data, dict) and isinstance(data.get("data"), dict):
            rates = data["data"]
            new_rates = {
                currency: parse_rate(rates.get(currency), default)
                for currency, default in self._default_rates.items()
            }
            if new_rates != self.exchange_rates:
                self.exchange_rates = new_rates
                logger.info(
                    "Exchange rates updated: 1 USD = %s IDR, 1 USD = %s EUR",
                    new_rates["IDR"],
                    new_rates["EUR"],
                )
                self._notify()
        elif data is not None:
            logger.error("Currency API returned data in an unexpected format: %s", data)
        else:
            logger.warning("Using current exchange rates; currency API unavailable")

    async def update_dl_price(self) -> None:
        """Refresh the Diamond Lock price and notify on change."""
        data = await self._layer.get_data(DIAMOND_LOCK_ENDPOINT)
        if not isinstance(data, dict) or not data.get("prices"):
            return

        try:
            idr_value = int(str(data["prices"]).replace(",", "").strip())
        except ValueError:
            logger.error("Unreadable Diamond Lock price: %r", data["prices"])
            return

        usd_value = idr_value / self.exchange_rates["IDR"]
        eur_value = usd_value * self.exchange_rates["EUR"]
        new_price = DiamondLockPrice(
            rp=format_number(idr_value),
            usd=f"{usd_value:.3f}",
            eur=f"{eur_value:.3f}",
        )

        if new_price.rp != self.dl_price.rp:
            self.dl_price = new_price
            logger.info("DL price updated: Rp %s", new_price.rp)
            self._notify()

    # ------------------------------------------------------------------
    # Subscribers
    # ------------------------------------------------------------------

    def current(self) -> PriceSnapshot:
        return PriceSnapshot(dl_price=self.dl_price, exchange_rates=dict(self.exchange_rates))

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback; returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self) -> None:
        snapshot = self.current()
        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception:  # noqa: BLE001
                logger.exception("Price subscriber failed")
