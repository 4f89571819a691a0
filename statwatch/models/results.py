"""Result models passed between the reliability layer and its consumers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


@dataclass
class FetchAttemptResult:
    """Outcome of trying one source once (after its retries)."""

    source: str
    url: str
    success: bool
    elapsed_ms: float
    fetched_at: float  # epoch seconds
    payload: Any = None
    error: str | None = None

    def as_dict(self) -> dict:
        return {
            "source": self.source,
            "url": self.url,
            "success": self.success,
            "elapsed_ms": self.elapsed_ms,
            "error": self.error,
        }


@dataclass
class ReconciledResult:
    """The payload chosen among several sources' results."""

    data: Any
    source: str
    reason: str


@dataclass
class CacheResult:
    """Value served by the cache layer plus how it was obtained.

    ``fresh`` is False when the value is older than the endpoint's interval.
    ``degraded`` is True when a refresh failed and the value (if any) is a
    leftover from an earlier fetch.
    """

    value: Any
    fresh: bool
    degraded: bool


class PlayerDataSources(BaseModel):
    """Where each half of the combined player data came from."""

    model_config = ConfigDict(populate_by_name=True)

    player_count: str = Field(alias="playerCount")
    ban_rate: str = Field(alias="banRate")


class CombinedPlayerData(BaseModel):
    """Online player count from the official API joined with ban-rate data."""

    model_config = ConfigDict(populate_by_name=True)

    online_user: int = 0
    ban_rate: float = 0.0
    last_updated: str = Field(alias="lastUpdated")
    sources: PlayerDataSources


class DiamondLockPrice(BaseModel):
    """Diamond Lock price formatted for display."""

    rp: str = "0"
    usd: str = "0.00"
    eur: str = "0.00"


class PriceSnapshot(BaseModel):
    """Current Diamond Lock price and the exchange rates used to derive it."""

    dl_price: DiamondLockPrice = Field(default_factory=DiamondLockPrice)
    exchange_rates: dict[str, float]
