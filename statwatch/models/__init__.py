"""Public models for the statwatch service."""

from statwatch.models.responses import ApiResponse, CacheMeta
from statwatch.models.results import (
    CacheResult,
    CombinedPlayerData,
    DiamondLockPrice,
    FetchAttemptResult,
    PlayerDataSources,
    PriceSnapshot,
    ReconciledResult,
)

__all__ = [
    "ApiResponse",
    "CacheMeta",
    "CacheResult",
    "CombinedPlayerData",
    "DiamondLockPrice",
    "FetchAttemptResult",
    "PlayerDataSources",
    "PriceSnapshot",
    "ReconciledResult",
]
