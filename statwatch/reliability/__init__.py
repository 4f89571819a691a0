"""Multi-source fetch reliability layer."""

from statwatch.reliability.cache import CacheEntry, CacheLayer
from statwatch.reliability.executor import FetchExecutor, FetchOptions
from statwatch.reliability.health import (
    HealthEvent,
    HealthTracker,
    HealthTransition,
    SourceHealth,
)
from statwatch.reliability.layer import ReliabilityLayer
from statwatch.reliability.orchestrator import FailoverOrchestrator
from statwatch.reliability.prioritizer import Prioritizer
from statwatch.reliability.timestamps import parse_timestamp

__all__ = [
    "CacheEntry",
    "CacheLayer",
    "FailoverOrchestrator",
    "FetchExecutor",
    "FetchOptions",
    "HealthEvent",
    "HealthTracker",
    "HealthTransition",
    "Prioritizer",
    "ReliabilityLayer",
    "SourceHealth",
    "parse_timestamp",
]
