"""Configuration module: settings and the source registry."""

from statwatch.config.endpoints import (
    AffinityPolicy,
    EndpointConfig,
    ReconciliationPolicy,
    SourceConfig,
    default_endpoints,
    load_endpoint_registry,
)
from statwatch.config.settings import StatwatchSettings

__all__ = [
    "AffinityPolicy",
    "EndpointConfig",
    "ReconciliationPolicy",
    "SourceConfig",
    "StatwatchSettings",
    "default_endpoints",
    "load_endpoint_registry",
]
