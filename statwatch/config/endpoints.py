"""Source registry models and YAML loader.

Provides typed Pydantic models for logical endpoints (the candidate source
URLs that can answer them, plus declarative affinity and reconciliation
policies) and a loader that overlays a YAML file on the built-in Growtopia
registry.

Example YAML::

    endpoints:
      mods:
        sources:
          - {name: Noire, url: https://api.noire.my.id/api/mods}
          - {name: GTID, url: https://gtid.dev/get-mods}
        affinity: {preferred: Noire, second_chance: true}
        reconciliation: {strategy: primary_first, primary: Noire}
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Literal
from urllib.parse import urlparse

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

logger = logging.getLogger(__name__)


class SourceConfig(BaseModel):
    """One concrete URL able to answer an endpoint."""

    name: str
    url: str


class AffinityPolicy(BaseModel):
    """Prefer one source over the others while it is usable.

    With ``second_chance`` enabled an unhealthy preferred source is put back
    in front once ``switch_back_delay_seconds`` (or the global default) has
    passed since its last failure.
    """

    preferred: str
    second_chance: bool = False
    switch_back_delay_seconds: float | None = Field(default=None, ge=0)


class ReconciliationPolicy(BaseModel):
    """How to choose between disagreeing results gathered from several sources."""

    strategy: Literal["recent_primary", "primary_first", "first"] = "first"
    primary: str | None = None
    window_seconds: float | None = Field(default=None, ge=0)
    timestamp_field: str = "lastUpdated"


class EndpointConfig(BaseModel):
    """A logical data need and the fixed list of sources that can serve it."""

    name: str
    sources: list[SourceConfig] = Field(min_length=1)
    interval: Literal["fast", "slow"] = "fast"
    interval_seconds: float | None = Field(default=None, gt=0)
    salvage_key: str | None = None
    affinity: AffinityPolicy | None = None
    reconciliation: ReconciliationPolicy | None = None

    @field_validator("sources", mode="before")
    @classmethod
    def _coerce_sources(cls, value: object) -> object:
        """Accept bare URL strings (or a single URL) as well as mappings."""
        if isinstance(value, str):
            value = [value]
        if not isinstance(value, list):
            return value
        return [
            {"name": source_name(item), "url": item} if isinstance(item, str) else item
            for item in value
        ]

    @model_validator(mode="after")
    def _check_policy_sources(self) -> EndpointConfig:
        names = {s.name for s in self.sources}
        if len(names) != len(self.sources):
            raise ValueError(f"duplicate source names for endpoint '{self.name}'")
        if self.affinity is not None and self.affinity.preferred not in names:
            raise ValueError(
                f"affinity source '{self.affinity.preferred}' is not a source of '{self.name}'"
            )
        if (
            self.reconciliation is not None
            and self.reconciliation.primary is not None
            and self.reconciliation.primary not in names
        ):
            raise ValueError(
                f"reconciliation primary '{self.reconciliation.primary}' "
                f"is not a source of '{self.name}'"
            )
        return self

    @property
    def is_multi_source(self) -> bool:
        return len(self.sources) > 1

    def source(self, name: str) -> SourceConfig | None:
        for candidate in self.sources:
            if candidate.name == name:
                return candidate
        return None


def source_name(url: str) -> str:
    """Derive a display name from a source URL's host."""
    host = urlparse(url).hostname or url
    if "noire.my.id" in host:
        return "Noire"
    if "gtid.dev" in host:
        return "GTID"
    if "growtopiagame.com" in host:
        return "Growtopia"
    return host


_GTID = "https://gtid.dev"
_NOIRE = "https://api.noire.my.id/api"

DEFAULT_ENDPOINTS: dict[str, dict] = {
    "exchangeRate": {
        "sources": ["https://api.freecurrencyapi.com/v1/latest"],
        "interval": "slow",
    },
    "diamondLock": {
        "sources": [f"{_GTID}/get-latest-pricedl"],
    },
    "onlinePlayers": {
        "sources": ["https://www.growtopiagame.com/detail"],
        "salvage_key": "online_user",
    },
    "banData": {
        "sources": [f"{_GTID}/get-latest-online", f"{_NOIRE}/player"],
        "affinity": {"preferred": "GTID"},
        "reconciliation": {"strategy": "recent_primary", "primary": "GTID"},
    },
    "mods": {
        "sources": [f"{_NOIRE}/mods", f"{_GTID}/get-mods"],
        "affinity": {"preferred": "Noire", "second_chance": True},
        "reconciliation": {"strategy": "primary_first", "primary": "Noire"},
    },
}


def _build(raw: dict[str, dict]) -> dict[str, EndpointConfig]:
    endpoints: dict[str, EndpointConfig] = {}
    for name, config in raw.items():
        try:
            endpoints[name] = EndpointConfig.model_validate({**(config or {}), "name": name})
        except ValidationError as exc:
            logger.error("Invalid configuration for endpoint '%s': %s; skipping", name, exc)
    return endpoints


def default_endpoints() -> dict[str, EndpointConfig]:
    """Return the built-in Growtopia source registry."""
    return _build(DEFAULT_ENDPOINTS)


def load_endpoint_registry(yaml_path: str) -> dict[str, EndpointConfig]:
    """Parse an endpoints YAML file and overlay it on the built-in registry.

    Args:
        yaml_path: Path to the YAML configuration file.

    Returns:
        A dict mapping endpoint names to EndpointConfig instances. Entries in
        the file replace built-in entries of the same name. If the file is
        missing or unparseable, the built-in registry is returned unchanged.
    """
    endpoints = default_endpoints()
    path = Path(yaml_path)

    if not path.exists():
        logger.warning("Endpoints file not found at %s; using built-in registry", yaml_path)
        return endpoints

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        logger.error("Failed to parse endpoints YAML at %s: %s", yaml_path, exc)
        return endpoints

    if not isinstance(raw, dict) or not isinstance(raw.get("endpoints"), dict):
        logger.warning("Endpoints YAML missing 'endpoints' mapping; using built-in registry")
        return endpoints

    endpoints.update(_build(raw["endpoints"]))
    logger.info("Loaded %d endpoint definitions from %s", len(raw["endpoints"]), yaml_path)
    return endpoints
