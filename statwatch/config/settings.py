"""Pydantic Settings for the statwatch service.

All environment variables use the STATWATCH_ prefix.
Example: STATWATCH_PORT=8002, STATWATCH_ADMIN_KEY=my-secret-key
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings


class StatwatchSettings(BaseSettings):
    """Statwatch configuration validated from environment variables."""

    # Service
    port: int = 8002
    admin_key: str  # X-Admin-Key for diagnostics / cache reset
    log_level: str = "INFO"

    # Source registry
    endpoints_path: str = "statwatch/config/endpoints.yaml"

    # Cache refresh intervals
    fast_interval_seconds: float = Field(default=30.0, gt=0)
    slow_interval_seconds: float = Field(default=3600.0, gt=0)

    # Fetch executor
    request_timeout_seconds: float = Field(default=8.0, gt=0)
    max_concurrent_requests: int = Field(default=3, ge=1)
    max_retries: int = Field(default=3, ge=1)
    retry_delay_seconds: float = Field(default=1.5, ge=0)
    default_retry_after_seconds: float = Field(default=5.0, ge=0)
    max_retry_after_seconds: float = Field(default=60.0, gt=0)
    proxy_url: str | None = None  # http://, https:// or socks5://
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
    )

    # Failover / health
    source_switch_delay_seconds: float = Field(default=0.5, ge=0)
    health_failure_threshold: int = Field(default=3, ge=1)
    switch_back_delay_seconds: float = Field(default=120.0, ge=0)

    # Reconciliation
    reconciliation_window_seconds: float = Field(default=120.0, ge=0)
    clock_skew_tolerance_seconds: float = Field(default=60.0, ge=0)

    # Price service
    currency_api_key: str | None = None
    base_currency: str = "USD"
    target_currencies: list[str] = ["IDR", "EUR"]
    exchange_rate_poll_seconds: float = Field(default=3600.0, gt=0)
    diamond_lock_poll_seconds: float = Field(default=30.0, gt=0)
    default_idr_rate: float = Field(default=16500.0, gt=0)
    default_eur_rate: float = Field(default=0.85, gt=0)

    # Health alerts
    alert_webhook_url: str | None = None
    alert_max_retries: int = Field(default=3, ge=1)

    model_config = {"env_prefix": "STATWATCH_"}

    def interval_for(self, interval_class: str) -> float:
        """Map an endpoint's ``fast``/``slow`` interval class to seconds."""
        if interval_class == "slow":
            return self.slow_interval_seconds
        return self.fast_interval_seconds
