"""Data read and admin endpoints.

- GET  /data/{endpoint}: cached read (``?force_refresh=true`` to refetch)
- GET  /players: combined player count and ban rate
- GET  /prices: current Diamond Lock price and exchange rates
- GET  /diagnostics/{endpoint}: fetch every source and reconcile (admin)
- POST /cache/clear: reset one endpoint (``?endpoint=``) or all (admin)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, Response

from statwatch.middleware.error_handler import UnknownEndpointError
from statwatch.models.responses import ApiResponse, CacheMeta

if TYPE_CHECKING:
    from statwatch.reliability.layer import ReliabilityLayer
    from statwatch.services.price_service import PriceService

logger = logging.getLogger(__name__)


def create_data_router(
    *,
    layer: ReliabilityLayer,
    price_service: PriceService | None = None,
) -> APIRouter:
    """Factory that creates the data router with injected dependencies."""

    data_router = APIRouter(tags=["data"])

    def _require_endpoint(endpoint: str) -> None:
        if endpoint not in layer.endpoints:
            raise UnknownEndpointError(f"Unknown endpoint: {endpoint}", endpoint=endpoint)

    @data_router.get("/data/{endpoint}")
    async def read_endpoint(endpoint: str, response: Response, force_refresh: bool = False) -> dict:
        """Return the endpoint's value; 503 when nothing is available yet."""
        _require_endpoint(endpoint)
        result = await layer.cache.lookup(endpoint, force_refresh=force_refresh)
        meta = CacheMeta(fresh=result.fresh, degraded=result.degraded).model_dump()

        if result.value is None:
            response.status_code = 503
            return ApiResponse(
                success=False,
                error="Temporarily unavailable",
                meta=meta,
            ).model_dump()

        return ApiResponse(success=True, data=result.value, meta=meta).model_dump()

    @data_router.get("/players")
    async def players() -> dict:
        """Combined online player count and ban rate."""
        combined = await layer.get_combined_player_data()
        return ApiResponse(success=True, data=combined.model_dump(by_alias=True)).model_dump()

    @data_router.get("/prices")
    async def prices(response: Response) -> dict:
        """Current Diamond Lock price and the exchange rates behind it."""
        if price_service is None:
            response.status_code = 503
            return ApiResponse(success=False, error="Price service disabled").model_dump()
        return ApiResponse(success=True, data=price_service.current().model_dump()).model_dump()

    @data_router.get("/diagnostics/{endpoint}")
    async def diagnostics(endpoint: str) -> dict:
        """Query every source of the endpoint and show which one would be used."""
        _require_endpoint(endpoint)
        report = await layer.probe_sources(endpoint)
        return ApiResponse(success=True, data=report).model_dump()

    @data_router.post("/cache/clear")
    async def clear_cache(endpoint: str | None = None) -> dict:
        """Reset the cache so the next read refetches."""
        layer.clear_cache(endpoint)
        logger.info("Cache cleared via admin API", extra={"endpoint": endpoint or "*"})
        return ApiResponse(
            success=True,
            data={"cleared": endpoint or "all"},
        ).model_dump()

    return data_router
