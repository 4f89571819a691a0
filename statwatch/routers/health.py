"""Health, readiness, and metrics endpoints.

These endpoints do NOT require X-Admin-Key authentication.
- GET /health: service status + per-source health summary
- GET /readiness: 200 only when every endpoint has a healthy source
- GET /metrics: executor, cache and health snapshots
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, Response

from statwatch.models.responses import ApiResponse

if TYPE_CHECKING:
    from statwatch.integration.alerts import HealthAlertDispatcher
    from statwatch.reliability.layer import ReliabilityLayer


def create_health_router(
    *,
    layer: ReliabilityLayer,
    alerts: HealthAlertDispatcher | None = None,
) -> APIRouter:
    """Factory that creates the health router with injected dependencies."""

    health_router = APIRouter(tags=["health"])

    @health_router.get("/health")
    async def health() -> dict:
        """Service health check with per-source health."""
        summary = layer.get_api_health_summary()
        total = sum(len(sources) for sources in summary.values())
        healthy = sum(1 for sources in summary.values() for s in sources if s["is_healthy"])

        return ApiResponse(
            success=True,
            data={
                "status": "healthy" if healthy == total else "degraded",
                "sources_total": total,
                "sources_healthy": healthy,
                "endpoints": summary,
            },
        ).model_dump()

    @health_router.get("/readiness")
    async def readiness(response: Response) -> dict:
        """Readiness probe: 200 iff every endpoint has at least one healthy source."""
        is_ready = layer.is_ready()
        if not is_ready:
            response.status_code = 503

        return ApiResponse(
            success=is_ready,
            data={"ready": is_ready},
            error=None if is_ready else "No healthy source for at least one endpoint",
        ).model_dump()

    @health_router.get("/metrics")
    async def metrics() -> dict:
        """Operational metrics endpoint."""
        return ApiResponse(
            success=True,
            data={
                "executor": layer.executor.get_stats(),
                "cache": layer.cache.status(layer.endpoints),
                "health": layer.get_api_health_summary(),
                "pending_alerts": alerts.pending if alerts else 0,
            },
        ).model_dump()

    return health_router
