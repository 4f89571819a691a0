"""FastAPI application entry point with lifespan management.

Startup: validate settings, configure logging, build the reliability layer
from the endpoint registry, start the alert dispatcher and the price pollers.
Shutdown: stop the pollers, cancel the alert dispatcher.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from statwatch.config.settings import StatwatchSettings
from statwatch.integration.alerts import HealthAlertDispatcher
from statwatch.logging_config import configure_logging
from statwatch.middleware.auth import AdminKeyAuthMiddleware
from statwatch.middleware.error_handler import register_error_handlers
from statwatch.reliability.layer import ReliabilityLayer
from statwatch.routers.data import create_data_router
from statwatch.routers.health import create_health_router
from statwatch.services.price_service import PriceService

logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown logic."""
    settings = StatwatchSettings()  # type: ignore[call-arg]

    configure_logging(settings.log_level)
    logger.info("Starting statwatch service on port %d", settings.port)

    layer = ReliabilityLayer.from_settings(settings)

    # Health transitions go out as webhook alerts
    alerts = HealthAlertDispatcher(
        webhook_url=settings.alert_webhook_url,
        max_retries=settings.alert_max_retries,
    )
    layer.health.add_listener(alerts.enqueue)
    alerts_task = asyncio.create_task(alerts.run())

    price_service = PriceService(layer, settings)
    await price_service.start()

    # Mount routers
    app.include_router(create_health_router(layer=layer, alerts=alerts))
    app.include_router(create_data_router(layer=layer, price_service=price_service))

    logger.info("Statwatch service started successfully")

    yield

    # --- Shutdown ---
    logger.info("Shutting down statwatch service...")

    await price_service.stop()

    alerts_task.cancel()
    try:
        await alerts_task
    except asyncio.CancelledError:
        pass

    logger.info("Statwatch service shut down")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Loads ``StatwatchSettings`` eagerly so that a missing
    ``STATWATCH_ADMIN_KEY`` environment variable causes an immediate startup
    failure rather than silently running with unprotected admin routes.
    """
    settings = StatwatchSettings()  # type: ignore[call-arg]

    app = FastAPI(
        title="Statwatch",
        version="1.0.0",
        lifespan=lifespan,
    )

    register_error_handlers(app)
    app.add_middleware(AdminKeyAuthMiddleware, admin_key=settings.admin_key)

    return app


app = create_app()
