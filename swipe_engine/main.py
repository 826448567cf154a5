"""
Process entrypoint hosting the batch coordinator.

Startup sequence:
  1. Configure structured logging.
  2. Build the coordinator from settings and the injected repositories.
  3. Start the timers (unless SCHEDULER_ENABLED=false).

Shutdown stops the timers and drains in-flight passes for at most
SHUTDOWN_GRACE_SECONDS. The only HTTP surface is the health probe.

Served by Uvicorn:  uvicorn swipe_engine.main:app
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from swipe_engine.api.v1.endpoints.health import router as health_router
from swipe_engine.core.config import get_settings
from swipe_engine.core.logging import configure_logging
from swipe_engine.core.registry import build_coordinator
from swipe_engine.repositories.base import BatchRepositories

logger = logging.getLogger(__name__)


def create_app(repositories: BatchRepositories | None = None) -> FastAPI:
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """
        Everything before `yield` runs at startup; everything after at shutdown.
        """
        configure_logging(level=settings.log_level, json_logs=settings.log_json)
        logger.info(
            "Starting %s v%s [%s]",
            settings.app_name,
            settings.app_version,
            settings.environment,
        )

        coordinator = build_coordinator(settings, repositories)
        if settings.scheduler_enabled:
            coordinator.start()
        else:
            logger.info("Scheduler disabled; only manual force_update() runs")

        logger.info("Service ready.")
        yield

        logger.info("Shutting down %s.", settings.app_name)
        coordinator.stop()
        await coordinator.drain(timeout=settings.shutdown_grace_seconds)

    app = FastAPI(
        title=settings.app_name,
        description=(
            "Recommendation clustering engine.\n\n"
            "Periodically refreshes user and post embeddings and re-clusters "
            "them with DBSCAN. Exposes a health probe only."
        ),
        version=settings.app_version,
        docs_url="/docs",
        redoc_url=None,
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.include_router(health_router)   # /health and /v1/health, no auth

    return app


app = create_app()
