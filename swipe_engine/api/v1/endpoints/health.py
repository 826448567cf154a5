"""
Health check endpoints.

GET /health     — root-level health (no auth required, used by Docker/k8s probes)
GET /v1/health  — versioned alias
"""

from __future__ import annotations

import time

from fastapi import APIRouter

from swipe_engine.core.config import get_settings
from swipe_engine.core.registry import get_coordinator
from swipe_engine.schemas.health import HealthResponse

router = APIRouter(tags=["Health"])

# Recorded at import time, a rough approximation of process start.
_START_TIME = time.time()


def _build_health_response() -> HealthResponse:
    settings = get_settings()
    coordinator = get_coordinator()
    status = coordinator.status()

    return HealthResponse(
        status="ok" if status.running else "degraded",
        version=settings.app_version,
        environment=settings.environment,
        uptime_seconds=round(time.time() - _START_TIME, 1),
        coordinator=status,
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
    description=(
        "Returns the overall service status, whether the batch coordinator "
        "is running, and the latest refresh / clustering summaries. "
        "Suitable for Docker HEALTHCHECK and Kubernetes liveness probes."
    ),
)
async def health_root() -> HealthResponse:
    return _build_health_response()


@router.get(
    "/v1/health",
    response_model=HealthResponse,
    summary="Service health check (versioned alias)",
)
async def health_v1() -> HealthResponse:
    return _build_health_response()
