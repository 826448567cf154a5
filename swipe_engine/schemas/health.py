"""
Health check response schemas.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from swipe_engine.schemas.batch import CoordinatorStatus


class HealthResponse(BaseModel):
    """Response body for GET /health and GET /v1/health"""

    status: Literal["ok", "degraded"] = Field(
        description=(
            "ok        — batch coordinator running, timers scheduled.\n"
            "degraded  — coordinator stopped or scheduler disabled; "
            "            clusters are not being refreshed."
        )
    )
    version: str = Field(description="Service version string.", examples=["1.0.0"])
    environment: str = Field(examples=["production"])
    uptime_seconds: float = Field(description="Seconds since the process started.")
    coordinator: CoordinatorStatus = Field(
        description="Running flag and the latest pass summaries per entity type."
    )
