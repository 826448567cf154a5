"""
Configuration and run summaries for the scheduled batch coordinator.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from pydantic import BaseModel, ConfigDict, Field, PositiveInt, field_validator

from swipe_engine.schemas.cluster import (
    ClusteringResult,
    DBSCANParams,
    EntityType,
    utcnow,
)


class BatchProcessorConfig(BaseModel):
    """
    Immutable coordinator configuration.

    Changing any value requires building a new coordinator; there is no
    live reconfiguration.
    """

    model_config = ConfigDict(frozen=True)

    embedding_update_interval: timedelta = Field(default=timedelta(hours=12))
    clustering_interval: timedelta = Field(default=timedelta(hours=24))
    batch_size: PositiveInt = 100
    max_items_per_run: PositiveInt = 5000
    clustering_params: DBSCANParams = Field(
        default_factory=lambda: DBSCANParams(epsilon=0.25, min_points=3),
    )

    @field_validator("embedding_update_interval", "clustering_interval")
    @classmethod
    def positive_interval(cls, v: timedelta) -> timedelta:
        if v.total_seconds() <= 0:
            raise ValueError("Intervals must be positive.")
        return v


class RefreshSummary(BaseModel):
    """Totals of one id-paginated embedding refresh pass."""

    entity_type: EntityType
    processed: int = Field(default=0, ge=0)
    succeeded: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    duration_ms: float = 0.0
    finished_at: datetime = Field(default_factory=utcnow)


class ClusteringRunSummary(BaseModel):
    entity_type: EntityType
    cluster_count: int
    total_items: int
    quality: float
    finished_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def from_result(cls, result: ClusteringResult) -> ClusteringRunSummary:
        return cls(
            entity_type=result.metadata.entity_type,
            cluster_count=len(result.clusters),
            total_items=result.metadata.total_items,
            quality=result.quality,
        )


class BatchRunReport(BaseModel):
    """What a forced run produced, returned to the manual caller."""

    refreshes: list[RefreshSummary] = Field(default_factory=list)
    clustering: dict[EntityType, ClusteringResult] = Field(default_factory=dict)


class CoordinatorStatus(BaseModel):
    running: bool
    last_refresh: list[RefreshSummary] = Field(default_factory=list)
    last_clustering: list[ClusteringRunSummary] = Field(default_factory=list)
