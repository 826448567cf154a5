"""
Records and results exchanged by the clustering pipeline.

Embedding records come in from an external source; clustering results go
out to an external sink. Everything produced by the engine is frozen: a
result is built once per recalculation and never mutated afterwards.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# --------------------------------------------------------------------------- #
# Enumerations
# --------------------------------------------------------------------------- #

class EntityType(str, Enum):
    user = "user"
    post = "post"


class DistanceKind(str, Enum):
    euclidean = "euclidean"
    cosine = "cosine"


# --------------------------------------------------------------------------- #
# Inputs
# --------------------------------------------------------------------------- #

class Entity(BaseModel):
    """An externally owned user or post, identified by (type, id)."""

    model_config = ConfigDict(frozen=True)

    id: str
    type: EntityType
    metadata: dict[str, Any] = Field(default_factory=dict)


class EmbeddingRecord(BaseModel):
    """
    One row returned by an embedding source.

    `vector` may be missing or empty; the collector skips such rows.
    Sources written against the camelCase contract (`entityId`,
    `embedding`) validate as well.
    """

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    entity_id: str = Field(
        validation_alias=AliasChoices("entity_id", "entityId"),
    )
    vector: list[float] | None = Field(
        default=None,
        validation_alias=AliasChoices("vector", "embedding"),
    )
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("entity_id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Any:
        # Database ids frequently arrive as integers.
        return str(v) if isinstance(v, int) and not isinstance(v, bool) else v

    @field_validator("metadata", mode="before")
    @classmethod
    def default_metadata(cls, v: Any) -> Any:
        return {} if v is None else v


class DBSCANParams(BaseModel):
    """Neighbourhood radius, density threshold and metric for one run."""

    model_config = ConfigDict(frozen=True)

    epsilon: float = Field(
        default=0.3,
        gt=0,
        description="Maximum distance between two points for them to be "
                    "considered neighbours (inclusive).",
    )
    min_points: int = Field(
        default=5,
        ge=1,
        description="Minimum neighbourhood size, the point itself included, "
                    "for a point to be a core point.",
    )
    distance: DistanceKind = DistanceKind.cosine


# --------------------------------------------------------------------------- #
# Outputs
# --------------------------------------------------------------------------- #

class Cluster(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Run-scoped identifier, e.g. `dbscan-1`.")
    centroid: list[float] = Field(description="Element-wise mean of member vectors.")
    size: int = Field(ge=0, description="Number of member entities.")
    density: float = Field(ge=0, description="size / (1 + mean spread).")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ClusteringMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_items: int = Field(ge=0, description="Records seen, malformed included.")
    entity_type: EntityType
    created_at: datetime = Field(default_factory=utcnow)
    noise_count: int = Field(default=0, ge=0)
    silhouette: float | None = Field(
        default=None,
        description="Mean silhouette over clustered points; None when "
                    "fewer than two clusters were found.",
    )
    params: DBSCANParams | None = None
    processing_time_ms: float | None = None


class ClusteringResult(BaseModel):
    """
    Outcome of one recalculation.

    Invariant: every value in `assignments` names a cluster in `clusters`.
    """

    model_config = ConfigDict(frozen=True)

    clusters: list[Cluster] = Field(default_factory=list)
    assignments: dict[str, str] = Field(
        default_factory=dict,
        description="entity id -> cluster id. Noise entities are absent.",
    )
    quality: float = Field(ge=0.0, le=1.0)
    converged: bool = True
    iterations: int = Field(default=0, ge=0)
    metadata: ClusteringMetadata

    @model_validator(mode="after")
    def assignments_reference_clusters(self) -> ClusteringResult:
        known = {cluster.id for cluster in self.clusters}
        unknown = set(self.assignments.values()) - known
        if unknown:
            raise ValueError(
                f"Assignments reference unknown cluster ids: {sorted(unknown)}"
            )
        return self

    def cluster_for(self, entity_id: str) -> Cluster | None:
        cluster_id = self.assignments.get(entity_id)
        if cluster_id is None:
            return None
        return next((c for c in self.clusters if c.id == cluster_id), None)


class ClusterRecord(BaseModel):
    """Payload handed to `ClusterResultSink.save_clustering_result`."""

    model_config = ConfigDict(frozen=True)

    entity_type: EntityType
    clusters: list[Cluster]
    assignments: dict[str, str]
    quality: float
    metadata: ClusteringMetadata
    created_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def from_result(cls, result: ClusteringResult) -> ClusterRecord:
        return cls(
            entity_type=result.metadata.entity_type,
            clusters=result.clusters,
            assignments=result.assignments,
            quality=result.quality,
            metadata=result.metadata,
        )
