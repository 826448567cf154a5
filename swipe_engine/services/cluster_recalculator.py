"""
Cluster recalculation orchestrator — one full pass for one population.

Responsibilities:
  1. Collect every embedding of the population (all pages, then cluster).
  2. Run DBSCAN in a worker thread so the event loop keeps serving timers.
  3. Score the partition and wrap it with run metadata.
  4. Persist through the sink, best effort.

Collection and clustering errors propagate to the caller. Only the
persistence step is allowed to fail quietly: a sink outage costs
durability, never the freshly computed result.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass

from swipe_engine.repositories.base import ClusterResultSink, EmbeddingSource
from swipe_engine.schemas.cluster import (
    ClusteringMetadata,
    ClusteringResult,
    ClusterRecord,
    DBSCANParams,
    EntityType,
)
from swipe_engine.services.cluster_service import DBSCANClustering
from swipe_engine.services.embedding_collector import EmbeddingCollector

logger = logging.getLogger(__name__)


def quality_score(cluster_count: int, total_items: int) -> float:
    """Cluster count relative to sqrt(population), capped at 1."""
    if cluster_count <= 0 or total_items <= 0:
        return 0.0
    return min(1.0, cluster_count / math.sqrt(total_items))


@dataclass(frozen=True)
class PersistOutcome:
    ok: bool
    error: Exception | None = None


async def persist_result(sink: ClusterResultSink, result: ClusteringResult) -> PersistOutcome:
    """
    Save `result` and report the outcome instead of raising.
    Only the sink call itself is guarded.
    """
    record = ClusterRecord.from_result(result)
    try:
        await sink.save_clustering_result(record)
    except Exception as exc:
        return PersistOutcome(ok=False, error=exc)
    return PersistOutcome(ok=True)


class ClusterRecalculator:
    def __init__(
        self,
        batch_size: int = 100,
        sink: ClusterResultSink | None = None,
        params: DBSCANParams | None = None,
    ) -> None:
        self.collector = EmbeddingCollector(batch_size=batch_size)
        self.sink = sink
        self.params = params or DBSCANParams()

    async def recalculate(
        self,
        entity_type: EntityType | str,
        source: EmbeddingSource,
        sink: ClusterResultSink | None = None,
        params: DBSCANParams | None = None,
    ) -> ClusteringResult:
        entity_type = EntityType(entity_type)
        params = params or self.params
        sink = sink if sink is not None else self.sink
        logger.info("Recalculating %s clusters...", entity_type.value)
        t0 = time.perf_counter()

        batch = await self.collector.collect(source, entity_type)

        if not batch.vectors:
            logger.warning("No %s embeddings found for clustering", entity_type.value)
            return ClusteringResult(
                clusters=[],
                assignments={},
                quality=0.0,
                converged=True,
                iterations=0,
                metadata=ClusteringMetadata(
                    total_items=batch.total_items,
                    entity_type=entity_type,
                    noise_count=0,
                    params=params,
                ),
            )

        clustering = DBSCANClustering(params)
        output = await asyncio.to_thread(clustering.process, batch.vectors, batch.entities)

        elapsed_ms = (time.perf_counter() - t0) * 1000
        result = ClusteringResult(
            clusters=output.clusters,
            assignments=output.assignments,
            quality=quality_score(len(output.clusters), batch.total_items),
            converged=True,
            iterations=1,
            metadata=ClusteringMetadata(
                total_items=batch.total_items,
                entity_type=entity_type,
                noise_count=output.noise_count,
                silhouette=output.silhouette,
                params=params,
                processing_time_ms=round(elapsed_ms, 2),
            ),
        )

        if sink is not None:
            outcome = await persist_result(sink, result)
            if outcome.ok:
                logger.info("Persisted %s clusters", entity_type.value)
            else:
                # Durability is best effort; the computed result is still returned.
                logger.error(
                    "Failed to persist %s clusters: %s",
                    entity_type.value,
                    outcome.error,
                    exc_info=outcome.error,
                )

        logger.info(
            "%s clustering done: %d clusters, quality %.2f",
            entity_type.value.capitalize(),
            len(result.clusters),
            result.quality,
            extra={
                "entity_type": entity_type.value,
                "total_items": batch.total_items,
                "noise_count": output.noise_count,
                "processing_time_ms": round(elapsed_ms, 2),
            },
        )
        return result

    async def recalculate_user_clusters(
        self,
        source: EmbeddingSource,
        params: DBSCANParams | None = None,
    ) -> ClusteringResult:
        return await self.recalculate(EntityType.user, source, params=params)

    async def recalculate_post_clusters(
        self,
        source: EmbeddingSource,
        params: DBSCANParams | None = None,
    ) -> ClusteringResult:
        return await self.recalculate(EntityType.post, source, params=params)
