"""
In-process cluster store.

Keeps the most recent clustering record per entity type and answers
"which cluster is this entity in right now". Used as the default sink
when the host application does not provide a durable one.
"""

from __future__ import annotations

import logging

from swipe_engine.schemas.cluster import Cluster, ClusterRecord, EntityType

logger = logging.getLogger(__name__)


class InMemoryClusterStore:
    def __init__(self) -> None:
        self._latest: dict[EntityType, ClusterRecord] = {}

    async def save_clustering_result(self, record: ClusterRecord) -> None:
        self._latest[record.entity_type] = record
        logger.info(
            "Stored %d %s clusters (%d assignments)",
            len(record.clusters),
            record.entity_type.value,
            len(record.assignments),
        )

    def latest(self, entity_type: EntityType | str) -> ClusterRecord | None:
        return self._latest.get(EntityType(entity_type))

    def get_assignment(self, entity_type: EntityType | str, entity_id: str) -> str | None:
        """Current cluster id of an entity, or None for noise / unknown."""
        record = self._latest.get(EntityType(entity_type))
        if record is None:
            return None
        return record.assignments.get(str(entity_id))

    def get_cluster(self, entity_type: EntityType | str, entity_id: str) -> Cluster | None:
        cluster_id = self.get_assignment(entity_type, entity_id)
        if cluster_id is None:
            return None
        record = self._latest[EntityType(entity_type)]
        return next((c for c in record.clusters if c.id == cluster_id), None)
