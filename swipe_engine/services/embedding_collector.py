"""
Pages an embedding source into one in-memory batch for clustering.

The source is read with `find_all_embeddings(batch_size, offset)` until a
page comes back short or empty. Malformed rows (no vector, empty vector,
non-finite values, or a dimensionality different from the first accepted
row) are skipped but still counted in `total_items`.

Source errors are not caught here: a failed page discards the partial
batch and the exception reaches the caller, which owns retries.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Mapping

from pydantic import ValidationError

from swipe_engine.repositories.base import EmbeddingSource
from swipe_engine.schemas.cluster import EmbeddingRecord, Entity, EntityType

logger = logging.getLogger(__name__)


@dataclass
class CollectedBatch:
    entity_type: EntityType
    vectors: list[list[float]] = field(default_factory=list)
    entities: list[Entity] = field(default_factory=list)
    total_items: int = 0
    skipped: int = 0
    pages: int = 0

    @property
    def dimensions(self) -> int | None:
        return len(self.vectors[0]) if self.vectors else None


class EmbeddingCollector:
    def __init__(self, batch_size: int = 100) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be positive.")
        self.batch_size = batch_size

    async def collect(
        self,
        source: EmbeddingSource,
        entity_type: EntityType | str,
    ) -> CollectedBatch:
        entity_type = EntityType(entity_type)
        batch = CollectedBatch(entity_type=entity_type)
        offset = 0

        while True:
            page = await source.find_all_embeddings(self.batch_size, offset)
            page = list(page or [])
            batch.pages += 1
            batch.total_items += len(page)

            if not page:
                break

            for raw in page:
                record = self._accept(raw, batch)
                if record is None:
                    batch.skipped += 1
                    continue
                batch.vectors.append(record.vector)  # type: ignore[arg-type]
                batch.entities.append(
                    Entity(id=record.entity_id, type=entity_type, metadata=record.metadata)
                )

            offset += len(page)
            if len(page) < self.batch_size:
                break

        logger.info(
            "Collected %d %s embeddings (%d seen, %d skipped, %d pages)",
            len(batch.vectors),
            entity_type.value,
            batch.total_items,
            batch.skipped,
            batch.pages,
            extra={"entity_type": entity_type.value, "dimensions": batch.dimensions},
        )
        return batch

    def _accept(
        self,
        raw: EmbeddingRecord | Mapping[str, Any],
        batch: CollectedBatch,
    ) -> EmbeddingRecord | None:
        try:
            record = (
                raw if isinstance(raw, EmbeddingRecord)
                else EmbeddingRecord.model_validate(raw)
            )
        except ValidationError as exc:
            logger.warning(
                "Skipping malformed %s record: %d validation error(s)",
                batch.entity_type.value,
                exc.error_count(),
            )
            return None

        vector = record.vector
        if not vector:
            logger.debug("Skipping %s %s: no vector", batch.entity_type.value, record.entity_id)
            return None
        if not all(math.isfinite(v) for v in vector):
            logger.warning(
                "Skipping %s %s: vector has non-finite values",
                batch.entity_type.value,
                record.entity_id,
            )
            return None
        expected = batch.dimensions
        if expected is not None and len(vector) != expected:
            logger.warning(
                "Skipping %s %s: %d dimensions, batch has %d",
                batch.entity_type.value,
                record.entity_id,
                len(vector),
                expected,
            )
            return None
        return record
