"""
System-wide embedding refresh.

Walks every id of a population page by page and asks the embedding
compute service to refresh each one. Requests inside a page run
concurrently; a failure for one entity is logged and counted, never
fatal to the page. The walk stops at the end of the data or after
`max_items_per_run` ids, whichever comes first.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable

from swipe_engine.repositories.base import (
    IdSource,
    PostEmbeddingService,
    UserEmbeddingService,
)
from swipe_engine.schemas.batch import RefreshSummary
from swipe_engine.schemas.cluster import EntityType

logger = logging.getLogger(__name__)

RefreshFn = Callable[[str], Awaitable[Any]]


class EmbeddingRefresher:
    def __init__(self, batch_size: int = 100, max_items_per_run: int = 5000) -> None:
        if batch_size <= 0 or max_items_per_run <= 0:
            raise ValueError("batch_size and max_items_per_run must be positive.")
        self.batch_size = batch_size
        self.max_items_per_run = max_items_per_run

    async def refresh(
        self,
        entity_type: EntityType | str,
        id_source: IdSource,
        refresh_one: RefreshFn,
        batch_size: int | None = None,
    ) -> RefreshSummary:
        entity_type = EntityType(entity_type)
        page_size = batch_size or self.batch_size
        logger.info(
            "Refreshing %s embeddings in pages of %d", entity_type.value, page_size
        )
        t0 = time.perf_counter()
        processed = succeeded = 0
        offset = 0

        while processed < self.max_items_per_run:
            limit = min(page_size, self.max_items_per_run - processed)
            ids = list(await id_source.find_all_ids(limit, offset))
            if not ids:
                break

            results = await asyncio.gather(
                *(self._refresh_entity(entity_type, entity_id, refresh_one) for entity_id in ids)
            )
            page_ok = sum(results)
            succeeded += page_ok
            processed += len(ids)
            offset += len(ids)

            logger.info(
                "Processed page of %d %s ids, %d refreshed",
                len(ids),
                entity_type.value,
                page_ok,
            )
            if len(ids) < limit:
                break

        summary = RefreshSummary(
            entity_type=entity_type,
            processed=processed,
            succeeded=succeeded,
            failed=processed - succeeded,
            duration_ms=round((time.perf_counter() - t0) * 1000, 2),
        )
        logger.info(
            "%s embedding refresh done: %d processed, %d failed",
            entity_type.value.capitalize(),
            summary.processed,
            summary.failed,
            extra=summary.model_dump(mode="json"),
        )
        return summary

    async def _refresh_entity(
        self, entity_type: EntityType, entity_id: Any, refresh_one: RefreshFn
    ) -> bool:
        try:
            await refresh_one(str(entity_id))
        except Exception as exc:
            logger.error(
                "Failed to refresh embedding for %s %s: %s",
                entity_type.value,
                entity_id,
                exc,
            )
            return False
        return True

    async def refresh_users(
        self, id_source: IdSource, service: UserEmbeddingService
    ) -> RefreshSummary:
        return await self.refresh(EntityType.user, id_source, service.get_user_embedding)

    async def refresh_posts(
        self, id_source: IdSource, service: PostEmbeddingService
    ) -> RefreshSummary:
        return await self.refresh(EntityType.post, id_source, service.get_post_embedding)
