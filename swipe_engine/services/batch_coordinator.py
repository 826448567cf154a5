"""
Scheduled batch coordinator.

Owns two independent asyncio timers:

    embeddings  — every `embedding_update_interval`, refresh user and post
                  embeddings through the compute services.
    clustering  — every `clustering_interval`, recalculate user and post
                  clusters and hand them to the sink.

`start()` runs both passes once straight away, then keeps the timers
going until `stop()`. A timer waits for its own pass to finish before
sleeping again, but the two timers may overlap each other.

Passes are the outermost error boundary: any exception is logged and the
timer keeps firing. `stop()` only prevents future ticks; a pass that is
already running is left to finish. `drain()` waits for such passes and
cancels whatever outlives its timeout.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Coroutine, TypeVar

from swipe_engine.core.errors import MissingCollaboratorError
from swipe_engine.repositories.base import BatchRepositories, ClusterLookup
from swipe_engine.schemas.batch import (
    BatchProcessorConfig,
    BatchRunReport,
    ClusteringRunSummary,
    CoordinatorStatus,
    RefreshSummary,
)
from swipe_engine.schemas.cluster import ClusteringResult, EntityType
from swipe_engine.services.cluster_recalculator import ClusterRecalculator
from swipe_engine.services.embedding_refresher import EmbeddingRefresher

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BatchCoordinator:
    def __init__(
        self,
        config: BatchProcessorConfig | None = None,
        repositories: BatchRepositories | None = None,
    ) -> None:
        self.config = config or BatchProcessorConfig()
        self.repositories = repositories or BatchRepositories()

        self.recalculator = ClusterRecalculator(
            batch_size=self.config.batch_size,
            sink=self.repositories.cluster_sink,
            params=self.config.clustering_params,
        )
        self.refresher = EmbeddingRefresher(
            batch_size=self.config.batch_size,
            max_items_per_run=self.config.max_items_per_run,
        )

        self._running = False
        self._timers: list[asyncio.Task[None]] = []
        self._in_flight: set[asyncio.Task] = set()
        self._last_refresh: dict[EntityType, RefreshSummary] = {}
        self._last_clustering: dict[EntityType, ClusteringRunSummary] = {}

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Schedule both timers. Must be called from inside the event loop."""
        if self._running:
            logger.warning("BatchCoordinator is already running")
            return

        loop = asyncio.get_running_loop()
        self._running = True
        logger.info("Starting BatchCoordinator...")

        # Run immediately instead of waiting for the first interval.
        first_refresh = self._spawn(self.update_embeddings(), "embeddings-initial")
        first_clustering = self._spawn(self.recalculate_clusters(), "clustering-initial")

        self._timers = [
            loop.create_task(
                self._every(
                    "embeddings",
                    self.config.embedding_update_interval.total_seconds(),
                    self.update_embeddings,
                    first_refresh,
                ),
                name="embeddings-timer",
            ),
            loop.create_task(
                self._every(
                    "clustering",
                    self.config.clustering_interval.total_seconds(),
                    self.recalculate_clusters,
                    first_clustering,
                ),
                name="clustering-timer",
            ),
        ]

        logger.info(
            "BatchCoordinator started. Next embedding refresh in %.0f minutes",
            self.config.embedding_update_interval.total_seconds() / 60,
        )

    def stop(self) -> None:
        if not self._running:
            return

        logger.info("Stopping BatchCoordinator...")
        for timer in self._timers:
            timer.cancel()
        self._timers = []
        self._running = False
        logger.info("BatchCoordinator stopped")

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for in-flight passes; cancel the ones still running after `timeout`."""
        pending = set(self._in_flight)
        if not pending:
            return
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        for task in still_running:
            logger.warning("Cancelling pass %s after %.1fs drain timeout", task.get_name(), timeout)
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)

    def get_assignment(self, entity_type: EntityType | str, entity_id: str) -> str | None:
        """Current cluster of an entity according to the sink, None for noise."""
        sink = self.repositories.cluster_sink
        if not isinstance(sink, ClusterLookup):
            raise MissingCollaboratorError("cluster_sink", "get_assignment")
        return sink.get_assignment(EntityType(entity_type), str(entity_id))

    def status(self) -> CoordinatorStatus:
        return CoordinatorStatus(
            running=self._running,
            last_refresh=list(self._last_refresh.values()),
            last_clustering=list(self._last_clustering.values()),
        )

    # ------------------------------------------------------------------ #
    # Timers
    # ------------------------------------------------------------------ #

    def _spawn(self, coro: Coroutine[None, None, T], name: str) -> asyncio.Task[T]:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return task

    async def _every(
        self,
        name: str,
        interval: float,
        run_pass: Callable[[], Awaitable[object]],
        first: asyncio.Task,
    ) -> None:
        await self._await_pass(first)
        while True:
            await asyncio.sleep(interval)
            try:
                await self._await_pass(self._spawn(run_pass(), f"{name}-tick"))
            except Exception:
                logger.exception("%s tick failed; timer keeps running", name)

    async def _await_pass(self, task: asyncio.Task) -> None:
        # wait() leaves the pass running when the timer is cancelled, and
        # does not raise when the pass itself is cancelled or fails.
        await asyncio.wait({task})
        if task.cancelled():
            logger.warning("Pass %s was cancelled", task.get_name())
        elif task.exception() is not None:
            logger.error("Pass %s failed", task.get_name(), exc_info=task.exception())

    # ------------------------------------------------------------------ #
    # Passes
    # ------------------------------------------------------------------ #

    async def update_embeddings(self) -> list[RefreshSummary]:
        logger.info("Starting embedding refresh...")
        repos = self.repositories
        jobs: list[tuple[EntityType, Callable[[], Awaitable[RefreshSummary]]]] = []
        if repos.user_ids is not None and repos.user_embedding_service is not None:
            jobs.append((
                EntityType.user,
                lambda: self.refresher.refresh_users(repos.user_ids, repos.user_embedding_service),
            ))
        if repos.post_ids is not None and repos.post_embedding_service is not None:
            jobs.append((
                EntityType.post,
                lambda: self.refresher.refresh_posts(repos.post_ids, repos.post_embedding_service),
            ))
        summaries: list[RefreshSummary] = []

        for entity_type, run in jobs:
            try:
                summary = await run()
            except Exception:
                logger.exception("Failed to refresh %s embeddings", entity_type.value)
                continue
            self._last_refresh[entity_type] = summary
            summaries.append(summary)

        return summaries

    async def recalculate_clusters(self) -> dict[EntityType, ClusteringResult]:
        logger.info("Starting cluster recalculation...")
        t0 = time.perf_counter()
        repos = self.repositories
        sources = ((EntityType.user, repos.user_embeddings), (EntityType.post, repos.post_embeddings))
        results: dict[EntityType, ClusteringResult] = {}

        for entity_type, source in sources:
            if source is None:
                continue
            try:
                result = await self.recalculator.recalculate(entity_type, source)
            except Exception:
                logger.exception("Failed to recalculate %s clusters", entity_type.value)
                continue
            self._last_clustering[entity_type] = ClusteringRunSummary.from_result(result)
            results[entity_type] = result
            logger.info(
                "Recalculated %d %s clusters from %d items",
                len(result.clusters),
                entity_type.value,
                result.metadata.total_items,
            )

        logger.info(
            "Cluster recalculation finished in %.0f ms",
            (time.perf_counter() - t0) * 1000,
        )
        return results

    async def force_update(self) -> BatchRunReport:
        """Run both passes once, embeddings first, independent of the timers."""
        logger.info("Running forced update...")
        refreshes = await self.update_embeddings()
        clustering = await self.recalculate_clusters()
        logger.info("Forced update finished")
        return BatchRunReport(refreshes=refreshes, clustering=clustering)
