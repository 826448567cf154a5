"""
Coordinator registry — the single BatchCoordinator of the process.

Built exactly once inside the `lifespan` context manager in `main.py`.
Route handlers reach it through `get_coordinator()`; nothing else ever
constructs a coordinator or its collaborators.
"""

from __future__ import annotations

import logging
from dataclasses import replace

from swipe_engine.core.config import Settings
from swipe_engine.repositories.base import BatchRepositories
from swipe_engine.repositories.memory import InMemoryClusterStore
from swipe_engine.schemas.batch import BatchProcessorConfig
from swipe_engine.schemas.cluster import DBSCANParams
from swipe_engine.services.batch_coordinator import BatchCoordinator

logger = logging.getLogger(__name__)

# Module-level singleton, populated during startup lifespan.
_coordinator: BatchCoordinator | None = None


def get_coordinator() -> BatchCoordinator:
    if _coordinator is None:
        raise RuntimeError(
            "BatchCoordinator has not been initialised. "
            "Ensure `build_coordinator()` is called inside the lifespan handler."
        )
    return _coordinator


def batch_config_from_settings(settings: Settings) -> BatchProcessorConfig:
    return BatchProcessorConfig(
        embedding_update_interval=settings.embedding_update_interval,
        clustering_interval=settings.clustering_interval,
        batch_size=settings.batch_size,
        max_items_per_run=settings.max_items_per_run,
        clustering_params=DBSCANParams(
            epsilon=settings.dbscan_eps_default,
            min_points=settings.dbscan_min_points_default,
            distance=settings.dbscan_distance_default,
        ),
    )


def build_coordinator(
    settings: Settings,
    repositories: BatchRepositories | None = None,
) -> BatchCoordinator:
    """
    Build the process-wide coordinator.
    Without a durable sink, results go to an InMemoryClusterStore so the
    latest assignments stay queryable.
    """
    global _coordinator
    repositories = repositories or BatchRepositories()
    if repositories.cluster_sink is None:
        logger.warning("No cluster sink configured; keeping results in memory only")
        repositories = replace(repositories, cluster_sink=InMemoryClusterStore())

    _coordinator = BatchCoordinator(batch_config_from_settings(settings), repositories)
    logger.info(
        "BatchCoordinator ready: batch_size=%d max_items_per_run=%d",
        settings.batch_size,
        settings.max_items_per_run,
    )
    return _coordinator
