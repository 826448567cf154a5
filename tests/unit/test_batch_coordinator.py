"""Unit tests for the scheduled batch coordinator."""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta

import pytest
from pydantic import ValidationError

from tests.conftest import (
    FailingSink,
    FakeEmbeddingService,
    FakeEmbeddingSource,
    FakeIdSource,
    make_rows,
)
from swipe_engine.core.errors import MissingCollaboratorError
from swipe_engine.repositories.base import BatchRepositories
from swipe_engine.repositories.memory import InMemoryClusterStore
from swipe_engine.schemas.batch import BatchProcessorConfig
from swipe_engine.schemas.cluster import DBSCANParams, EntityType
from swipe_engine.services.batch_coordinator import BatchCoordinator

LOOSE = DBSCANParams(epsilon=0.5, min_points=2)


def _config(interval: float = 3600.0) -> BatchProcessorConfig:
    return BatchProcessorConfig(
        embedding_update_interval=timedelta(seconds=interval),
        clustering_interval=timedelta(seconds=interval),
        batch_size=10,
        max_items_per_run=100,
        clustering_params=LOOSE,
    )


def _repositories(store: InMemoryClusterStore | None = None, **overrides) -> BatchRepositories:
    values = dict(
        user_ids=FakeIdSource(["u0", "u1"]),
        post_ids=FakeIdSource(["p0", "p1", "p2"]),
        user_embedding_service=FakeEmbeddingService(),
        post_embedding_service=FakeEmbeddingService(),
        user_embeddings=FakeEmbeddingSource(make_rows([[1, 0], [1, 0.1]], prefix="u")),
        post_embeddings=FakeEmbeddingSource(make_rows([[1, 2, 3], [4, 5, 6], [-3, 1, 0]], prefix="p")),
        cluster_sink=store,
    )
    values.update(overrides)
    return BatchRepositories(**values)


class GatedSource(FakeEmbeddingSource):
    """Blocks inside find_all_embeddings until `gate` is set."""

    def __init__(self, rows) -> None:
        super().__init__(rows)
        self.entered = asyncio.Event()
        self.gate = asyncio.Event()

    async def find_all_embeddings(self, limit: int, offset: int):
        self.entered.set()
        await self.gate.wait()
        return await super().find_all_embeddings(limit, offset)


class FlakySource(FakeEmbeddingSource):
    """Fails on the first call, then behaves."""

    async def find_all_embeddings(self, limit: int, offset: int):
        if not self.calls:
            self.calls.append((limit, offset))
            raise ConnectionError("transient outage")
        return await super().find_all_embeddings(limit, offset)


# ------------------------------------------------------------------ #
# Manual runs
# ------------------------------------------------------------------ #

@pytest.mark.asyncio
async def test_force_update_runs_both_passes(cluster_store: InMemoryClusterStore) -> None:
    repos = _repositories(cluster_store)
    coordinator = BatchCoordinator(_config(), repos)

    report = await coordinator.force_update()

    assert [s.entity_type for s in report.refreshes] == [EntityType.user, EntityType.post]
    assert [s.processed for s in report.refreshes] == [2, 3]
    assert sorted(repos.post_embedding_service.refreshed) == ["p0", "p1", "p2"]
    assert set(report.clustering) == {EntityType.user, EntityType.post}
    assert report.clustering[EntityType.post].assignments == {"p_0": "dbscan-1", "p_1": "dbscan-1"}
    assert coordinator.get_assignment("post", "p_0") == "dbscan-1"
    assert coordinator.get_assignment(EntityType.post, "p_2") is None
    assert coordinator.is_running is False


@pytest.mark.asyncio
async def test_refresh_failures_are_counted(cluster_store: InMemoryClusterStore) -> None:
    repos = _repositories(cluster_store, user_embedding_service=FakeEmbeddingService(failing={"u1"}))
    coordinator = BatchCoordinator(_config(), repos)

    summaries = await coordinator.update_embeddings()

    user_summary = next(s for s in summaries if s.entity_type is EntityType.user)
    assert user_summary.succeeded == 1
    assert user_summary.failed == 1


@pytest.mark.asyncio
async def test_one_population_failing_does_not_skip_the_other(
    cluster_store: InMemoryClusterStore,
) -> None:
    repos = _repositories(
        cluster_store,
        user_embeddings=FakeEmbeddingSource([], fail_at_offset=0),
    )
    coordinator = BatchCoordinator(_config(), repos)

    results = await coordinator.recalculate_clusters()

    assert set(results) == {EntityType.post}
    assert cluster_store.latest(EntityType.post) is not None


@pytest.mark.asyncio
async def test_sink_failure_does_not_fail_the_pass() -> None:
    coordinator = BatchCoordinator(_config(), _repositories(FailingSink()))

    results = await coordinator.recalculate_clusters()

    assert len(results[EntityType.post].clusters) == 1


@pytest.mark.asyncio
async def test_missing_collaborators_skip_passes() -> None:
    coordinator = BatchCoordinator(_config(), BatchRepositories())

    report = await coordinator.force_update()

    assert report.refreshes == []
    assert report.clustering == {}


@pytest.mark.asyncio
async def test_status_reports_latest_runs(cluster_store: InMemoryClusterStore) -> None:
    coordinator = BatchCoordinator(_config(), _repositories(cluster_store))
    await coordinator.force_update()

    status = coordinator.status()

    assert status.running is False
    assert {s.entity_type for s in status.last_refresh} == {EntityType.user, EntityType.post}
    post_summary = next(s for s in status.last_clustering if s.entity_type is EntityType.post)
    assert post_summary.cluster_count == 1
    assert post_summary.total_items == 3


# ------------------------------------------------------------------ #
# Timers
# ------------------------------------------------------------------ #

@pytest.mark.asyncio
async def test_start_twice_is_a_noop(
    cluster_store: InMemoryClusterStore, caplog: pytest.LogCaptureFixture
) -> None:
    repos = _repositories(cluster_store)
    coordinator = BatchCoordinator(_config(), repos)

    coordinator.start()
    timers = list(coordinator._timers)
    with caplog.at_level(logging.WARNING, logger="swipe_engine.services.batch_coordinator"):
        coordinator.start()
    try:
        assert coordinator.is_running is True
        assert coordinator._timers == timers
        assert len(timers) == 2
        assert "already running" in caplog.text

        await coordinator.drain(timeout=5)

        # One immediate pass each, not two.
        assert len(repos.post_embeddings.calls) == 1
        assert len(repos.user_ids.calls) == 1
        assert cluster_store.get_assignment("post", "p_1") == "dbscan-1"
    finally:
        coordinator.stop()


@pytest.mark.asyncio
async def test_stop_is_idempotent() -> None:
    coordinator = BatchCoordinator(_config(), BatchRepositories())
    coordinator.start()

    coordinator.stop()
    coordinator.stop()

    assert coordinator.is_running is False
    assert coordinator._timers == []
    await coordinator.drain(timeout=1)


@pytest.mark.asyncio
async def test_failed_tick_does_not_stop_the_timer(cluster_store: InMemoryClusterStore) -> None:
    source = FlakySource(make_rows([[1, 2, 3], [4, 5, 6]], prefix="p"))
    repos = BatchRepositories(post_embeddings=source, cluster_sink=cluster_store)
    coordinator = BatchCoordinator(_config(interval=0.01), repos)

    coordinator.start()
    try:
        for _ in range(200):
            if cluster_store.latest(EntityType.post) is not None:
                break
            await asyncio.sleep(0.01)
    finally:
        coordinator.stop()
        await coordinator.drain(timeout=1)

    assert len(source.calls) >= 2
    assert cluster_store.get_assignment("post", "p_0") == "dbscan-1"


@pytest.mark.asyncio
async def test_stop_lets_in_flight_pass_finish(cluster_store: InMemoryClusterStore) -> None:
    source = GatedSource(make_rows([[1, 2, 3], [4, 5, 6]], prefix="p"))
    repos = BatchRepositories(post_embeddings=source, cluster_sink=cluster_store)
    coordinator = BatchCoordinator(_config(), repos)

    coordinator.start()
    await asyncio.wait_for(source.entered.wait(), timeout=1)
    coordinator.stop()
    source.gate.set()
    await coordinator.drain(timeout=5)

    assert cluster_store.get_assignment("post", "p_1") == "dbscan-1"


@pytest.mark.asyncio
async def test_drain_cancels_passes_past_the_timeout(cluster_store: InMemoryClusterStore) -> None:
    source = GatedSource(make_rows([[1, 2, 3]], prefix="p"))
    repos = BatchRepositories(post_embeddings=source, cluster_sink=cluster_store)
    coordinator = BatchCoordinator(_config(), repos)

    coordinator.start()
    await asyncio.wait_for(source.entered.wait(), timeout=1)
    coordinator.stop()
    await coordinator.drain(timeout=0.05)

    assert cluster_store.latest(EntityType.post) is None
    assert coordinator.status().last_clustering == []


@pytest.mark.asyncio
async def test_pass_raising_outside_its_own_guards_keeps_the_timer() -> None:
    coordinator = BatchCoordinator(_config(interval=0.01), BatchRepositories())
    calls = 0

    async def broken_pass() -> dict:
        nonlocal calls
        calls += 1
        raise RuntimeError("sink wiring exploded")

    coordinator.recalculate_clusters = broken_pass
    coordinator.start()
    try:
        for _ in range(200):
            if calls >= 3:
                break
            await asyncio.sleep(0.01)
        assert calls >= 3
        assert not any(timer.done() for timer in coordinator._timers)
    finally:
        coordinator.stop()
        await coordinator.drain(timeout=1)


@pytest.mark.asyncio
async def test_drain_without_stop_leaves_timers_running(
    cluster_store: InMemoryClusterStore,
) -> None:
    source = GatedSource(make_rows([[1, 2, 3], [4, 5, 6]], prefix="p"))
    repos = BatchRepositories(post_embeddings=source, cluster_sink=cluster_store)
    coordinator = BatchCoordinator(_config(interval=0.01), repos)

    coordinator.start()
    try:
        await asyncio.wait_for(source.entered.wait(), timeout=1)
        await coordinator.drain(timeout=0.05)
        source.gate.set()

        for _ in range(200):
            if cluster_store.latest(EntityType.post) is not None:
                break
            await asyncio.sleep(0.01)

        assert coordinator.is_running is True
        assert not any(timer.done() for timer in coordinator._timers)
        assert cluster_store.get_assignment("post", "p_0") == "dbscan-1"
    finally:
        coordinator.stop()
        await coordinator.drain(timeout=1)


# ------------------------------------------------------------------ #
# Construction
# ------------------------------------------------------------------ #

def test_collaborator_without_required_method_fails_fast() -> None:
    with pytest.raises(MissingCollaboratorError) as exc_info:
        BatchRepositories(user_ids=object())
    assert "find_all_ids" in exc_info.value.message


def test_lookup_requires_a_queryable_sink() -> None:
    class WriteOnlySink:
        async def save_clustering_result(self, record) -> None:
            return None

    coordinator = BatchCoordinator(_config(), BatchRepositories(cluster_sink=WriteOnlySink()))
    with pytest.raises(MissingCollaboratorError):
        coordinator.get_assignment("user", "u0")


def test_config_rejects_non_positive_values() -> None:
    with pytest.raises(ValidationError):
        BatchProcessorConfig(clustering_interval=timedelta(0))
    with pytest.raises(ValidationError):
        BatchProcessorConfig(batch_size=0)


def test_default_config() -> None:
    config = BatchProcessorConfig()
    assert config.embedding_update_interval == timedelta(hours=12)
    assert config.clustering_interval == timedelta(hours=24)
    assert config.batch_size == 100
    assert config.max_items_per_run == 5000
