"""
Shared pytest fixtures.

Strategy: collaborators are never real databases or embedding models.
List-backed fakes honour the pagination contract (stable order, short
page at the end) and record every call so tests can assert on paging.
"""

from __future__ import annotations

from typing import Any
from unittest.mock import patch

import numpy as np
import pytest
from fastapi.testclient import TestClient

from swipe_engine.core.config import get_settings
from swipe_engine.repositories.memory import InMemoryClusterStore


# ------------------------------------------------------------------ #
# Fake collaborators
# ------------------------------------------------------------------ #

class FakeEmbeddingSource:
    def __init__(self, rows: list[dict[str, Any]], fail_at_offset: int | None = None) -> None:
        self.rows = rows
        self.fail_at_offset = fail_at_offset
        self.calls: list[tuple[int, int]] = []

    async def find_all_embeddings(self, limit: int, offset: int) -> list[dict[str, Any]]:
        self.calls.append((limit, offset))
        if self.fail_at_offset is not None and offset >= self.fail_at_offset:
            raise ConnectionError("Database connection failed")
        return self.rows[offset:offset + limit]


class FakeIdSource:
    def __init__(self, ids: list[str]) -> None:
        self.ids = ids
        self.calls: list[tuple[int, int]] = []

    async def find_all_ids(self, limit: int, offset: int) -> list[str]:
        self.calls.append((limit, offset))
        return self.ids[offset:offset + limit]


class FakeEmbeddingService:
    """Compute service whose refresh fails for the ids in `failing`."""

    def __init__(self, failing: set[str] | None = None) -> None:
        self.failing = failing or set()
        self.refreshed: list[str] = []

    async def _refresh(self, entity_id: str) -> list[float]:
        if entity_id in self.failing:
            raise RuntimeError(f"embedding model unavailable for {entity_id}")
        self.refreshed.append(entity_id)
        return [0.0, 1.0]

    async def get_user_embedding(self, user_id: str) -> list[float]:
        return await self._refresh(user_id)

    async def get_post_embedding(self, post_id: str) -> list[float]:
        return await self._refresh(post_id)


class FailingSink:
    def __init__(self) -> None:
        self.attempts = 0

    async def save_clustering_result(self, record: Any) -> None:
        self.attempts += 1
        raise TimeoutError("cluster table locked")


# ------------------------------------------------------------------ #
# Shared test helpers
# ------------------------------------------------------------------ #

def make_rows(vectors: list[list[float] | None], prefix: str = "post") -> list[dict[str, Any]]:
    return [
        {"entity_id": f"{prefix}_{i}", "vector": vec, "metadata": {"rank": i}}
        for i, vec in enumerate(vectors)
    ]


def blob_vectors(
    centers: list[list[float]], per_blob: int, spread: float = 0.01, seed: int = 7
) -> list[list[float]]:
    """`per_blob` points tightly scattered around each centre, blob by blob."""
    rng = np.random.default_rng(seed)
    out: list[list[float]] = []
    for center in centers:
        c = np.asarray(center, dtype=np.float64)
        out.extend((c + rng.normal(0.0, spread, size=c.shape)).tolist() for _ in range(per_blob))
    return out


@pytest.fixture
def cluster_store() -> InMemoryClusterStore:
    return InMemoryClusterStore()


# ------------------------------------------------------------------ #
# Test client fixture
# ------------------------------------------------------------------ #

@pytest.fixture
def client() -> TestClient:
    """
    Return a FastAPI TestClient with:
      - JSON logs off
      - long timers, so only the immediate startup passes run
    """
    env = {
        "LOG_JSON": "false",
        "EMBEDDING_UPDATE_INTERVAL_SECONDS": "3600",
        "CLUSTERING_INTERVAL_SECONDS": "3600",
        "SHUTDOWN_GRACE_SECONDS": "5",
    }
    with patch.dict("os.environ", env):
        get_settings.cache_clear()
        from swipe_engine.main import create_app

        test_app = create_app()
        with TestClient(test_app, raise_server_exceptions=False) as c:
            yield c
    get_settings.cache_clear()
