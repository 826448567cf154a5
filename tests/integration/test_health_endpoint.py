"""Integration tests for GET /health."""

from __future__ import annotations

from unittest.mock import patch

from fastapi.testclient import TestClient

from swipe_engine.core.config import get_settings
from swipe_engine.core.registry import get_coordinator
from swipe_engine.main import create_app
from swipe_engine.repositories.base import BatchRepositories
from tests.conftest import FakeEmbeddingSource, make_rows


class TestHealth:
    def test_health_returns_200(self, client: TestClient) -> None:
        response = client.get("/health")
        assert response.status_code == 200

    def test_health_schema(self, client: TestClient) -> None:
        body = client.get("/health").json()
        assert body["status"] == "ok"
        assert "version" in body
        assert "uptime_seconds" in body
        assert body["coordinator"]["running"] is True
        assert isinstance(body["coordinator"]["last_clustering"], list)

    def test_versioned_health_alias(self, client: TestClient) -> None:
        response = client.get("/v1/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"


class TestLifespan:
    def test_startup_pass_uses_injected_repositories(self) -> None:
        source = FakeEmbeddingSource(make_rows([[1, 2, 3], [4, 5, 6], [1, 2, 3.1]]))
        env = {"LOG_JSON": "false", "SHUTDOWN_GRACE_SECONDS": "5"}
        with patch.dict("os.environ", env):
            get_settings.cache_clear()
            app = create_app(BatchRepositories(post_embeddings=source))
            with TestClient(app):
                pass
            # Shutdown drains the immediate pass before returning.
            assert source.calls == [(100, 0)]
            assert get_coordinator().get_assignment("post", "post_0") == "dbscan-1"
        get_settings.cache_clear()

    def test_scheduler_disabled_reports_degraded(self) -> None:
        env = {"LOG_JSON": "false", "SCHEDULER_ENABLED": "false"}
        with patch.dict("os.environ", env):
            get_settings.cache_clear()
            with TestClient(create_app()) as c:
                body = c.get("/health").json()
        get_settings.cache_clear()

        assert body["status"] == "degraded"
        assert body["coordinator"]["running"] is False
