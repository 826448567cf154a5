"""
Central configuration loaded from environment variables.
All settings have sensible defaults so the engine runs out of the box
with no manual configuration; intervals match a daily clustering cycle.
"""

from __future__ import annotations

from datetime import timedelta
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # ------------------------------------------------------------------ #
    # Service identity
    # ------------------------------------------------------------------ #
    app_name: str = "swipe-engine"
    app_version: str = "1.0.0"
    environment: Literal["development", "staging", "production"] = "development"

    # ------------------------------------------------------------------ #
    # Scheduler
    # Set SCHEDULER_ENABLED=false to host the engine without timers
    # (manual force_update() only).
    # ------------------------------------------------------------------ #
    scheduler_enabled: bool = True
    embedding_update_interval_seconds: float = Field(default=12 * 60 * 60, gt=0)
    clustering_interval_seconds: float = Field(default=24 * 60 * 60, gt=0)
    shutdown_grace_seconds: float = Field(default=30.0, ge=0)

    # ------------------------------------------------------------------ #
    # Batch limits
    # ------------------------------------------------------------------ #
    batch_size: int = Field(default=100, gt=0)
    max_items_per_run: int = Field(default=5000, gt=0)

    # ------------------------------------------------------------------ #
    # Clustering
    # Cosine distance: eps=0.25 groups vectors whose cosine similarity
    # is >= 0.75.
    # ------------------------------------------------------------------ #
    dbscan_eps_default: float = Field(default=0.25, gt=0)
    dbscan_min_points_default: int = Field(default=3, ge=1)
    dbscan_distance_default: Literal["cosine", "euclidean"] = "cosine"

    # ------------------------------------------------------------------ #
    # Logging
    # ------------------------------------------------------------------ #
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_json: bool = True          # structured JSON logs in production

    # ------------------------------------------------------------------ #
    # Derived helpers
    # ------------------------------------------------------------------ #
    @field_validator("dbscan_distance_default", mode="before")
    @classmethod
    def lower_distance(cls, v: str) -> str:
        return v.strip().lower() if isinstance(v, str) else v

    @property
    def embedding_update_interval(self) -> timedelta:
        return timedelta(seconds=self.embedding_update_interval_seconds)

    @property
    def clustering_interval(self) -> timedelta:
        return timedelta(seconds=self.clustering_interval_seconds)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Return a cached Settings singleton.
    The cache is reset between tests via `get_settings.cache_clear()`.
    """
    return Settings()
