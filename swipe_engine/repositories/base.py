"""
Interfaces of the external collaborators the engine consumes.

The engine never constructs these itself: the hosting application builds
them and hands them over in a `BatchRepositories` container.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, Mapping, Protocol, Sequence, runtime_checkable

from swipe_engine.core.errors import require_method
from swipe_engine.schemas.cluster import ClusterRecord, EmbeddingRecord, EntityType


@runtime_checkable
class EmbeddingSource(Protocol):
    """Stable-ordered, offset-paginated access to stored embeddings."""

    async def find_all_embeddings(
        self, limit: int, offset: int
    ) -> Sequence[EmbeddingRecord | Mapping[str, Any]]:
        ...


@runtime_checkable
class IdSource(Protocol):
    async def find_all_ids(self, limit: int, offset: int) -> Sequence[str]:
        ...


@runtime_checkable
class UserEmbeddingService(Protocol):
    async def get_user_embedding(self, user_id: str) -> Any:
        ...


@runtime_checkable
class PostEmbeddingService(Protocol):
    async def get_post_embedding(self, post_id: str) -> Any:
        ...


@runtime_checkable
class ClusterResultSink(Protocol):
    async def save_clustering_result(self, record: ClusterRecord) -> None:
        ...


@runtime_checkable
class ClusterLookup(Protocol):
    """A sink that can also answer which cluster an entity is in."""

    def get_assignment(self, entity_type: EntityType, entity_id: str) -> str | None:
        ...


# Field name -> method every non-None value must provide.
_REQUIRED_METHODS: dict[str, str] = {
    "user_ids": "find_all_ids",
    "post_ids": "find_all_ids",
    "user_embedding_service": "get_user_embedding",
    "post_embedding_service": "get_post_embedding",
    "user_embeddings": "find_all_embeddings",
    "post_embeddings": "find_all_embeddings",
    "cluster_sink": "save_clustering_result",
}


@dataclass
class BatchRepositories:
    """
    Collaborators handed to the batch coordinator.

    Every field is optional; a pass whose collaborators are missing is
    skipped. Present collaborators are checked once, at construction.
    """

    user_ids: IdSource | None = None
    post_ids: IdSource | None = None
    user_embedding_service: UserEmbeddingService | None = None
    post_embedding_service: PostEmbeddingService | None = None
    user_embeddings: EmbeddingSource | None = None
    post_embeddings: EmbeddingSource | None = None
    cluster_sink: ClusterResultSink | None = None

    def __post_init__(self) -> None:
        for f in fields(self):
            value = getattr(self, f.name)
            if value is not None:
                require_method(value, _REQUIRED_METHODS[f.name], f.name)
