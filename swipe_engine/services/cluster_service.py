"""
DBSCAN clustering on user / post embedding vectors.

The distance matrix is computed once by the distance kernel and handed to
sklearn DBSCAN with metric='precomputed', so the zero-vector rule of the
kernel applies to clustering too. A point is a core point when its
epsilon-neighbourhood (itself included, boundary inclusive) holds at least
`min_points` points. Noise (label -1) gets no assignment.

sklearn numbers clusters in first-core-point order; label k becomes
`dbscan-{k+1}`, so identical input in identical order always yields
identical output.

Distance metric defaults to cosine (1 - cosine_similarity), so an epsilon
of 0.25 means vectors whose cosine similarity >= 0.75 are neighbours.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Sequence

import numpy as np
from sklearn.cluster import DBSCAN  # type: ignore
from sklearn.metrics import silhouette_score  # type: ignore

from swipe_engine.core.errors import ClusteringError, DimensionMismatchError
from swipe_engine.schemas.cluster import Cluster, DBSCANParams, Entity, utcnow
from swipe_engine.services.distance import distances_to, pairwise_distances

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClusteringOutput:
    clusters: list[Cluster] = field(default_factory=list)
    assignments: dict[str, str] = field(default_factory=dict)
    noise_count: int = 0
    silhouette: float | None = None


class DBSCANClustering:
    def __init__(self, params: DBSCANParams | None = None) -> None:
        self.params = params or DBSCANParams()

    def process(
        self,
        vectors: Sequence[Sequence[float]],
        entities: Sequence[Entity],
    ) -> ClusteringOutput:
        if len(vectors) != len(entities):
            raise ClusteringError(
                f"`vectors` length ({len(vectors)}) must equal "
                f"`entities` length ({len(entities)})."
            )
        if len(vectors) == 0:
            return ClusteringOutput()

        t0 = time.perf_counter()
        matrix = self._as_matrix(vectors)
        distances = pairwise_distances(matrix, self.params.distance)

        try:
            labels = DBSCAN(
                eps=self.params.epsilon,
                min_samples=self.params.min_points,
                metric="precomputed",
            ).fit(distances).labels_
        except ValueError as exc:
            raise ClusteringError(f"DBSCAN failed: {exc}") from exc

        output = self._build_output(matrix, entities, labels, distances)

        logger.debug(
            "DBSCAN: %d points -> %d clusters, %d noise in %.1f ms",
            len(vectors),
            len(output.clusters),
            output.noise_count,
            (time.perf_counter() - t0) * 1000,
        )
        return output

    def _as_matrix(self, vectors: Sequence[Sequence[float]]) -> np.ndarray:
        expected_dim = len(vectors[0])
        for vec in vectors:
            if len(vec) != expected_dim:
                raise DimensionMismatchError(expected_dim, len(vec))
        return np.asarray(vectors, dtype=np.float64)

    # ------------------------------------------------------------------ #
    # Result assembly
    # ------------------------------------------------------------------ #

    def _build_output(
        self,
        matrix: np.ndarray,
        entities: Sequence[Entity],
        labels: np.ndarray,
        distances: np.ndarray,
    ) -> ClusteringOutput:
        now = utcnow()
        clusters: list[Cluster] = []
        assignments: dict[str, str] = {}

        for label in range(int(labels.max(initial=-1)) + 1):
            members = np.flatnonzero(labels == label)
            member_vectors = matrix[members]
            centroid = member_vectors.mean(axis=0)
            cluster = Cluster(
                id=f"dbscan-{label + 1}",
                centroid=centroid.tolist(),
                size=int(members.size),
                density=self._density(member_vectors, centroid),
                created_at=now,
                updated_at=now,
            )
            clusters.append(cluster)
            for idx in members:
                assignments[str(entities[idx].id)] = cluster.id

        return ClusteringOutput(
            clusters=clusters,
            assignments=assignments,
            noise_count=int(np.count_nonzero(labels == -1)),
            silhouette=self._silhouette(labels, distances),
        )

    def _density(self, member_vectors: np.ndarray, centroid: np.ndarray) -> float:
        """Member count over spread: more members or a tighter cluster is denser."""
        spread = distances_to(member_vectors, centroid, self.params.distance)
        return float(member_vectors.shape[0] / (1.0 + spread.mean()))

    def _silhouette(self, labels: np.ndarray, distances: np.ndarray) -> float | None:
        clustered = np.flatnonzero(labels >= 0)
        n_labels = np.unique(labels[clustered]).size
        if n_labels < 2 or clustered.size <= n_labels:
            return None
        score = silhouette_score(
            distances[np.ix_(clustered, clustered)],
            labels[clustered],
            metric="precomputed",
        )
        return float(score)
