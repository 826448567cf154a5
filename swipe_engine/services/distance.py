"""
Distance kernel shared by the clustering algorithm.

Cosine distance is 1 - cosine_similarity, in [0, 2]. A zero-magnitude
vector has no direction, so its distance to any other vector is the
"unrelated" value 1.0; two zero vectors are identical and sit at 0.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np
from sklearn.metrics.pairwise import euclidean_distances  # type: ignore

from swipe_engine.core.errors import DimensionMismatchError
from swipe_engine.schemas.cluster import DistanceKind

VectorLike = Sequence[float] | np.ndarray


def _as_pair(a: VectorLike, b: VectorLike) -> tuple[np.ndarray, np.ndarray]:
    va = np.asarray(a, dtype=np.float64).ravel()
    vb = np.asarray(b, dtype=np.float64).ravel()
    if va.shape != vb.shape:
        raise DimensionMismatchError(va.size, vb.size)
    return va, vb


def euclidean_distance(a: VectorLike, b: VectorLike) -> float:
    va, vb = _as_pair(a, b)
    return float(np.linalg.norm(va - vb))


def cosine_distance(a: VectorLike, b: VectorLike) -> float:
    va, vb = _as_pair(a, b)
    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0 or norm_b == 0:
        return 0.0 if norm_a == norm_b else 1.0
    similarity = float(np.dot(va, vb) / (norm_a * norm_b))
    return float(np.clip(1.0 - similarity, 0.0, 2.0))


def distance(
    a: VectorLike,
    b: VectorLike,
    kind: DistanceKind | str = DistanceKind.cosine,
) -> float:
    kind = DistanceKind(kind)
    if kind is DistanceKind.euclidean:
        return euclidean_distance(a, b)
    return cosine_distance(a, b)


def pairwise_distances(
    vectors: np.ndarray,
    kind: DistanceKind | str = DistanceKind.cosine,
) -> np.ndarray:
    """
    Symmetric (n, n) distance matrix with a zero diagonal.
    Agrees element-wise with `distance()`.
    """
    kind = DistanceKind(kind)
    matrix = np.asarray(vectors, dtype=np.float64)
    if matrix.ndim != 2:
        raise ValueError(f"Expected a 2-D array of vectors, got {matrix.ndim}-D.")
    n = matrix.shape[0]
    if n == 0:
        return np.zeros((0, 0), dtype=np.float64)

    if kind is DistanceKind.euclidean:
        distances = euclidean_distances(matrix)
    else:
        norms = np.linalg.norm(matrix, axis=1)
        zero = norms == 0
        safe = np.where(zero, 1.0, norms)
        unit = matrix / safe[:, None]
        distances = np.clip(1.0 - unit @ unit.T, 0.0, 2.0)
        # Zero vectors: 1.0 against anything with a direction, 0.0 among themselves.
        distances[zero, :] = 1.0
        distances[:, zero] = 1.0
        distances[np.ix_(zero, zero)] = 0.0

    np.fill_diagonal(distances, 0.0)
    return distances


def distances_to(
    vectors: np.ndarray,
    point: VectorLike,
    kind: DistanceKind | str = DistanceKind.cosine,
) -> np.ndarray:
    """Distance from each row of `vectors` to `point`, same rules as `distance()`."""
    kind = DistanceKind(kind)
    matrix = np.asarray(vectors, dtype=np.float64)
    target = np.asarray(point, dtype=np.float64).ravel()
    if matrix.ndim != 2 or matrix.shape[1] != target.size:
        raise DimensionMismatchError(matrix.shape[-1], target.size)

    if kind is DistanceKind.euclidean:
        return np.linalg.norm(matrix - target, axis=1)

    norms = np.linalg.norm(matrix, axis=1)
    target_norm = np.linalg.norm(target)
    zero = norms == 0
    if target_norm == 0:
        return np.where(zero, 0.0, 1.0)
    safe = np.where(zero, 1.0, norms)
    similarity = (matrix @ target) / (safe * target_norm)
    return np.where(zero, 1.0, np.clip(1.0 - similarity, 0.0, 2.0))
