"""Vector normalization and cosine similarity for embeddings.

All functions are pure: they accept any float sequence and return plain
Python lists so results serialize straight to JSON.
"""
from typing import List, Sequence

import numpy as np

from embedding_server.errors import DimensionMismatch

Vector = List[float]


def l2_normalize(vector: Sequence[float]) -> Vector:
    """Scale a vector to unit Euclidean length.

    The zero vector (and the empty vector) is returned unchanged.
    """
    array = np.asarray(vector, dtype=np.float64)
    norm = np.linalg.norm(array)
    if norm == 0.0:
        return array.tolist()
    return (array / norm).tolist()


def normalize(vector: Sequence[float]) -> Vector:
    """L2-normalize, then clamp every component into [-1, 1]."""
    return np.clip(l2_normalize(vector), -1.0, 1.0).tolist()


def min_max_normalize(vector: Sequence[float]) -> Vector:
    """Rescale components linearly so the minimum maps to -1 and the maximum to 1.

    A vector whose components are all equal maps to zeros.
    """
    array = np.asarray(vector, dtype=np.float64)
    if array.size == 0:
        return []
    low, high = array.min(), array.max()
    if high == low:
        return np.zeros_like(array).tolist()
    return (2.0 * (array - low) / (high - low) - 1.0).tolist()


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine of the angle between two vectors.

    Returns 0.0 for empty vectors or when either vector has zero norm.

    Raises:
        DimensionMismatch: If the vectors differ in length
    """
    if len(a) != len(b):
        raise DimensionMismatch(
            "Vectors must have the same dimension",
            details=f"{len(a)} != {len(b)}",
        )
    if len(a) == 0:
        return 0.0

    left = np.asarray(a, dtype=np.float64)
    right = np.asarray(b, dtype=np.float64)

    denominator = np.linalg.norm(left) * np.linalg.norm(right)
    if denominator == 0.0:
        return 0.0

    similarity = float(np.dot(left, right) / denominator)
    return min(1.0, max(-1.0, similarity))


def average(vectors: Sequence[Sequence[float]]) -> Vector:
    """Component-wise mean of equally sized vectors, re-normalized.

    A mean of unit vectors is shorter than unit length, so the result goes
    through ``normalize`` again.

    Raises:
        DimensionMismatch: If the vectors differ in length
    """
    if not vectors:
        return []
    if len(vectors) == 1:
        return list(vectors[0])

    dimension = len(vectors[0])
    for vector in vectors[1:]:
        if len(vector) != dimension:
            raise DimensionMismatch(
                "Cannot average vectors of different dimension",
                details=f"{dimension} != {len(vector)}",
            )

    mean = np.mean(np.asarray(vectors, dtype=np.float64), axis=0)
    return normalize(mean)
