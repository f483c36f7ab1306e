"""Vector similarity for semantic routing.

Two flavours of cosine similarity are used, and they must not be mixed:

- `cosine_similarity` is the routing variant. Pheromones in a run share one
  dimensionality, so a length mismatch raises `DimensionMismatchError`.
- `similarity_score` is the search variant. Empty or unequal vectors simply
  score 0, which is what ranking helpers want.
"""

from typing import Sequence, TypeVar, Union

import numpy as np

from biosphere.errors import DimensionMismatchError

T = TypeVar("T")

Vector = Union[np.ndarray, Sequence[float]]


def as_vector(values: Vector) -> np.ndarray:
    """Coerce a sequence of floats into a 1-D float64 array."""
    return np.asarray(values, dtype=np.float64).reshape(-1)


def cosine_similarity(a: Vector, b: Vector) -> float:
    """Strict cosine similarity between two pheromone vectors.

    Args:
        a: First vector
        b: Second vector

    Returns:
        Similarity in [-1, 1]; 0.0 when either vector has zero magnitude

    Raises:
        DimensionMismatchError: If the vectors differ in length
    """
    va = as_vector(a)
    vb = as_vector(b)
    if va.shape[0] != vb.shape[0]:
        raise DimensionMismatchError(va.shape[0], vb.shape[0])

    magnitude = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if magnitude == 0:
        return 0.0
    return float(np.clip(np.dot(va, vb) / magnitude, -1.0, 1.0))


def similarity_score(a: Vector, b: Vector) -> float:
    """Lenient cosine similarity: empty or unequal vectors score 0."""
    va = as_vector(a)
    vb = as_vector(b)
    if va.size == 0 or vb.size == 0 or va.shape[0] != vb.shape[0]:
        return 0.0

    magnitude = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if magnitude == 0:
        return 0.0
    return float(np.clip(np.dot(va, vb) / magnitude, -1.0, 1.0))


def find_most_similar(
    query: Vector,
    candidates: list[tuple[Vector, T]],
) -> tuple[float, T] | None:
    """Find the candidate whose vector is closest to the query.

    Args:
        query: Query vector
        candidates: (vector, payload) pairs

    Returns:
        (similarity, payload) for the best match, or None if no candidates
    """
    best: tuple[float, T] | None = None
    for vector, payload in candidates:
        score = similarity_score(query, vector)
        if best is None or score > best[0]:
            best = (score, payload)
    return best


def filter_by_similarity(
    query: Vector,
    candidates: list[tuple[Vector, T]],
    threshold: float,
) -> list[tuple[float, T]]:
    """Keep candidates with similarity >= threshold, sorted descending."""
    scored = [(similarity_score(query, vector), payload) for vector, payload in candidates]
    kept = [item for item in scored if item[0] >= threshold]
    return sorted(kept, key=lambda item: item[0], reverse=True)
