"""Cosine similarity helpers."""

from typing import List, Optional, Sequence, Tuple

import numpy as np

from .exceptions import ValidationError

# Collinear vectors can differ by a few ulps after normalisation
SCORE_TOLERANCE = 1e-12


def as_vector(values: Sequence[float], name: str = "vector") -> np.ndarray:
    """Convert to a flat float array, rejecting empty or non-finite input."""
    try:
        vector = np.asarray(values, dtype=float)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be a sequence of numbers") from None

    if vector.ndim != 1 or vector.size == 0:
        raise ValidationError(f"{name} must be a non-empty flat sequence of numbers")
    if not np.all(np.isfinite(vector)):
        raise ValidationError(f"{name} contains NaN or infinite values")
    return vector


def _magnitude(vector: np.ndarray, name: str) -> float:
    norm = float(np.linalg.norm(vector))
    if norm == 0.0:
        raise ValidationError(f"{name} has zero magnitude; cosine similarity is undefined")
    return norm


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """dot(a, b) / (|a| * |b|), clipped to [-1, 1]."""
    va = as_vector(a, "first vector")
    vb = as_vector(b, "second vector")
    if va.shape != vb.shape:
        raise ValidationError(f"Vector dimensions differ: {va.size} != {vb.size}")

    score = float(np.dot(va, vb)) / (_magnitude(va, "first vector") * _magnitude(vb, "second vector"))
    return max(-1.0, min(1.0, score))


def normalize_rows(vectors: Sequence[Sequence[float]]) -> np.ndarray:
    """Stack vectors into a matrix of unit rows. Rows must be non-zero."""
    matrix = np.asarray(vectors, dtype=float)
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    if np.any(norms == 0.0):
        raise ValidationError("Cannot normalize a zero-magnitude vector")
    return matrix / norms


def rank_by_cosine(
    matrix: Optional[np.ndarray],
    ids: Sequence[str],
    query: Sequence[float],
    k: int,
) -> List[Tuple[int, float]]:
    """
    Rank the unit rows of ``matrix`` against ``query``.

    Returns (row, score) pairs, best first. Scores within ``SCORE_TOLERANCE``
    of each other are a tie: they share one score and are ordered by id.
    """
    q = as_vector(query, "query vector")
    q = q / _magnitude(q, "query vector")

    if matrix is None or len(ids) == 0:
        return []
    if matrix.shape[1] != q.size:
        raise ValidationError(
            f"Query vector has dimension {q.size}, policies have {matrix.shape[1]}"
        )

    scores = np.clip(matrix @ q, -1.0, 1.0)
    by_score = sorted(range(len(ids)), key=lambda row: -scores[row])

    # Scores within SCORE_TOLERANCE of a group's best are one tie, ordered by id
    ranked: List[Tuple[int, float]] = []
    group: List[int] = []
    for row in by_score:
        if group and scores[group[0]] - scores[row] > SCORE_TOLERANCE:
            ranked.extend(_tie_group(group, ids, scores))
            group = []
        group.append(row)
    ranked.extend(_tie_group(group, ids, scores))
    return ranked[:k]


def _tie_group(rows: List[int], ids: Sequence[str], scores: np.ndarray) -> List[Tuple[int, float]]:
    score = float(scores[rows[0]]) if rows else 0.0
    return [(row, score) for row in sorted(rows, key=lambda row: ids[row])]
