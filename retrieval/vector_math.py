"""Similarity and normalization primitives over embedding vectors."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from enum import Enum

import numpy as np

from core.errors import ContractViolation, DimensionMismatch

logger = logging.getLogger(__name__)


class NormalizationStrategy(str, Enum):
    L2 = "l2"
    DIMENSION = "dimension"
    MIN_MAX = "min_max"


def _as_vector(values: Sequence[float]) -> np.ndarray:
    vec = np.asarray(values, dtype=np.float64)
    if vec.ndim != 1:
        raise ContractViolation(f"Embedding must be one-dimensional, got shape {vec.shape}")
    if not np.all(np.isfinite(vec)):
        raise ContractViolation("Embedding contains NaN or infinite components")
    return vec


def _rescaled(vec: np.ndarray) -> np.ndarray:
    """Divide by the largest component magnitude so norms neither overflow nor underflow."""
    peak = np.max(np.abs(vec)) if vec.size else 0.0
    if peak == 0:
        return vec
    return vec / peak


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity between two embeddings of the same dimension.

    Args:
        a: First embedding
        b: Second embedding

    Returns:
        Similarity in [-1, 1]; 0.0 when either vector has zero magnitude

    Raises:
        DimensionMismatch: If the embeddings differ in length
    """
    vec_a = _as_vector(a)
    vec_b = _as_vector(b)
    if vec_a.shape != vec_b.shape:
        raise DimensionMismatch(len(vec_a), len(vec_b))

    vec_a = _rescaled(vec_a)
    vec_b = _rescaled(vec_b)
    norm_a = np.linalg.norm(vec_a)
    norm_b = np.linalg.norm(vec_b)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    similarity = float(np.dot(vec_a, vec_b) / (norm_a * norm_b))
    return float(np.clip(similarity, -1.0, 1.0))


def rank_by_similarity(
    query: Sequence[float], candidates: Sequence[Sequence[float]]
) -> list[tuple[int, float]]:
    """Score every candidate against the query and sort by descending similarity.

    Ties keep the original candidate order, so rankings are reproducible.

    Args:
        query: Query embedding
        candidates: Candidate embeddings, all with the query's dimension

    Returns:
        List of (candidate index, similarity) pairs
    """
    if len(candidates) == 0:
        return []

    query_vec = _rescaled(_as_vector(query))
    for vector in candidates:
        if len(vector) != len(query_vec):
            raise DimensionMismatch(len(query_vec), len(vector))

    matrix = np.vstack([_rescaled(_as_vector(vector)) for vector in candidates])
    query_norm = np.linalg.norm(query_vec)
    norms = np.linalg.norm(matrix, axis=1)

    if query_norm == 0:
        scores = np.zeros(len(candidates))
    else:
        dots = matrix @ query_vec
        denom = norms * query_norm
        scores = np.divide(dots, denom, out=np.zeros_like(dots), where=denom != 0)
        scores = np.clip(scores, -1.0, 1.0)

    order = np.argsort(-scores, kind="stable")
    return [(int(i), float(scores[i])) for i in order]


def normalize_l2(embedding: Sequence[float]) -> list[float]:
    """Scale to unit length; the zero vector is returned unchanged."""
    vec = _rescaled(_as_vector(embedding))
    magnitude = np.linalg.norm(vec)
    if magnitude == 0:
        return vec.tolist()
    return (vec / magnitude).tolist()


def normalize_dimension_scale(embedding: Sequence[float]) -> list[float]:
    """Divide every component by the vector's dimension.

    A fixed linear rescaling used with 768-dimension nomic-embed-text
    vectors; it does not make the vector sum to one.
    """
    vec = _as_vector(embedding)
    if vec.size == 0:
        return []
    return (vec / vec.size).tolist()


def normalize_min_max(embedding: Sequence[float]) -> list[float]:
    """Rescale components to [0, 1]; an all-equal vector becomes all zeros."""
    vec = _rescaled(_as_vector(embedding))
    if vec.size == 0:
        return []
    low, high = vec.min(), vec.max()
    if high == low:
        return np.zeros_like(vec).tolist()
    return ((vec - low) / (high - low)).tolist()


_NORMALIZERS = {
    NormalizationStrategy.L2: normalize_l2,
    NormalizationStrategy.DIMENSION: normalize_dimension_scale,
    NormalizationStrategy.MIN_MAX: normalize_min_max,
}


def normalize(
    embedding: Sequence[float], strategy: NormalizationStrategy | str
) -> list[float]:
    """Normalize an embedding with an explicitly chosen strategy.

    Args:
        embedding: Vector to normalize
        strategy: "l2", "dimension" or "min_max"

    Returns:
        New normalized vector
    """
    try:
        strategy = NormalizationStrategy(strategy)
    except ValueError:
        raise ContractViolation(f"Unknown normalization strategy: {strategy!r}") from None

    logger.debug("Normalizing %d-dim embedding with %s", len(embedding), strategy.value)
    return _NORMALIZERS[strategy](embedding)
