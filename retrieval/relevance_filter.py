"""Threshold and top-K filtering of ranked chunks."""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence

import numpy as np

from core.config import settings
from core.errors import ContractViolation
from core.models import (
    DropReason,
    DroppedChunk,
    FilterResult,
    FilterStats,
    RetrievedChunk,
)

logger = logging.getLogger(__name__)


def _average_similarity(chunks: Sequence[RetrievedChunk]) -> float:
    if not chunks:
        return 0.0
    return float(np.mean([c.similarity for c in chunks]))


def _validate(top_k: int | None, min_similarity: float) -> None:
    if top_k is not None:
        if isinstance(top_k, bool) or not isinstance(top_k, int):
            raise ContractViolation(f"top_k must be an integer, got {top_k!r}")
        if top_k < 1:
            raise ContractViolation(f"top_k must be at least 1, got {top_k}")
    if not isinstance(min_similarity, (int, float)) or not math.isfinite(min_similarity):
        raise ContractViolation(f"min_similarity must be a finite number, got {min_similarity!r}")
    if not -1.0 <= min_similarity <= 1.0:
        raise ContractViolation(f"min_similarity must be within [-1, 1], got {min_similarity}")


def filter_chunks(
    ranked: Sequence[RetrievedChunk],
    top_k: int | None = None,
    min_similarity: float | None = None,
) -> FilterResult:
    """Keep the best chunks that clear the similarity threshold.

    Chunks are visited best first (ties keep their ranking order). A chunk
    below ``min_similarity`` is dropped as belowThreshold even when the
    top-K cap is also exhausted; a passing chunk past the cap is dropped
    as exceedsTopK.

    Args:
        ranked: Retrieved chunks, normally straight from retrieve_and_rank
        top_k: Maximum chunks to keep; None disables the cap
        min_similarity: Inclusive similarity threshold (default: settings.min_similarity)

    Returns:
        Kept chunks and the statistics of what was dropped and why
    """
    if min_similarity is None:
        min_similarity = settings.min_similarity
    _validate(top_k, min_similarity)

    ordered = sorted(ranked, key=lambda c: c.similarity, reverse=True)
    kept: list[RetrievedChunk] = []
    dropped: list[DroppedChunk] = []

    for chunk in ordered:
        if chunk.similarity < min_similarity:
            dropped.append(
                DroppedChunk(
                    chunk_id=chunk.chunk_id,
                    document_path=chunk.document_path,
                    similarity=chunk.similarity,
                    reason=DropReason.BELOW_THRESHOLD,
                    detail=f"similarity {chunk.similarity:.3f} < threshold {min_similarity:.3f}",
                )
            )
        elif top_k is not None and len(kept) >= top_k:
            dropped.append(
                DroppedChunk(
                    chunk_id=chunk.chunk_id,
                    document_path=chunk.document_path,
                    similarity=chunk.similarity,
                    reason=DropReason.EXCEEDS_TOP_K,
                    detail=f"top_k limit: only top {top_k} chunks kept",
                )
            )
        else:
            kept.append(chunk)

    stats = FilterStats(
        retrieved=len(ranked),
        kept=len(kept),
        dropped=dropped,
        avg_similarity_before=_average_similarity(ranked),
        avg_similarity_after=_average_similarity(kept),
    )

    logger.info(
        "Filtered %d chunks (threshold=%.2f, top_k=%s): kept %d, dropped %d",
        stats.retrieved,
        min_similarity,
        top_k,
        stats.kept,
        len(dropped),
    )
    return FilterResult(kept=kept, stats=stats)


filter_evidence = filter_chunks
