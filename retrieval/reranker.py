"""Second-pass reranking that can only narrow the filtered evidence set."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence

from core.config import settings
from core.models import RelevanceJudgment, RerankDecision, RetrievedChunk

logger = logging.getLogger(__name__)


def _decide(
    chunk: RetrievedChunk, judgment: RelevanceJudgment | None, min_score: float
) -> RerankDecision:
    if judgment is None:
        return RerankDecision(
            chunk_id=chunk.chunk_id,
            rerank_score=max(chunk.similarity, 0.0),
            reason="No rerank judgment; keeping the similarity-based decision",
            should_use=True,
            similarity=chunk.similarity,
        )

    if judgment.should_use is not None:
        should_use = judgment.should_use
    else:
        should_use = judgment.score >= min_score

    reason = judgment.reason.strip()
    if not reason:
        comparison = ">=" if judgment.score >= min_score else "<"
        reason = f"rerank score {judgment.score:.2f} {comparison} {min_score:.2f}"

    return RerankDecision(
        chunk_id=chunk.chunk_id,
        rerank_score=judgment.score,
        reason=reason,
        should_use=should_use,
        similarity=chunk.similarity,
    )


def rerank(
    kept: Sequence[RetrievedChunk],
    judgments: Mapping[str, RelevanceJudgment],
    min_score: float | None = None,
) -> list[RerankDecision]:
    """Turn external relevance judgments into one decision per kept chunk.

    Judgments for chunks outside ``kept`` are ignored: a chunk the filter
    dropped can never come back through reranking.

    Args:
        kept: Chunks that survived filtering (or the unfiltered ranking)
        judgments: Relevance judgments keyed by chunk id
        min_score: Score a chunk needs when the judgment has no explicit
            should_use (default: settings.rerank_min_score)

    Returns:
        Decisions in the same order as ``kept``
    """
    if min_score is None:
        min_score = settings.rerank_min_score

    kept_ids = {chunk.chunk_id for chunk in kept}
    ignored = [chunk_id for chunk_id in judgments if chunk_id not in kept_ids]
    if ignored:
        logger.debug("Ignoring judgments for chunks not in the evidence set: %s", ignored)

    decisions = [_decide(chunk, judgments.get(chunk.chunk_id), min_score) for chunk in kept]

    used = sum(1 for d in decisions if d.should_use)
    logger.info("Rerank decisions: %d/%d chunks kept", used, len(decisions))
    return decisions


def select_reranked(
    kept: Sequence[RetrievedChunk], decisions: Sequence[RerankDecision]
) -> list[RetrievedChunk]:
    """Return the kept chunks the reranker approved, best rerank score first."""
    by_id = {d.chunk_id: d for d in decisions}
    approved = [
        chunk
        for chunk in kept
        if chunk.chunk_id in by_id and by_id[chunk.chunk_id].should_use
    ]
    approved.sort(key=lambda c: by_id[c.chunk_id].rerank_score, reverse=True)
    return approved
