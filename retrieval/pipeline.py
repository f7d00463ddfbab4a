"""Evidence pipeline: rank -> filter -> rerank, per filtering strategy."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from enum import Enum

from core.config import settings
from core.errors import ContractViolation
from core.models import PipelineRun, RelevanceJudgment
from retrieval.relevance_filter import filter_chunks
from retrieval.reranker import rerank, select_reranked
from retrieval.retriever import Candidate, retrieve_and_rank

logger = logging.getLogger(__name__)


class FilterStrategy(str, Enum):
    NONE = "none"
    THRESHOLD = "threshold"
    RERANKER = "reranker"
    HYBRID = "hybrid"


def run_pipeline(
    name: str,
    query_embedding: Sequence[float],
    candidates: Sequence[Candidate],
    strategy: FilterStrategy | str | None = None,
    top_k: int | None = None,
    min_similarity: float | None = None,
    judgments: Mapping[str, RelevanceJudgment] | None = None,
) -> PipelineRun:
    """Build the evidence set for one query.

    Pipeline:
    1. retrieve_and_rank(query_embedding, candidates)
    2. none: cap at top_k; threshold/hybrid: filter_chunks; reranker: cap at top_k
    3. reranker/hybrid: rerank the step-2 output with the given judgments

    Args:
        name: Label for this run in comparison reports
        query_embedding: Query embedding vector
        candidates: Candidate chunks with embeddings
        strategy: Filtering strategy (default: settings.filter_strategy)
        top_k: Evidence cap (default: settings.top_k)
        min_similarity: Threshold for threshold/hybrid (default: settings.min_similarity)
        judgments: Relevance judgments for reranker/hybrid, keyed by chunk id

    Returns:
        PipelineRun with the ranking, final evidence and per-stage reports
    """
    if strategy is None:
        strategy = settings.filter_strategy
    try:
        strategy = FilterStrategy(strategy)
    except ValueError:
        raise ContractViolation(f"Unknown filter strategy: {strategy!r}") from None

    if top_k is None:
        top_k = settings.top_k
    if min_similarity is None:
        min_similarity = settings.min_similarity

    ranked = retrieve_and_rank(query_embedding, candidates)
    run = PipelineRun(name=name, strategy=strategy.value, retrieved=ranked)

    if strategy in (FilterStrategy.THRESHOLD, FilterStrategy.HYBRID):
        result = filter_chunks(ranked, top_k=top_k, min_similarity=min_similarity)
        run.filter_stats = result.stats
        evidence = result.kept
    else:
        if top_k < 1:
            raise ContractViolation(f"top_k must be at least 1, got {top_k}")
        evidence = ranked[:top_k]

    if strategy in (FilterStrategy.RERANKER, FilterStrategy.HYBRID) and evidence:
        if judgments is None:
            logger.warning("No relevance judgments supplied, skipping reranking")
        else:
            decisions = rerank(evidence, judgments)
            run.rerank_decisions = decisions
            evidence = select_reranked(evidence, decisions)

    run.evidence = evidence
    logger.info(
        "Pipeline '%s' (%s): %d retrieved -> %d evidence chunks",
        name,
        strategy.value,
        len(ranked),
        len(evidence),
    )
    return run
