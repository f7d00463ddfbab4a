"""Similarity retrieval over chunk embeddings."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Union

from core.config import settings
from core.models import Chunk, RetrievedChunk
from retrieval.vector_math import rank_by_similarity

if TYPE_CHECKING:
    from openai import OpenAI

    from storage.chunk_store import ChunkStore

logger = logging.getLogger(__name__)

Candidate = Union[Chunk, tuple[Chunk, Sequence[float]]]


def _unpack(candidate: Candidate) -> tuple[Chunk, Sequence[float]]:
    if isinstance(candidate, Chunk):
        return candidate, candidate.embedding
    chunk, embedding = candidate
    return chunk, embedding


def retrieve_and_rank(
    query_embedding: Sequence[float], candidates: Sequence[Candidate]
) -> list[RetrievedChunk]:
    """Rank candidate chunks by cosine similarity to the query.

    Args:
        query_embedding: Query embedding vector
        candidates: Chunks carrying their embeddings, or (chunk, embedding) pairs

    Returns:
        Every candidate as a RetrievedChunk, best first, ranks starting at 1
    """
    if not candidates:
        logger.debug("No candidates to rank")
        return []

    pairs = [_unpack(c) for c in candidates]
    ranking = rank_by_similarity(query_embedding, [embedding for _, embedding in pairs])

    ranked = [
        RetrievedChunk(chunk=pairs[index][0], similarity=score, rank=position)
        for position, (index, score) in enumerate(ranking, start=1)
    ]
    logger.debug(
        "Ranked %d candidates (best=%.3f)", len(ranked), ranked[0].similarity
    )
    return ranked


class Retriever:
    """Embeds a question and ranks the chunk store's candidates against it."""

    def __init__(self, chunk_store: ChunkStore, openai_client: OpenAI | None = None):
        """Initialize retriever with a chunk store and optional OpenAI client.

        Args:
            chunk_store: Source of candidate chunks with embeddings
            openai_client: Optional OpenAI client (will create if None)
        """
        self.chunk_store = chunk_store

        if openai_client is None:
            from openai import OpenAI

            self.openai_client = OpenAI(api_key=settings.openai_api_key)
        else:
            self.openai_client = openai_client

    def get_embedding(self, text: str) -> list[float]:
        """Embed text using the configured OpenAI embedding model."""
        response = self.openai_client.embeddings.create(
            model=settings.embedding_model,
            input=text,
            dimensions=settings.embedding_dimensions,
        )
        return response.data[0].embedding

    def retrieve(
        self, question: str, document_ids: Sequence[str] | None = None
    ) -> tuple[list[float], list[RetrievedChunk]]:
        """Embed the question and rank all stored candidates.

        Args:
            question: User question
            document_ids: Restrict candidates to these documents (default: all)

        Returns:
            The query embedding and the unfiltered ranking
        """
        query_embedding = self.get_embedding(question)
        candidates = self.chunk_store.all_chunks(document_ids=document_ids)
        logger.info("Loaded %d candidate chunks for: %s", len(candidates), question)

        ranked = retrieve_and_rank(query_embedding, candidates)
        if not ranked:
            logger.warning("No candidates found for question: %s", question)
        return query_embedding, ranked
