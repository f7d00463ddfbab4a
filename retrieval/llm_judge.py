"""LLM-graded relevance judgments used as the reranker's second opinion."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from core.config import settings
from core.models import RelevanceJudgment, RetrievedChunk

if TYPE_CHECKING:
    from openai import OpenAI

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an expert at judging how relevant text fragments are to a question. "
    "For every chunk return relevance (0 to 1, 1 = fully relevant), "
    "reason (one or two sentences) and shouldUse (whether the chunk belongs in "
    "the answer context). Return only a valid JSON array, no commentary."
)


class _JudgmentPayload(BaseModel):
    chunkId: str
    relevance: float
    reason: str = ""
    shouldUse: bool | None = Field(default=None)


_payload_adapter = TypeAdapter(list[_JudgmentPayload])


def extract_json_array(text: str) -> str:
    """Strip markdown fences and return the outermost JSON array in the reply."""
    text = text.strip()

    if text.startswith("```"):
        lines = text.splitlines()
        fence_lines = [i for i, line in enumerate(lines) if line.strip().startswith("```")]
        if len(fence_lines) >= 2:
            text = "\n".join(lines[fence_lines[0] + 1 : fence_lines[-1]])

    start = text.find("[")
    end = text.rfind("]")
    if start >= 0 and end > start:
        return text[start : end + 1]
    return text


def parse_judgments(text: str) -> dict[str, RelevanceJudgment]:
    """Parse the LLM reply into judgments keyed by chunk id.

    Returns an empty dict when the reply is not a valid judgment array.
    """
    try:
        payloads = _payload_adapter.validate_json(extract_json_array(text))
    except ValidationError as e:
        logger.error("Failed to parse relevance judgments: %s", e)
        logger.debug("Unparseable judge reply: %s", text)
        return {}

    return {
        p.chunkId: RelevanceJudgment(
            chunk_id=p.chunkId,
            score=p.relevance,
            reason=p.reason,
            should_use=p.shouldUse,
        )
        for p in payloads
    }


def build_judge_prompt(question: str, chunks: Sequence[RetrievedChunk]) -> str:
    max_chars = settings.rerank_max_content_chars
    items = [
        {
            "chunkId": chunk.chunk_id,
            "content": chunk.content[:max_chars],
            "similarity": round(chunk.similarity, 4),
        }
        for chunk in chunks
    ]
    return (
        f'Question: "{question}"\n\n'
        "Rate the relevance of each chunk to the question. Return a JSON array of "
        '{"chunkId": ..., "relevance": 0.0-1.0, "reason": ..., "shouldUse": true|false}.\n\n'
        f"Chunks:\n{json.dumps(items, ensure_ascii=False, indent=2)}"
    )


def judge_relevance(
    question: str,
    chunks: Sequence[RetrievedChunk],
    openai_client: OpenAI | None = None,
    max_chunks: int | None = None,
) -> dict[str, RelevanceJudgment]:
    """Ask the LLM to grade each chunk's relevance to the question.

    Args:
        question: User question
        chunks: Chunks to grade, best first
        openai_client: Optional OpenAI client (will create if None)
        max_chunks: Grade at most this many chunks (default: settings.rerank_max_chunks)

    Returns:
        Judgments keyed by chunk id; empty on any failure so reranking
        falls back to the similarity-based decision
    """
    if not chunks:
        return {}

    if max_chunks is None:
        max_chunks = settings.rerank_max_chunks

    if openai_client is None:
        from openai import OpenAI

        openai_client = OpenAI(api_key=settings.openai_api_key)

    to_judge = list(chunks[:max_chunks])
    if len(chunks) > max_chunks:
        logger.warning("Judging only top %d chunks out of %d", max_chunks, len(chunks))

    try:
        response = openai_client.chat.completions.create(
            model=settings.llm_model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_judge_prompt(question, to_judge)},
            ],
            temperature=0.3,
        )
    except Exception as e:
        logger.error("Relevance judge failed: %s", e)
        return {}

    reply = response.choices[0].message.content or ""
    judgments = parse_judgments(reply)
    logger.info("Judged %d/%d chunks", len(judgments), len(to_judge))
    return judgments
