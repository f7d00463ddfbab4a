"""LLM answer generation from the evidence set, with inline citation markers."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING

from pydantic import BaseModel

from core.config import settings
from core.models import RetrievedChunk

if TYPE_CHECKING:
    from openai import OpenAI

logger = logging.getLogger(__name__)

RAG_SYSTEM_PROMPT = (
    "You are a precise Q&A assistant. Answer ONLY based on the provided context. "
    "If the context doesn't contain enough information, say so. "
    "After every statement taken from the context, cite its chunk with the "
    "chunk id in square brackets, e.g. [doc1-0]. Copy facts verbatim where possible."
)

PLAIN_SYSTEM_PROMPT = "You are an assistant who answers questions."


class GeneratedAnswer(BaseModel):
    text: str
    tokens_used: int | None = None


def build_context(evidence: Sequence[RetrievedChunk]) -> str:
    """Render evidence chunks as a labelled context block."""
    blocks = []
    for chunk in evidence:
        title = chunk.document_title or chunk.document_id
        path = chunk.document_path or "-"
        blocks.append(
            f"[{chunk.chunk_id}] (document: {title}, path: {path}, "
            f"similarity: {chunk.similarity:.0%})\n{chunk.content}"
        )
    return "\n\n".join(blocks)


def generate_answer(
    question: str,
    evidence: Sequence[RetrievedChunk],
    openai_client: OpenAI | None = None,
) -> GeneratedAnswer:
    """Generate an answer from the question and evidence using the LLM.

    With an empty evidence set the question is answered without context,
    which doubles as the no-RAG baseline.

    Args:
        question: User question
        evidence: Final evidence set
        openai_client: Optional OpenAI client (will create if None)

    Returns:
        GeneratedAnswer with the raw answer text and total tokens used
    """
    if openai_client is None:
        from openai import OpenAI

        openai_client = OpenAI(api_key=settings.openai_api_key)

    if evidence:
        messages = [
            {"role": "system", "content": RAG_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": f"Question: {question}\n\nContext:\n{build_context(evidence)}",
            },
        ]
    else:
        logger.warning("No evidence provided, answering without context")
        messages = [
            {"role": "system", "content": PLAIN_SYSTEM_PROMPT},
            {"role": "user", "content": question},
        ]

    logger.info("Generating answer for question: %s", question)
    try:
        response = openai_client.chat.completions.create(
            model=settings.llm_model,
            messages=messages,
            temperature=0.3,
        )
    except Exception as e:
        logger.error("Error generating answer: %s", e)
        return GeneratedAnswer(text=f"Error generating answer: {e}")

    answer_text = response.choices[0].message.content or ""
    total_tokens = getattr(getattr(response, "usage", None), "total_tokens", None)
    tokens_used = total_tokens if isinstance(total_tokens, int) else None

    logger.info("Generated answer: %s", answer_text[:100])
    return GeneratedAnswer(text=answer_text, tokens_used=tokens_used)
