"""Citation benchmark: how often answers cite their evidence, and cite it correctly."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Sequence
from pathlib import Path

from pydantic import BaseModel, Field

from core.models import Citation, CitationMetrics, CitationStatus
from generation.citations import Evidence, extract_and_validate_citations

logger = logging.getLogger(__name__)

QUESTIONS_FILE = Path(__file__).parent / "questions.json"

AskFn = Callable[[str], tuple[str, Evidence]]


class CitationQuestionResult(BaseModel):
    question: str
    answer: str
    citations: list[Citation] = Field(default_factory=list)

    @property
    def citations_count(self) -> int:
        return len(self.citations)

    @property
    def valid_citations_count(self) -> int:
        return sum(1 for c in self.citations if c.status == CitationStatus.VALID)

    @property
    def has_citations(self) -> bool:
        return bool(self.citations)


def load_questions() -> list[str]:
    """Load benchmark questions from JSON file."""
    with open(QUESTIONS_FILE, "r", encoding="utf-8") as f:
        return [item["question"] for item in json.load(f)]


def calculate_metrics(results: Sequence[CitationQuestionResult]) -> CitationMetrics:
    """Aggregate per-question citation results.

    An answer counts as free of hallucinations when it has at least two
    citations and all of them are valid.
    """
    total_questions = len(results)
    total_citations = sum(r.citations_count for r in results)
    total_valid = sum(r.valid_citations_count for r in results)

    return CitationMetrics(
        total_questions=total_questions,
        questions_with_citations=sum(1 for r in results if r.has_citations),
        average_citations_per_answer=(
            total_citations / total_questions if total_questions else 0.0
        ),
        valid_citations_percentage=(
            total_valid / total_citations * 100.0 if total_citations else 0.0
        ),
        answers_without_hallucinations=sum(
            1
            for r in results
            if r.citations_count >= 2 and r.valid_citations_count == r.citations_count
        ),
    )


def run_citation_benchmark(
    ask_fn: AskFn, questions: list[str] | None = None
) -> tuple[list[CitationQuestionResult], CitationMetrics]:
    """Ask every question and validate the citations in each answer.

    Args:
        ask_fn: Takes a question, returns (answer text, evidence it was generated from)
        questions: Optional custom questions (defaults to questions.json)

    Returns:
        Per-question results and the aggregated metrics
    """
    if questions is None:
        questions = load_questions()

    results = []
    for i, question in enumerate(questions, start=1):
        logger.info("Q%d: %s", i, question)
        answer, evidence = ask_fn(question)
        citations = extract_and_validate_citations(answer, evidence)
        result = CitationQuestionResult(question=question, answer=answer, citations=citations)
        results.append(result)
        logger.info(
            "  %d citations, %d valid", result.citations_count, result.valid_citations_count
        )

    metrics = calculate_metrics(results)
    logger.info(
        "Citation benchmark: %d/%d questions with citations",
        metrics.questions_with_citations,
        metrics.total_questions,
    )
    return results, metrics


def print_benchmark_results(
    results: Sequence[CitationQuestionResult], metrics: CitationMetrics
) -> None:
    """Print formatted benchmark results."""
    print("\n" + "=" * 70)
    print("  Citation Benchmark Results")
    print("=" * 70)

    for i, r in enumerate(results, start=1):
        status = "PASS" if r.has_citations and r.valid_citations_count == r.citations_count else "FAIL"
        print(
            f"  Q{i:2d}  [{status}]  citations={r.citations_count}  "
            f"valid={r.valid_citations_count}  {r.question[:45]}"
        )

    print("-" * 70)
    print(
        f"  With citations: {metrics.questions_with_citations}/{metrics.total_questions}"
    )
    print(f"  Avg citations per answer: {metrics.average_citations_per_answer:.2f}")
    print(f"  Valid citations: {metrics.valid_citations_percentage:.1f}%")
    print(f"  Answers without hallucinations: {metrics.answers_without_hallucinations}")
    print("=" * 70)
