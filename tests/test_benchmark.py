"""Unit tests for the citation benchmark."""

from unittest.mock import MagicMock

import pytest

from core.models import Chunk, Citation, CitationStatus, RetrievedChunk
from evaluation.benchmark import (
    CitationQuestionResult,
    calculate_metrics,
    load_questions,
    print_benchmark_results,
    run_citation_benchmark,
)


def citation(status: CitationStatus) -> Citation:
    return Citation(text="t", marker="[x]", start=0, end=1, marker_start=2, marker_end=5, status=status)


@pytest.fixture
def evidence():
    return [
        RetrievedChunk(
            chunk=Chunk(chunk_id="c1", document_id="mcp", content="MCP servers expose tools."),
            similarity=0.8,
        )
    ]


class TestCalculateMetrics:
    def test_empty_results(self):
        """Test metrics for no results are all zero."""
        metrics = calculate_metrics([])
        assert metrics.total_questions == 0
        assert metrics.average_citations_per_answer == 0.0
        assert metrics.valid_citations_percentage == 0.0

    def test_aggregates(self):
        """Test counts, averages and hallucination-free answers."""
        results = [
            CitationQuestionResult(
                question="q1", answer="a",
                citations=[citation(CitationStatus.VALID), citation(CitationStatus.VALID)],
            ),
            CitationQuestionResult(
                question="q2", answer="a",
                citations=[citation(CitationStatus.VALID), citation(CitationStatus.HALLUCINATED)],
            ),
            CitationQuestionResult(question="q3", answer="a", citations=[citation(CitationStatus.VALID)]),
            CitationQuestionResult(question="q4", answer="a"),
        ]

        metrics = calculate_metrics(results)

        assert metrics.total_questions == 4
        assert metrics.questions_with_citations == 3
        assert metrics.average_citations_per_answer == pytest.approx(5 / 4)
        assert metrics.valid_citations_percentage == pytest.approx(80.0)
        # a single valid citation is not enough
        assert metrics.answers_without_hallucinations == 1


class TestRunCitationBenchmark:
    def test_validates_each_answer(self, evidence):
        """Test every question is asked and its citations validated."""
        ask_fn = MagicMock(return_value=("MCP servers expose tools [mcp].", evidence))

        results, metrics = run_citation_benchmark(ask_fn, questions=["What is MCP?", "Why MCP?"])

        assert ask_fn.call_count == 2
        assert [r.question for r in results] == ["What is MCP?", "Why MCP?"]
        assert results[0].valid_citations_count == 1
        assert metrics.valid_citations_percentage == pytest.approx(100.0)

    def test_answer_without_citations(self, evidence):
        """Test an answer without markers has no citations."""
        results, metrics = run_citation_benchmark(lambda q: ("No idea.", evidence), questions=["q"])

        assert not results[0].has_citations
        assert metrics.questions_with_citations == 0

    def test_defaults_to_bundled_questions(self, evidence):
        """Test the bundled questions are used by default."""
        ask_fn = MagicMock(return_value=("", evidence))

        results, _ = run_citation_benchmark(ask_fn)

        assert len(results) == len(load_questions())


def test_load_questions():
    """Test the bundled questions load as strings."""
    questions = load_questions()
    assert questions
    assert all(isinstance(q, str) and q for q in questions)


def test_print_benchmark_results(capsys):
    """Test the printed table shows status and metrics."""
    results = [CitationQuestionResult(question="q1", answer="a", citations=[citation(CitationStatus.VALID)])]

    print_benchmark_results(results, calculate_metrics(results))

    out = capsys.readouterr().out
    assert "[PASS]" in out
    assert "Valid citations: 100.0%" in out
