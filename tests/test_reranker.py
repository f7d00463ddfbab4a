"""Unit tests for reranking, LLM relevance judgments and the pipeline strategies."""

from __future__ import annotations

from unittest.mock import MagicMock, Mock

import pytest

from core.errors import ContractViolation
from core.models import Chunk, RelevanceJudgment, RetrievedChunk
from retrieval.llm_judge import extract_json_array, judge_relevance, parse_judgments
from retrieval.pipeline import FilterStrategy, run_pipeline
from retrieval.relevance_filter import filter_chunks
from retrieval.reranker import rerank, select_reranked


def scored(chunk_id: str, similarity: float) -> RetrievedChunk:
    chunk = Chunk(chunk_id=chunk_id, document_id="doc", content=f"text {chunk_id}")
    return RetrievedChunk(chunk=chunk, similarity=similarity)


def judgment(chunk_id: str, score: float, should_use=None, reason: str = "") -> RelevanceJudgment:
    return RelevanceJudgment(chunk_id=chunk_id, score=score, should_use=should_use, reason=reason)


@pytest.fixture
def kept():
    return [scored("a", 0.9), scored("b", 0.8), scored("c", 0.6)]


class TestRerank:
    """Tests for rerank and select_reranked."""

    def test_one_decision_per_chunk_in_input_order(self, kept):
        """Test one decision per kept chunk, in input order."""
        judgments = {"a": judgment("a", 0.9), "b": judgment("b", 0.2), "c": judgment("c", 0.7)}

        decisions = rerank(kept, judgments, min_score=0.5)

        assert [d.chunk_id for d in decisions] == ["a", "b", "c"]
        assert [d.should_use for d in decisions] == [True, False, True]

    def test_can_drop_high_similarity_chunk(self, kept):
        """Test a low judgment drops a high-similarity chunk."""
        decisions = rerank(kept, {"a": judgment("a", 0.1, reason="Only a table of contents")}, min_score=0.5)

        first = decisions[0]
        assert first.similarity == pytest.approx(0.9)
        assert first.should_use is False
        assert first.reason == "Only a table of contents"

    def test_explicit_should_use_wins_over_score(self, kept):
        """Test an explicit should_use overrides the score."""
        decisions = rerank(
            kept,
            {"a": judgment("a", 0.9, should_use=False), "b": judgment("b", 0.1, should_use=True)},
            min_score=0.5,
        )
        assert decisions[0].should_use is False
        assert decisions[1].should_use is True

    def test_missing_judgment_keeps_chunk(self, kept):
        """Test chunks without a judgment are kept."""
        decisions = rerank(kept, {}, min_score=0.5)

        assert all(d.should_use for d in decisions)
        assert decisions[2].rerank_score == pytest.approx(0.6)
        assert "No rerank judgment" in decisions[2].reason

    def test_generated_reason_when_judge_gives_none(self, kept):
        """Test a reason is generated when the judge gives none."""
        decisions = rerank(kept, {"b": judgment("b", 0.3)}, min_score=0.5)
        assert decisions[1].reason == "rerank score 0.30 < 0.50"

    def test_judgments_for_dropped_chunks_are_ignored(self, kept):
        """Test reranking never widens the filtered set."""
        ranked = kept + [scored("d", 0.2)]
        filtered = filter_chunks(ranked, top_k=5, min_similarity=0.5).kept
        judgments = {"d": judgment("d", 1.0, should_use=True)}

        decisions = rerank(filtered, judgments)
        selected = select_reranked(filtered, decisions)

        assert "d" not in {d.chunk_id for d in decisions}
        assert {c.chunk_id for c in selected} <= {c.chunk_id for c in filtered}

    def test_select_orders_by_rerank_score(self, kept):
        """Test selected chunks are ordered by rerank score."""
        judgments = {"a": judgment("a", 0.6), "b": judgment("b", 0.95), "c": judgment("c", 0.1)}

        selected = select_reranked(kept, rerank(kept, judgments, min_score=0.5))

        assert [c.chunk_id for c in selected] == ["b", "a"]

    def test_empty_input(self):
        """Test empty input gives no decisions."""
        assert rerank([], {"a": judgment("a", 1.0)}) == []
        assert select_reranked([], []) == []

    def test_score_is_clamped(self):
        assert judgment("a", 1.7).score == 1.0
        assert judgment("a", -0.2).score == 0.0


class TestLLMJudge:
    """Tests for the LLM relevance judge."""

    def test_extract_json_array_from_fenced_reply(self):
        """Test markdown fences are stripped."""
        reply = '```json\n[{"chunkId": "a", "relevance": 0.8}]\n```'
        assert extract_json_array(reply) == '[{"chunkId": "a", "relevance": 0.8}]'

    def test_extract_json_array_with_surrounding_prose(self):
        """Test prose around the array is ignored."""
        reply = 'Here you go: [{"chunkId": "a", "relevance": 0.8}] hope it helps'
        assert extract_json_array(reply).startswith("[") and extract_json_array(reply).endswith("]")

    def test_parse_judgments(self):
        """Test judgments are parsed and scores clamped."""
        reply = (
            '[{"chunkId": "a", "relevance": 0.85, "reason": "Step-by-step setup", "shouldUse": true},'
            ' {"chunkId": "b", "relevance": 1.4, "reason": "", "shouldUse": false}]'
        )

        judgments = parse_judgments(reply)

        assert judgments["a"].score == pytest.approx(0.85)
        assert judgments["a"].should_use is True
        assert judgments["b"].score == 1.0
        assert judgments["b"].should_use is False

    def test_parse_judgments_invalid_reply(self):
        """Test an unparseable reply gives no judgments."""
        assert parse_judgments("I cannot rate these chunks.") == {}

    def test_judge_relevance_calls_openai(self):
        """Test the prompt carries the question and chunk ids."""
        mock_client = MagicMock()
        mock_client.chat.completions.create.return_value = Mock(
            choices=[Mock(message=Mock(content='[{"chunkId": "a", "relevance": 0.9, "reason": "ok", "shouldUse": true}]'))]
        )

        judgments = judge_relevance("question", [scored("a", 0.7)], mock_client)

        assert list(judgments) == ["a"]
        prompt = mock_client.chat.completions.create.call_args.kwargs["messages"][1]["content"]
        assert "question" in prompt
        assert '"chunkId": "a"' in prompt

    def test_judge_relevance_limits_chunks(self):
        """Test at most max_chunks chunks are graded."""
        mock_client = MagicMock()
        mock_client.chat.completions.create.return_value = Mock(choices=[Mock(message=Mock(content="[]"))])

        judge_relevance("q", [scored(str(i), 0.5) for i in range(10)], mock_client, max_chunks=3)

        prompt = mock_client.chat.completions.create.call_args.kwargs["messages"][1]["content"]
        assert '"chunkId": "2"' in prompt
        assert '"chunkId": "3"' not in prompt

    def test_judge_relevance_returns_empty_on_error(self):
        """Test API errors give no judgments."""
        mock_client = MagicMock()
        mock_client.chat.completions.create.side_effect = RuntimeError("timeout")

        assert judge_relevance("q", [scored("a", 0.5)], mock_client) == {}

    def test_judge_relevance_skips_empty_input(self):
        """Test no API call is made without chunks."""
        mock_client = MagicMock()
        assert judge_relevance("q", [], mock_client) == {}
        mock_client.chat.completions.create.assert_not_called()


class TestRunPipeline:
    """Tests for run_pipeline strategies."""

    @pytest.fixture
    def candidates(self):
        return [
            Chunk(chunk_id="c1", document_id="d", content="one", embedding=[1.0, 0.0]),
            Chunk(chunk_id="c2", document_id="d", content="two", embedding=[0.6, 0.8]),
            Chunk(chunk_id="c3", document_id="d", content="three", embedding=[0.0, 1.0]),
        ]

    def test_none_caps_at_top_k(self, candidates):
        """Test the none strategy only caps the ranking."""
        run = run_pipeline("baseline", [1.0, 0.0], candidates, strategy="none", top_k=2)

        assert [c.chunk_id for c in run.evidence] == ["c1", "c2"]
        assert run.filter_stats is None
        assert len(run.retrieved) == 3

    def test_threshold(self, candidates):
        """Test the threshold strategy filters by similarity."""
        run = run_pipeline("t", [1.0, 0.0], candidates, strategy="threshold", top_k=5, min_similarity=0.5)

        assert [c.chunk_id for c in run.evidence] == ["c1", "c2"]
        assert run.filter_stats.kept == 2

    def test_hybrid_narrows_with_judgments(self, candidates):
        """Test hybrid reranks only the filtered chunks."""
        judgments = {
            "c1": RelevanceJudgment(chunk_id="c1", score=0.2, reason="off topic"),
            "c3": RelevanceJudgment(chunk_id="c3", score=1.0, should_use=True),
        }

        run = run_pipeline(
            "h", [1.0, 0.0], candidates, strategy=FilterStrategy.HYBRID,
            top_k=5, min_similarity=0.5, judgments=judgments,
        )

        assert [c.chunk_id for c in run.evidence] == ["c2"]
        assert [d.chunk_id for d in run.rerank_decisions] == ["c1", "c2"]

    def test_reranker_without_judgments_skips_reranking(self, candidates):
        """Test reranking is skipped without judgments."""
        run = run_pipeline("r", [1.0, 0.0], candidates, strategy="reranker", top_k=2)

        assert [c.chunk_id for c in run.evidence] == ["c1", "c2"]
        assert run.rerank_decisions == []

    def test_empty_candidates(self):
        """Test an empty candidate set flows through."""
        run = run_pipeline("e", [1.0, 0.0], [], strategy="hybrid", top_k=3, judgments={})

        assert run.evidence == []
        assert run.filter_stats.retrieved == 0

    def test_unknown_strategy_raises(self, candidates):
        """Test an unknown strategy is rejected."""
        with pytest.raises(ContractViolation):
            run_pipeline("x", [1.0, 0.0], candidates, strategy="magic")
