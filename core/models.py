"""Data models for the RAG evidence pipeline."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Chunk(BaseModel):
    """An indexed slice of a source document together with its embedding."""

    model_config = ConfigDict(frozen=True)

    chunk_id: str
    document_id: str
    document_path: str | None = None
    document_title: str | None = None
    chunk_index: int = 0
    content: str
    embedding: list[float] = Field(default_factory=list)


class RetrievedChunk(BaseModel):
    """A chunk scored against one query."""

    model_config = ConfigDict(frozen=True)

    chunk: Chunk
    similarity: float = Field(ge=-1.0, le=1.0)
    rank: int = 0

    @property
    def chunk_id(self) -> str:
        return self.chunk.chunk_id

    @property
    def document_id(self) -> str:
        return self.chunk.document_id

    @property
    def document_path(self) -> str | None:
        return self.chunk.document_path

    @property
    def document_title(self) -> str | None:
        return self.chunk.document_title

    @property
    def content(self) -> str:
        return self.chunk.content


class DropReason(str, Enum):
    BELOW_THRESHOLD = "belowThreshold"
    EXCEEDS_TOP_K = "exceedsTopK"


class DroppedChunk(BaseModel):
    """A retrieved chunk the relevance filter excluded."""

    chunk_id: str
    document_path: str | None = None
    similarity: float
    reason: DropReason
    detail: str = ""


class FilterStats(BaseModel):
    retrieved: int = 0
    kept: int = 0
    dropped: list[DroppedChunk] = Field(default_factory=list)
    avg_similarity_before: float = 0.0
    avg_similarity_after: float = 0.0


class FilterResult(BaseModel):
    kept: list[RetrievedChunk] = Field(default_factory=list)
    stats: FilterStats = Field(default_factory=FilterStats)


class RelevanceJudgment(BaseModel):
    """Second-opinion relevance of one chunk, e.g. graded by an LLM."""

    chunk_id: str
    score: float
    reason: str = ""
    should_use: bool | None = None

    @field_validator("score")
    @classmethod
    def clamp_score(cls, v: float) -> float:
        return min(max(v, 0.0), 1.0)


class RerankDecision(BaseModel):
    """Explainable keep/drop decision for one chunk after reranking."""

    chunk_id: str
    rerank_score: float
    reason: str
    should_use: bool
    similarity: float = 0.0


class CitationStatus(str, Enum):
    VALID = "valid"
    UNRESOLVED = "unresolved"
    HALLUCINATED = "hallucinated"


class Citation(BaseModel):
    """A citation marker found in an answer, resolved against the evidence."""

    model_config = ConfigDict(frozen=True)

    text: str
    marker: str
    reference: str | None = None
    document_id: str | None = None
    document_path: str | None = None
    document_title: str | None = None
    chunk_id: str | None = None
    start: int
    end: int
    marker_start: int
    marker_end: int
    status: CitationStatus
    detail: str = ""

    @property
    def span(self) -> tuple[int, int]:
        return (self.start, self.end)


class PipelineRun(BaseModel):
    """Everything one pass of the evidence pipeline produced for a query."""

    name: str
    strategy: str = "none"
    retrieved: list[RetrievedChunk] = Field(default_factory=list)
    evidence: list[RetrievedChunk] = Field(default_factory=list)
    filter_stats: FilterStats | None = None
    rerank_decisions: list[RerankDecision] = Field(default_factory=list)
    tokens_used: int | None = None
    answer: str | None = None


class RunMetrics(BaseModel):
    name: str
    strategy: str = "none"
    retrieved_chunks: int = 0
    evidence_chunks: int = 0
    avg_similarity_before: float = 0.0
    avg_similarity_after: float = 0.0
    evidence_tokens: int = 0
    tokens_used: int | None = None


class ComparisonReport(BaseModel):
    """Side-by-side metrics for two pipeline runs over the same query."""

    run_a: RunMetrics
    run_b: RunMetrics
    tokens_saved: int = 0
    analysis: str = ""


class CitationMetrics(BaseModel):
    total_questions: int = 0
    questions_with_citations: int = 0
    average_citations_per_answer: float = 0.0
    valid_citations_percentage: float = 0.0
    answers_without_hallucinations: int = 0
