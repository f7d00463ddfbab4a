"""Extraction and validation of inline citations in generated answers.

A citation is a marker in the answer text (``[doc1]``,
``[Source: Title](docs/path.md)``, ...) together with the claim it backs:
an explicit quote, or the text of the sentence the marker closes. Each
citation is resolved against the evidence the answer was generated from
and classified as exactly one of:

- valid: resolved, and the quoted text occurs in the resolved chunk
  (case-insensitive, whitespace-normalized)
- hallucinated: resolved, but the quoted text is not in the claimed source
- unresolved: no evidence matches the reference, the marker is malformed,
  or there is no quoted text to check

Malformed markers never raise; they come back as unresolved citations.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Union

from core.config import settings
from core.errors import ContractViolation
from core.models import Chunk, Citation, CitationStatus, RetrievedChunk

logger = logging.getLogger(__name__)

# A mapping may hold chunks or bare chunk text keyed by chunk id.
Evidence = Union[
    Sequence[Union[Chunk, RetrievedChunk]],
    Mapping[str, Union[Chunk, RetrievedChunk, str]],
]


@dataclass(frozen=True)
class CitationPattern:
    """A marker syntax. ``regex`` must define a named group ``ref``.

    Optional named groups: ``title`` (document title shown in the marker)
    and ``quote`` (explicitly quoted text). ``path_ref`` marks syntaxes whose
    ``ref`` is a document path, kept on the citation even when unresolved.
    """

    name: str
    regex: re.Pattern
    malformed: bool = False
    path_ref: bool = False


def make_pattern(
    name: str, regex: str, malformed: bool = False, path_ref: bool = False
) -> CitationPattern:
    compiled = re.compile(regex, re.IGNORECASE)
    if "ref" not in compiled.groupindex:
        raise ContractViolation(f"Citation pattern '{name}' has no named group 'ref'")
    return CitationPattern(name=name, regex=compiled, malformed=malformed, path_ref=path_ref)


_PATH = r"[\w.-]*/[\w./-]*\w|[\w-]+\.[a-z]\w{1,4}"

# Earlier patterns win when matches overlap.
DEFAULT_PATTERNS: tuple[CitationPattern, ...] = (
    # [Source: Title](docs/path.md)
    make_pattern(
        "markdown",
        r"\[(?:Source|Источник)\s*:\s*(?P<title>[^\]\n]*?)\s*\]\((?P<ref>[^)\n]*)\)",
        path_ref=True,
    ),
    # [Source: Title](docs/path.md with the link left open
    make_pattern(
        "open_markdown",
        r"\[(?:Source|Источник)\s*:\s*(?P<title>[^\]\n]*?)\s*\]\((?P<ref>[^)\s]*)(?![^)\n]*\))",
        malformed=True,
        path_ref=True,
    ),
    # [1] Title (docs/path.md)
    make_pattern(
        "numbered",
        r"\[\d+\]\s*(?:(?P<title>[^()\[\]\n]*?)\s*)?\((?P<ref>" + _PATH + r")\)",
        path_ref=True,
    ),
    # [1] docs/path.md
    make_pattern("numbered_path", r"\[\d+\]\s+(?P<ref>" + _PATH + r")(?![\w/])", path_ref=True),
    make_pattern("bracket", r"\[(?P<ref>[^\[\]\n]*)\]"),
    # Source: docs/path.md, Source: Title - docs/path.md
    make_pattern(
        "plain",
        r"(?<![\[\w])(?:Source|Источник)\s*:\s*"
        r"(?:(?P<title>[^\n\[\]()/:]+?)\s+[-–]\s+)?"
        r"(?P<ref>[^\s,;\[\]()]+?)(?=[.,;:!?]*(?:\s|$))",
        path_ref=True,
    ),
    # "[doc1" with no closing bracket before the next bracket or line end
    make_pattern(
        "unterminated", r"\[(?P<ref>[^\s\[\]]+)(?![^\[\]\n]*\])", malformed=True
    ),
)

_BOUNDARY_RE = re.compile(r"[.!?](?=\s)|\n")
_LEADING_NOISE = re.compile(r"[\s\-*•>]+")
_QUOTE_PAIRS = {'"': '"', "”": "“", "»": "«"}
_NUMBERED_REF = re.compile(r"^(?:chunk\s*)?(\d+)$", re.IGNORECASE)
_SOURCE_PREFIX = re.compile(r"^(?:source|источник)\s*:\s*", re.IGNORECASE)


def normalize_text(text: str) -> str:
    """Collapse whitespace and casefold, for containment checks."""
    return " ".join(text.split()).casefold()


def normalize_path(path: str) -> str:
    """Unify separators and strip duplicate/leading/trailing slashes."""
    return re.sub(r"/+", "/", path.replace("\\", "/")).strip("/")


def title_from_path(path: str) -> str:
    """Derive a readable title from a document path.

    >>> title_from_path("documents/01-mcp_server-creation.md")
    '01 Mcp Server Creation'
    """
    file_name = normalize_path(path).split("/")[-1].split(".")[0] or path
    words = re.sub(r"[-_]", " ", file_name).split()
    return " ".join(word.capitalize() for word in words)


def configured_patterns() -> tuple[CitationPattern, ...]:
    if not settings.citation_patterns:
        return DEFAULT_PATTERNS
    return tuple(
        make_pattern(f"custom{i}", regex)
        for i, regex in enumerate(settings.citation_patterns, start=1)
    )


def _as_chunk(item: Union[Chunk, RetrievedChunk]) -> Chunk:
    return item.chunk if isinstance(item, RetrievedChunk) else item


def _evidence_chunks(evidence: Evidence) -> list[Chunk]:
    if not isinstance(evidence, Mapping):
        return [_as_chunk(item) for item in evidence]

    chunks = []
    for chunk_id, item in evidence.items():
        if isinstance(item, str):
            # bare chunk text keyed by chunk id
            chunks.append(Chunk(chunk_id=chunk_id, document_id=chunk_id, content=item))
        else:
            chunks.append(_as_chunk(item))
    return chunks


def _find_markers(
    answer: str, patterns: Sequence[CitationPattern]
) -> list[tuple[re.Match, CitationPattern]]:
    taken: list[tuple[int, int]] = []
    found: list[tuple[re.Match, CitationPattern]] = []
    for pattern in patterns:
        for match in pattern.regex.finditer(answer):
            start, end = match.span()
            if start == end:
                continue
            if any(start < t_end and t_start < end for t_start, t_end in taken):
                continue
            taken.append((start, end))
            found.append((match, pattern))
    found.sort(key=lambda item: item[0].start())
    return found


def _trim(answer: str, start: int, end: int) -> tuple[int, int]:
    while end > start and answer[end - 1] in " \t\r\n,;:":
        end -= 1
    noise = _LEADING_NOISE.match(answer, start, end)
    if noise:
        start = noise.end()
    return start, end


def _quoted_span(answer: str, lower: int, marker_start: int) -> tuple[int, int] | None:
    end = marker_start
    while end > lower and answer[end - 1].isspace():
        end -= 1
    if end <= lower or answer[end - 1] not in _QUOTE_PAIRS:
        return None
    opener = _QUOTE_PAIRS[answer[end - 1]]
    start = answer.rfind(opener, lower, end - 1)
    line_start = answer.rfind("\n", lower, end - 1)
    if start < 0 or start < line_start:
        return None
    return start + 1, end - 1


def _claim_span(answer: str, lower: int, marker_start: int) -> tuple[int, int]:
    end = marker_start
    while end > lower and answer[end - 1].isspace():
        end -= 1
    # marker placed after the sentence's full stop
    if end > lower and answer[end - 1] in ".!?":
        end -= 1

    last_boundary = None
    for last_boundary in _BOUNDARY_RE.finditer(answer, lower, end):
        pass
    start = last_boundary.end() if last_boundary else lower
    return _trim(answer, start, end)


def _split_references(raw: str) -> list[str]:
    refs = [_SOURCE_PREFIX.sub("", r.strip()) for r in re.split(r"[,;]", raw)]
    refs = [r.strip() for r in refs if r.strip()]
    return refs or [""]


def _document_candidates(reference: str, chunks: Sequence[Chunk]) -> list[Chunk]:
    ref_path = normalize_path(reference)
    ref_folded = reference.casefold()
    matched = []
    for chunk in chunks:
        if chunk.document_id == reference:
            matched.append(chunk)
        elif chunk.document_path and normalize_path(chunk.document_path) == ref_path:
            matched.append(chunk)
        elif chunk.document_title and chunk.document_title.casefold() == ref_folded:
            matched.append(chunk)
    return matched


def _resolve(reference: str, chunks: Sequence[Chunk]) -> tuple[list[Chunk], bool]:
    """Return candidate chunks for a reference and whether the reference named a source."""
    if not reference:
        return list(chunks), False

    by_id = [chunk for chunk in chunks if chunk.chunk_id == reference]
    if by_id:
        return by_id, True

    numbered = _NUMBERED_REF.match(reference)
    if numbered:
        position = int(numbered.group(1))
        if 1 <= position <= len(chunks):
            return [chunks[position - 1]], True

    return _document_candidates(reference, chunks), True


def _classify(
    quote: str, reference: str, chunks: Sequence[Chunk]
) -> tuple[CitationStatus, Chunk | None, Chunk | None, str]:
    """Return (status, matched chunk, claimed document's first chunk, detail)."""
    candidates, named = _resolve(reference, chunks)
    if not candidates:
        return CitationStatus.UNRESOLVED, None, None, f"no evidence matches reference '{reference}'"

    needle = normalize_text(quote)
    if not needle:
        source = candidates[0] if named else None
        return CitationStatus.UNRESOLVED, None, source, "no quoted text before the marker"

    for chunk in candidates:
        if needle in normalize_text(chunk.content):
            return CitationStatus.VALID, chunk, chunk, "quoted text found in evidence"

    if not named:
        return CitationStatus.UNRESOLVED, None, None, "quoted text not found in any evidence chunk"
    return (
        CitationStatus.HALLUCINATED,
        None,
        candidates[0],
        f"quoted text not found in '{reference}'",
    )


def extract_and_validate_citations(
    answer_text: str,
    evidence: Evidence,
    patterns: Sequence[CitationPattern] | None = None,
) -> list[Citation]:
    """Find every citation marker in the answer and validate it against the evidence.

    Args:
        answer_text: Raw answer produced by the generator
        evidence: Final evidence set (chunks, retrieved chunks, or a mapping by chunk id
            whose values are chunks or bare chunk text)
        patterns: Marker syntaxes to look for (default: settings / DEFAULT_PATTERNS)

    Returns:
        Citations in order of appearance; a marker naming several references
        yields one citation per reference
    """
    if patterns is None:
        patterns = configured_patterns()
    if not answer_text:
        return []

    chunks = _evidence_chunks(evidence)
    citations: list[Citation] = []
    previous_end = 0
    previous_span: tuple[int, int] | None = None

    for match, pattern in _find_markers(answer_text, patterns):
        marker_start, marker_end = match.span()
        groups = match.groupdict()

        between = answer_text[previous_end:marker_start]
        if groups.get("quote"):
            span = match.span("quote")
        elif previous_span is not None and not between.strip(" \t,;"):
            # adjacent markers back the same claim
            span = previous_span
        else:
            span = _quoted_span(answer_text, previous_end, marker_start)
            if span is None:
                span = _claim_span(answer_text, previous_end, marker_start)

        quote = answer_text[span[0] : span[1]]
        marker_title = (groups.get("title") or "").strip() or None

        for reference in _split_references(groups.get("ref") or ""):
            if pattern.malformed:
                status, matched, source = CitationStatus.UNRESOLVED, None, None
                detail = "malformed citation marker"
            else:
                status, matched, source, detail = _classify(quote, reference, chunks)

            document_path = source.document_path if source else None
            if document_path is None and pattern.path_ref and reference:
                document_path = reference
            document_title = marker_title or (source.document_title if source else None)
            if document_title is None and document_path:
                document_title = title_from_path(document_path)

            citations.append(
                Citation(
                    text=quote,
                    marker=match.group(0),
                    reference=reference or None,
                    document_id=source.document_id if source else None,
                    document_path=document_path,
                    document_title=document_title,
                    chunk_id=matched.chunk_id if matched else None,
                    start=span[0],
                    end=span[1],
                    marker_start=marker_start,
                    marker_end=marker_end,
                    status=status,
                    detail=detail,
                )
            )

        previous_end = marker_end
        previous_span = span

    counts = summarize_citations(citations)
    logger.info(
        "Extracted %d citations: %d valid, %d unresolved, %d hallucinated",
        len(citations),
        counts[CitationStatus.VALID],
        counts[CitationStatus.UNRESOLVED],
        counts[CitationStatus.HALLUCINATED],
    )
    return citations


def summarize_citations(citations: Sequence[Citation]) -> dict[CitationStatus, int]:
    counts = Counter(c.status for c in citations)
    return {status: counts.get(status, 0) for status in CitationStatus}
