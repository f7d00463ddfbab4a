#!/usr/bin/env python3
"""CLI for the RAG evidence pipeline: ask, compare strategies, validate citations."""

import argparse
import logging
import sys
from pathlib import Path

from core.config import settings


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    )


def print_citations(citations) -> None:
    from generation.citations import summarize_citations

    counts = summarize_citations(citations)
    print(f"\nCitations ({len(citations)}):")
    for i, c in enumerate(citations, 1):
        source = c.chunk_id or c.document_path or c.reference or "-"
        print(f"  {i}. [{c.status.value:12}] {c.marker} -> {source}: \"{c.text[:60]}\"")
    print(
        "  valid={valid}  unresolved={unresolved}  hallucinated={hallucinated}".format(
            **{status.value: n for status, n in counts.items()}
        )
    )


def _judgments_for(args, question, ranked, client):
    if args.strategy not in ("reranker", "hybrid"):
        return None
    from retrieval.llm_judge import judge_relevance

    return judge_relevance(question, ranked[: settings.rerank_max_chunks], client)


def cmd_ask(args: argparse.Namespace) -> None:
    """Ask a question through the evidence pipeline and validate the answer's citations."""
    from openai import OpenAI

    from generation.citations import extract_and_validate_citations
    from generation.generator import generate_answer
    from retrieval.pipeline import run_pipeline
    from retrieval.retriever import Retriever
    from storage.chunk_store import ChunkStore

    client = OpenAI(api_key=settings.openai_api_key)
    store = ChunkStore()
    retriever = Retriever(store, client)

    print(f"Query: {args.question}")
    query_embedding, ranked = retriever.retrieve(args.question)
    candidates = [c.chunk for c in ranked]

    run = run_pipeline(
        args.strategy,
        query_embedding,
        candidates,
        strategy=args.strategy,
        top_k=args.top_k,
        min_similarity=args.min_similarity,
        judgments=_judgments_for(args, args.question, ranked, client),
    )
    answer = generate_answer(args.question, run.evidence, client)

    print(f"\nAnswer: {answer.text}")
    if answer.tokens_used is not None:
        print(f"Tokens used: {answer.tokens_used}")

    if run.filter_stats:
        stats = run.filter_stats
        print(f"\nFilter: {stats.retrieved} retrieved -> {stats.kept} kept")
        for dropped in stats.dropped:
            print(f"  - {dropped.chunk_id} [{dropped.similarity:.3f}] {dropped.reason.value}")

    for decision in run.rerank_decisions:
        mark = "use " if decision.should_use else "drop"
        print(f"  {mark} {decision.chunk_id} ({decision.rerank_score:.2f}): {decision.reason}")

    print(f"\nEvidence ({len(run.evidence)}):")
    for i, chunk in enumerate(run.evidence, 1):
        preview = chunk.content[:100].replace("\n", " ")
        print(f"  {i}. [{chunk.similarity:.3f}] {chunk.chunk_id}: {preview}...")

    print_citations(extract_and_validate_citations(answer.text, run.evidence))
    store.close()


def cmd_compare(args: argparse.Namespace) -> None:
    """Compare the unfiltered pipeline with a filtering strategy for one question."""
    from openai import OpenAI

    from evaluation.comparison import compare_runs, format_report
    from generation.generator import generate_answer
    from retrieval.pipeline import run_pipeline
    from retrieval.retriever import Retriever
    from storage.chunk_store import ChunkStore

    client = OpenAI(api_key=settings.openai_api_key)
    store = ChunkStore()
    retriever = Retriever(store, client)

    query_embedding, ranked = retriever.retrieve(args.question)
    candidates = [c.chunk for c in ranked]

    if args.no_rag:
        baseline = run_pipeline("no-rag", query_embedding, [], strategy="none", top_k=args.top_k)
    else:
        baseline = run_pipeline("baseline", query_embedding, candidates, strategy="none", top_k=args.top_k)
    filtered = run_pipeline(
        args.strategy,
        query_embedding,
        candidates,
        strategy=args.strategy,
        top_k=args.top_k,
        min_similarity=args.min_similarity,
        judgments=_judgments_for(args, args.question, ranked, client),
    )

    for run in (baseline, filtered):
        answer = generate_answer(args.question, run.evidence, client)
        run.answer = answer.text
        run.tokens_used = answer.tokens_used
        print(f"\n[{run.name}] {answer.text}")

    print(format_report(compare_runs(baseline, filtered)))
    store.close()


def cmd_validate(args: argparse.Namespace) -> None:
    """Validate the citations of a saved answer against a saved evidence set."""
    from pydantic import TypeAdapter

    from core.models import Chunk
    from generation.citations import extract_and_validate_citations

    answer = Path(args.answer).read_text(encoding="utf-8")
    evidence = TypeAdapter(list[Chunk]).validate_json(
        Path(args.evidence).read_text(encoding="utf-8")
    )
    print_citations(extract_and_validate_citations(answer, evidence))


def cmd_stats(args: argparse.Namespace) -> None:
    """Show chunk store statistics."""
    from storage.chunk_store import ChunkStore

    store = ChunkStore()
    total = store.count()
    print(f"Total chunks in store: {total}")
    store.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="RAG Evidence Pipeline CLI")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    def add_filter_args(p: argparse.ArgumentParser) -> None:
        p.add_argument("--strategy", default=settings.filter_strategy,
                       choices=["none", "threshold", "reranker", "hybrid"])
        p.add_argument("--top-k", type=int, default=settings.top_k)
        p.add_argument("--min-similarity", type=float, default=settings.min_similarity)

    # ask
    p_ask = subparsers.add_parser("ask", help="Ask a question")
    p_ask.add_argument("question", help="Question to ask")
    add_filter_args(p_ask)

    # compare
    p_compare = subparsers.add_parser("compare", help="Compare unfiltered vs filtered evidence")
    p_compare.add_argument("question", help="Question to ask")
    p_compare.add_argument("--no-rag", action="store_true", help="Use a no-context baseline")
    add_filter_args(p_compare)

    # validate
    p_validate = subparsers.add_parser("validate", help="Validate citations offline")
    p_validate.add_argument("answer", help="Path to answer text file")
    p_validate.add_argument("evidence", help="Path to JSON list of evidence chunks")

    # stats
    subparsers.add_parser("stats", help="Show store statistics")

    args = parser.parse_args()
    setup_logging(args.verbose)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    commands = {
        "ask": cmd_ask,
        "compare": cmd_compare,
        "validate": cmd_validate,
        "stats": cmd_stats,
    }
    commands[args.command](args)


if __name__ == "__main__":
    main()
