#!/usr/bin/env python3
"""Run the citation benchmark against the indexed knowledge base."""

import argparse
import logging
import sys

from core.config import settings


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    )


def main() -> None:
    parser = argparse.ArgumentParser(description="RAG Citation Benchmark")
    parser.add_argument("-v", "--verbose", action="store_true")
    parser.add_argument(
        "--strategy", default=settings.filter_strategy,
        choices=["none", "threshold", "reranker", "hybrid"],
    )
    parser.add_argument("--min-valid", type=float, default=80.0,
                        help="Minimum valid-citation percentage to pass")
    args = parser.parse_args()
    setup_logging(args.verbose)

    from openai import OpenAI

    from evaluation.benchmark import print_benchmark_results, run_citation_benchmark
    from generation.generator import generate_answer
    from retrieval.llm_judge import judge_relevance
    from retrieval.pipeline import run_pipeline
    from retrieval.retriever import Retriever
    from storage.chunk_store import ChunkStore

    client = OpenAI(api_key=settings.openai_api_key)
    store = ChunkStore()
    retriever = Retriever(store, client)

    def ask(question: str):
        query_embedding, ranked = retriever.retrieve(question)
        judgments = None
        if args.strategy in ("reranker", "hybrid"):
            judgments = judge_relevance(question, ranked[: settings.rerank_max_chunks], client)
        run = run_pipeline(
            args.strategy,
            query_embedding,
            [c.chunk for c in ranked],
            strategy=args.strategy,
            judgments=judgments,
        )
        answer = generate_answer(question, run.evidence, client)
        return answer.text, run.evidence

    print(f"Running citation benchmark with strategy '{args.strategy}'...")
    results, metrics = run_citation_benchmark(ask)
    print_benchmark_results(results, metrics)

    store.close()

    if metrics.valid_citations_percentage < args.min_valid:
        print(f"\nTarget {args.min_valid:.0f}% valid citations not met")
        sys.exit(1)


if __name__ == "__main__":
    main()
