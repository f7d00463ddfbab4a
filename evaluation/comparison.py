"""Before/after metrics for two evidence pipeline runs."""

from __future__ import annotations

import logging

import numpy as np

from core.models import ComparisonReport, PipelineRun, RunMetrics
from evaluation.tokens import TokenCounter, estimate_tokens

logger = logging.getLogger(__name__)


def run_metrics(run: PipelineRun, token_counter: TokenCounter = estimate_tokens) -> RunMetrics:
    """Summarize one run: chunk counts, similarity averages and evidence size."""
    if run.filter_stats is not None:
        avg_before = run.filter_stats.avg_similarity_before
    elif run.retrieved:
        avg_before = float(np.mean([c.similarity for c in run.retrieved]))
    else:
        avg_before = 0.0

    if run.evidence:
        avg_after = float(np.mean([c.similarity for c in run.evidence]))
    else:
        avg_after = 0.0

    return RunMetrics(
        name=run.name,
        strategy=run.strategy,
        retrieved_chunks=len(run.retrieved),
        evidence_chunks=len(run.evidence),
        avg_similarity_before=avg_before,
        avg_similarity_after=avg_after,
        evidence_tokens=sum(token_counter(c.content) for c in run.evidence),
        tokens_used=run.tokens_used,
    )


def _analysis(a: RunMetrics, b: RunMetrics, tokens_saved: int) -> str:
    lines = [
        f"'{a.name}' used {a.evidence_chunks} of {a.retrieved_chunks} retrieved chunks; "
        f"'{b.name}' used {b.evidence_chunks} of {b.retrieved_chunks}."
    ]

    delta = b.avg_similarity_after - a.avg_similarity_after
    if a.evidence_chunks and b.evidence_chunks:
        if abs(delta) < 1e-9:
            lines.append("Average evidence similarity is unchanged.")
        else:
            direction = "higher" if delta > 0 else "lower"
            lines.append(
                f"Average evidence similarity is {abs(delta):.1%} {direction} in '{b.name}' "
                f"({a.avg_similarity_after:.1%} -> {b.avg_similarity_after:.1%})."
            )
    elif not b.evidence_chunks and a.evidence_chunks:
        lines.append(f"'{b.name}' answers without any evidence.")
    elif not a.evidence_chunks and b.evidence_chunks:
        lines.append(f"'{a.name}' answers without any evidence.")

    if tokens_saved > 0:
        lines.append(f"'{b.name}' sends about {tokens_saved} fewer evidence tokens.")
    elif tokens_saved < 0:
        lines.append(f"'{b.name}' sends about {-tokens_saved} more evidence tokens.")
    else:
        lines.append("Both runs send the same amount of evidence.")

    if a.tokens_used is not None and b.tokens_used is not None:
        lines.append(
            f"Total tokens used: {a.tokens_used} ('{a.name}') vs {b.tokens_used} ('{b.name}')."
        )
    return " ".join(lines)


def compare_runs(
    run_a: PipelineRun,
    run_b: PipelineRun,
    token_counter: TokenCounter = estimate_tokens,
) -> ComparisonReport:
    """Compare two runs of the pipeline over the same query.

    ``tokens_saved`` is run A's evidence tokens minus run B's, so it is
    positive when B (e.g. the filtered run) sends less context.

    Args:
        run_a: Reference run (e.g. unfiltered baseline)
        run_b: Run being evaluated (e.g. filtered)
        token_counter: Counts tokens in a chunk's text

    Returns:
        ComparisonReport with per-run metrics and a short analysis
    """
    metrics_a = run_metrics(run_a, token_counter)
    metrics_b = run_metrics(run_b, token_counter)
    tokens_saved = metrics_a.evidence_tokens - metrics_b.evidence_tokens

    logger.info(
        "Compared '%s' vs '%s': %d -> %d evidence chunks, tokens saved %d",
        metrics_a.name,
        metrics_b.name,
        metrics_a.evidence_chunks,
        metrics_b.evidence_chunks,
        tokens_saved,
    )
    return ComparisonReport(
        run_a=metrics_a,
        run_b=metrics_b,
        tokens_saved=tokens_saved,
        analysis=_analysis(metrics_a, metrics_b, tokens_saved),
    )


def format_report(report: ComparisonReport) -> str:
    """Render a comparison report as a fixed-width table."""
    a, b = report.run_a, report.run_b
    rows = [
        ("Strategy", a.strategy, b.strategy),
        ("Retrieved chunks", a.retrieved_chunks, b.retrieved_chunks),
        ("Evidence chunks", a.evidence_chunks, b.evidence_chunks),
        ("Avg similarity before", f"{a.avg_similarity_before:.1%}", f"{b.avg_similarity_before:.1%}"),
        ("Avg similarity after", f"{a.avg_similarity_after:.1%}", f"{b.avg_similarity_after:.1%}"),
        ("Evidence tokens", a.evidence_tokens, b.evidence_tokens),
        ("Tokens used", a.tokens_used if a.tokens_used is not None else "-",
         b.tokens_used if b.tokens_used is not None else "-"),
    ]
    lines = ["=" * 70, f"  {'':24}{a.name[:20]:>20}{b.name[:20]:>20}", "-" * 70]
    for label, value_a, value_b in rows:
        lines.append(f"  {label:24}{str(value_a):>20}{str(value_b):>20}")
    lines.append("-" * 70)
    lines.append(f"  Tokens saved: {report.tokens_saved:+d}")
    lines.append(f"  {report.analysis}")
    lines.append("=" * 70)
    return "\n".join(lines)
