"""Aggregation — merge per-file or per-chunk analyses into one result."""

from __future__ import annotations

import logging
import math
from typing import Optional

from pr_analyst.config import DEFAULT_COMPLEXITY
from pr_analyst.llm_parsing import ParsedResponse
from pr_analyst.models import (
    AggregatedResult,
    AnalysisMode,
    AnalysisPath,
    AnalysisState,
    ChunkAnalysis,
    FileAnalysis,
)

logger = logging.getLogger(__name__)

MAX_FALLBACK_RECOMMENDATIONS = 5


def tag_risk(risk: str, path: str) -> str:
    """Prefix ``risk`` with its originating file unless it already names one."""
    if "[File:" in risk or f"[{path}]" in risk:
        return risk
    return f"[File: {path}] {risk}"


def _dedupe(risks) -> list[str]:
    # Exact-text equality only; first occurrence keeps its position
    return list(dict.fromkeys(risks))


def merge_file_risks(analyses: dict[str, FileAnalysis]) -> list[str]:
    """Tagged, deduplicated risks in analysis order."""
    return _dedupe(
        tag_risk(risk, path)
        for path, analysis in analyses.items()
        for risk in analysis.risks
    )


def merge_chunk_risks(analyses: list[ChunkAnalysis]) -> list[str]:
    ordered = sorted(analyses, key=lambda a: a.index)
    return _dedupe(risk for a in ordered for risk in a.risks)


def _clamp(value: int) -> int:
    return max(1, min(5, value))


def max_complexity(analyses: dict[str, FileAnalysis]) -> int:
    return _clamp(max((a.complexity for a in analyses.values()), default=1))


def mean_complexity(values: list[int]) -> int:
    """Arithmetic mean rounded half up; DEFAULT_COMPLEXITY when empty."""
    if not values:
        return DEFAULT_COMPLEXITY
    return _clamp(math.floor(sum(values) / len(values) + 0.5))


def _common_fields(state: AnalysisState, model: str) -> dict:
    return {
        "tokens_used": state.tokens_used,
        "insights": tuple(state.insights),
        "context_log": tuple(state.context_log),
        "file_analyses": dict(state.analyzed),
        "strategy": state.strategy,
        "path": AnalysisPath.ITERATIVE,
        "model": model,
        "mode": state.mode,
        "complete": bool(state.analyzed) and not state.dropped,
    }


def zero_coverage_result(
    state: AnalysisState, model: str, path: AnalysisPath = AnalysisPath.ITERATIVE
) -> AggregatedResult:
    """Degraded result for a run in which nothing could be analyzed."""
    parts = ["No files were analyzed."]
    if state.pending:
        parts.append(f"{len(state.pending)} file(s) remain pending analysis.")
    if state.dropped:
        parts.append(f"{len(state.dropped)} file(s) failed analysis and were skipped.")
    fields = _common_fields(state, model)
    fields["path"] = path
    return AggregatedResult(
        summary=" ".join(parts),
        risks=tuple(state.risks),
        complexity=DEFAULT_COMPLEXITY,
        recommendations=("Re-run the analysis; no analyzable changes were covered.",),
        **fields,
    )


def aggregate_state(
    state: AnalysisState, synthesis: ParsedResponse, model: str
) -> AggregatedResult:
    """File-level aggregation after a successful synthesis call.

    Complexity is the maximum over analyzed files so one risky file is not
    diluted by many trivial ones.
    """
    summary = synthesis.summary or f"Analyzed {len(state.analyzed)} file(s)."
    return AggregatedResult(
        summary=summary,
        risks=tuple(merge_file_risks(state.analyzed)),
        complexity=max_complexity(state.analyzed),
        recommendations=tuple(synthesis.recommendations),
        **_common_fields(state, model),
    )


def fallback_synthesis(state: AnalysisState, model: str) -> AggregatedResult:
    """Deterministic synthesis from already collected analyses and risks.

    Never marked complete.
    """
    risks = list(state.risks)
    summary = f"Analyzed {len(state.analyzed)} file(s). " + (
        f"Found {len(risks)} risk(s)." if risks else "No major risks identified."
    )
    if state.dropped:
        summary += f" {len(state.dropped)} file(s) could not be analyzed."
    fields = _common_fields(state, model)
    fields["complete"] = False
    return AggregatedResult(
        summary=summary,
        risks=tuple(risks),
        complexity=mean_complexity([a.complexity for a in state.analyzed.values()]),
        recommendations=tuple(state.insights[:MAX_FALLBACK_RECOMMENDATIONS]),
        **fields,
    )


def aggregate_chunks(
    analyses: list[ChunkAnalysis],
    consolidation: Optional[ParsedResponse],
    model: str,
    mode: AnalysisMode,
    tokens_used: int,
    notes: list[str] | None = None,
    complete: bool = True,
) -> AggregatedResult:
    """Chunk-level aggregation.

    Risks are deduplicated in chunk order. Complexity is the rounded mean of
    the chunks unless the consolidation pass supplied its own rating.
    ``complete`` is False when any chunk failed.
    """
    ordered = sorted(analyses, key=lambda a: a.index)
    complexity = mean_complexity([a.complexity for a in ordered])
    if not ordered:
        summary = "No part of the diff could be analyzed."
    elif len(ordered) == 1:
        summary = ordered[0].summary
    else:
        summary = "\n\n".join(f"[Part {a.index + 1}] {a.summary}" for a in ordered)
    recommendations: list[str] = []

    if consolidation is not None:
        if consolidation.has_complexity:
            complexity = _clamp(consolidation.complexity)
        if consolidation.summary:
            summary = consolidation.summary
        recommendations.extend(consolidation.recommendations)

    recommendations.extend(notes or [])

    return AggregatedResult(
        summary=summary,
        risks=tuple(merge_chunk_risks(ordered)),
        complexity=complexity,
        recommendations=tuple(recommendations),
        tokens_used=tokens_used,
        path=AnalysisPath.CHUNKED,
        model=model,
        mode=mode,
        complete=complete and bool(ordered),
    )
