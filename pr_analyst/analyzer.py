"""Entry point — validate a request, consult the cache, pick a pipeline."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Optional

from pr_analyst import arch_docs, llm
from pr_analyst.aggregator import aggregate_chunks, merge_chunk_risks
from pr_analyst.cache import ResultCache, fingerprint
from pr_analyst.chunking import chunk_diff, estimate_tokens, needs_chunking
from pr_analyst.config import (
    BEDROCK_MODEL_ID,
    CHUNK_MAX_TOKENS,
    CHUNK_MAX_WORKERS,
    CHUNK_OVERLAP_TOKENS,
    MAX_NORMAL_TOKENS,
)
from pr_analyst.diff_parser import parse_diff
from pr_analyst.errors import InvalidRequestError, OracleError
from pr_analyst.llm import CompletionFn, ProgressCallback
from pr_analyst.llm_parsing import parse_response
from pr_analyst.models import (
    OUTPUT_FORMATS,
    AggregatedResult,
    AnalysisMode,
    AnalysisOptions,
    AnalysisPath,
    Chunk,
    ChunkAnalysis,
)
from pr_analyst.orchestrator import AnalysisOrchestrator
from pr_analyst.priority import prioritize, score
from pr_analyst.prompts import (
    FILE_ANALYSIS_SYSTEM,
    SYNTHESIS_SYSTEM,
    build_chunk_message,
    build_consolidation_message,
)
from pr_analyst.source_host import SourceHost

logger = logging.getLogger(__name__)


def _validate(diff_text: str, mode: AnalysisMode, options: AnalysisOptions) -> None:
    if not diff_text or not diff_text.strip():
        raise InvalidRequestError("Diff is empty; nothing to analyze")
    if not mode.any_requested:
        raise InvalidRequestError(
            "At least one of summary, risks or complexity must be requested"
        )
    if options.output_format not in OUTPUT_FORMATS:
        raise InvalidRequestError(
            f"Unknown output format {options.output_format!r}; "
            f"expected one of {', '.join(OUTPUT_FORMATS)}"
        )


def analyze(
    diff_text: str,
    title: Optional[str] = None,
    mode: Optional[AnalysisMode] = None,
    options: Optional[AnalysisOptions] = None,
    *,
    complete: Optional[CompletionFn] = None,
    source: Optional[SourceHost] = None,
    cache: Optional[ResultCache] = None,
    on_progress: ProgressCallback | None = None,
) -> AggregatedResult:
    """
    Analyze a unified diff and return one aggregated review.

    Args:
        diff_text: Unified diff text (e.g. from `git diff`)
        title: Optional pull-request title passed into every prompt
        mode: Which sections to produce; all of them when None
        options: Cache bypass, forced path, output format and architecture docs
        complete: Completion oracle; Bedrock streaming when None
        source: Optional source host for full contents of added/deleted files
        cache: Optional result cache; a hit skips every oracle call
        on_progress: Optional callback for streaming progress updates

    Raises:
        InvalidRequestError: Empty diff, nothing requested, bad output format
        ConfigurationError: No AWS credentials for the default oracle
    """
    mode = mode or AnalysisMode()
    options = options or AnalysisOptions()
    _validate(diff_text, mode, options)

    if complete is None:
        llm.ensure_credentials()
        complete = llm.invoke

    if options.chunked is None:
        chunked = needs_chunking(diff_text, MAX_NORMAL_TOKENS)
    else:
        chunked = options.chunked
    path = AnalysisPath.CHUNKED if chunked else AnalysisPath.ITERATIVE

    files = parse_diff(diff_text)
    arch_context = ""
    if options.use_arch_docs and options.repo_path:
        arch_context = arch_docs.load_context(options.repo_path, files, title, diff_text)

    use_cache = cache is not None and not options.no_cache
    key = fingerprint(
        str(path),
        diff_text,
        title,
        mode,
        BEDROCK_MODEL_ID,
        {
            "output_format": options.output_format,
            "full_content": source is not None,
            "arch_docs": arch_context,
        },
    )
    if use_cache:
        cached = cache.get(key)
        if cached is not None:
            return cached

    logger.info(
        "Analyzing diff via %s path (~%d tokens)", path, estimate_tokens(diff_text)
    )
    if chunked:
        result = analyze_chunked(
            diff_text,
            title,
            mode,
            options.output_format,
            complete=complete,
            on_progress=on_progress,
            arch_context=arch_context,
        )
    else:
        orchestrator = AnalysisOrchestrator(
            complete=complete,
            source=source,
            mode=mode,
            output_format=options.output_format,
            on_progress=on_progress,
            arch_context=arch_context,
        )
        result = orchestrator.run(files, title)

    if use_cache and not result.complete:
        logger.info("Not caching partial result for %s", key[:12])
    elif use_cache:
        try:
            cache.set(key, result)
        except OSError as e:
            logger.warning("Could not write cache entry: %s", e)

    return result


# ── Chunked Path ─────────────────────────────────────────────────────────────

_CHUNK_ATTEMPTS = 2


def _analyze_chunk(
    chunk: Chunk,
    total: int,
    mode: AnalysisMode,
    output_format: str,
    title: Optional[str],
    complete: CompletionFn,
    on_progress: ProgressCallback | None,
    arch_context: str = "",
) -> Optional[ChunkAnalysis]:
    """Analyze one chunk, retrying once; None if both attempts fail."""
    for attempt in range(1, _CHUNK_ATTEMPTS + 1):
        try:
            completion = complete(
                FILE_ANALYSIS_SYSTEM,
                build_chunk_message(
                    chunk, total, mode, output_format, title, arch_context
                ),
                tool=f"analyze_chunk[{chunk.index + 1}/{total}]",
                on_progress=on_progress,
            )
        except OracleError as e:
            logger.warning(
                "Chunk %d/%d failed (attempt %d/%d): %s",
                chunk.index + 1,
                total,
                attempt,
                _CHUNK_ATTEMPTS,
                e,
            )
            continue

        parsed = parse_response(completion.text)
        return ChunkAnalysis(
            index=chunk.index,
            summary=parsed.summary,
            risks=list(parsed.risks) if mode.risks else [],
            complexity=parsed.complexity,
            tokens_used=completion.total_tokens,
        )
    return None


def analyze_chunked(
    diff_text: str,
    title: Optional[str],
    mode: AnalysisMode,
    output_format: str = "terminal",
    *,
    complete: CompletionFn,
    on_progress: ProgressCallback | None = None,
    max_chunk_tokens: int = CHUNK_MAX_TOKENS,
    overlap_tokens: int = CHUNK_OVERLAP_TOKENS,
    max_workers: int = CHUNK_MAX_WORKERS,
    arch_context: str = "",
) -> AggregatedResult:
    """Split an oversized diff and analyze the chunks concurrently.

    Chunk analyses are merged in chunk order regardless of completion order,
    then a consolidation call turns the per-part summaries into one review.
    """
    chunks = chunk_diff(diff_text, max_chunk_tokens, overlap_tokens)
    total = len(chunks)
    analyses: list[ChunkAnalysis] = []
    failed: list[int] = []

    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, total))) as pool:
        futures = {
            pool.submit(
                _analyze_chunk,
                chunk,
                total,
                mode,
                output_format,
                title,
                complete,
                on_progress,
                arch_context,
            ): chunk
            for chunk in chunks
        }
        for future in as_completed(futures):
            chunk = futures[future]
            analysis = future.result()
            if analysis is None:
                logger.error("Dropping chunk %d/%d after failed analysis", chunk.index + 1, total)
                failed.append(chunk.index)
            else:
                analyses.append(analysis)

    analyses.sort(key=lambda a: a.index)
    tokens_used = sum(a.tokens_used for a in analyses)

    consolidation = None
    consolidated = True
    if len(analyses) > 1:
        try:
            completion = complete(
                SYNTHESIS_SYSTEM,
                build_consolidation_message(
                    analyses, merge_chunk_risks(analyses), output_format, title
                ),
                tool="consolidate_chunks",
                on_progress=on_progress,
            )
            tokens_used += completion.total_tokens
            if completion.text.strip():
                consolidation = parse_response(completion.text)
        except OracleError as e:
            consolidated = False
            logger.warning("Chunk consolidation failed, merging parts directly: %s", e)

    notes = []
    if total > 1:
        notes.append(
            f"This diff (~{estimate_tokens(diff_text)} tokens) was analyzed in "
            f"{total} overlapping parts; cross-part interactions may be under-reported."
        )
    for index in sorted(failed):
        notes.append(f"Part {index + 1} of {total} could not be analyzed.")

    return aggregate_chunks(
        analyses,
        consolidation,
        model=BEDROCK_MODEL_ID,
        mode=mode,
        tokens_used=tokens_used,
        notes=notes,
        complete=consolidated and not failed,
    )


# ── File Ranking ─────────────────────────────────────────────────────────────


def rank_files(diff_text: str) -> list[dict]:
    """Parsed files in analysis-priority order, with their scores."""
    if not diff_text or not diff_text.strip():
        raise InvalidRequestError("Diff is empty; nothing to rank")
    return [
        {
            "path": f.path,
            "status": str(f.status),
            "additions": f.additions,
            "deletions": f.deletions,
            "language": f.language,
            "score": score(f),
        }
        for f in prioritize(parse_diff(diff_text))
    ]
