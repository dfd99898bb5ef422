"""Analysis orchestrator — plan, analyze file by file, then synthesize.

One orchestrator run owns one :class:`AnalysisState`. The loop asks the
reasoning call what to do next, but every decision is checked against the
state before it is acted on: unknown targets fall back to the first pending
file and an early "synthesize" is only honored once enough of the diff has
been covered.
"""

from __future__ import annotations

import logging
import math
import time
from typing import Optional

from pr_analyst import llm
from pr_analyst.aggregator import aggregate_state, fallback_synthesis, zero_coverage_result
from pr_analyst.config import (
    ANALYSIS_TEMPERATURE,
    BEDROCK_MAX_TOKENS,
    BEDROCK_MODEL_ID,
    DECISION_PREVIEW_FILES,
    FALLBACK_GROUP_SIZE,
    FOCUSED_STRATEGY_FILE_THRESHOLD,
    HIGH_COMPLEXITY_INSIGHT,
    ITERATIONS_PER_FILE,
    MIN_MAX_ITERATIONS,
    PLANNING_PREVIEW_FILES,
    REASONING_MAX_TOKENS,
    REASONING_TEMPERATURE,
    SYNTHESIZE_COVERAGE,
    SYNTHESIZE_MIN_FILES,
)
from pr_analyst.errors import OracleError, SourceHostError
from pr_analyst.llm import Completion, CompletionFn, ProgressCallback
from pr_analyst.llm_parsing import parse_next_action, parse_response, parse_strategy
from pr_analyst.models import (
    Action,
    AggregatedResult,
    AnalysisMode,
    AnalysisState,
    FileAnalysis,
    FileChange,
    FileStatus,
    NextAction,
    Strategy,
)
from pr_analyst.priority import prioritize
from pr_analyst.prompts import (
    FILE_ANALYSIS_SYSTEM,
    REASONING_SYSTEM,
    SYNTHESIS_SYSTEM,
    build_file_analysis_message,
    build_next_action_message,
    build_strategy_message,
    build_synthesis_message,
)
from pr_analyst.source_host import SourceHost

logger = logging.getLogger(__name__)

MAX_ATTEMPTS_PER_FILE = 2


def max_iterations_for(file_count: int) -> int:
    return max(MIN_MAX_ITERATIONS, ITERATIONS_PER_FILE * file_count)


def can_synthesize(analyzed: int, total: int) -> bool:
    """Whether enough files are covered for a "synthesize" decision to stand."""
    if analyzed == 0 or total == 0:
        return False
    if analyzed / total >= SYNTHESIZE_COVERAGE:
        return True
    return analyzed >= min(SYNTHESIZE_MIN_FILES, total * SYNTHESIZE_COVERAGE)


def fallback_decision(state: AnalysisState) -> NextAction:
    """Deterministic next step: the top pending files by priority."""
    ranked = prioritize(state.pending, state.analyzed)
    targets = [f.path for f in ranked[:FALLBACK_GROUP_SIZE]]
    action = Action.ANALYZE_GROUP if len(targets) > 1 else Action.ANALYZE_FILE
    return NextAction(
        action=action,
        targets=targets,
        reasoning="Fallback: analyzing highest-priority pending files",
    )


class AnalysisOrchestrator:
    """Drives one iterative, file-by-file analysis of a parsed diff."""

    def __init__(
        self,
        complete: Optional[CompletionFn] = None,
        source: Optional[SourceHost] = None,
        mode: Optional[AnalysisMode] = None,
        output_format: str = "terminal",
        model_id: str = BEDROCK_MODEL_ID,
        on_progress: ProgressCallback | None = None,
        arch_context: str = "",
    ) -> None:
        self.complete = complete or llm.invoke
        self.source = source
        self.mode = mode or AnalysisMode()
        self.output_format = output_format
        self.model_id = model_id
        self.on_progress = on_progress
        self.arch_context = arch_context
        self._started = time.monotonic()

        # Closed set of actions; anything else never reaches this table
        self._handlers = {
            Action.ANALYZE_FILE: self._do_analyze_file,
            Action.ANALYZE_GROUP: self._do_analyze_group,
            Action.SYNTHESIZE: self._do_synthesize,
        }

    # ── oracle plumbing ──────────────────────────────────────────────────

    def _call(
        self,
        state: AnalysisState,
        system_prompt: str,
        user_message: str,
        tool: str,
        max_tokens: int = BEDROCK_MAX_TOKENS,
        temperature: float = ANALYSIS_TEMPERATURE,
    ) -> Completion:
        completion = self.complete(
            system_prompt,
            user_message,
            tool=tool,
            max_tokens=max_tokens,
            temperature=temperature,
            on_progress=self.on_progress,
        )
        state.tokens_used += completion.total_tokens
        return completion

    def _notify(self, message: str) -> None:
        logger.info("%s", message)
        llm.report_progress(
            self.on_progress, 0, time.monotonic() - self._started, message
        )

    # ── phases ───────────────────────────────────────────────────────────

    def run(self, files: list[FileChange], title: Optional[str] = None) -> AggregatedResult:
        """Analyze ``files`` and return the aggregated result.

        Never raises for oracle failures: undecidable steps fall back to
        deterministic choices, files that fail twice are dropped, and a run
        in which nothing could be analyzed returns a degraded result.
        """
        self._started = time.monotonic()
        state = AnalysisState(pending=list(files), mode=self.mode)
        if not files:
            return zero_coverage_result(state, self.model_id)

        self._plan(state, title)

        max_iterations = max_iterations_for(len(files))
        while state.pending and state.iteration < max_iterations:
            state.iteration += 1
            decision = self._decide(state)
            done = self._handlers[decision.action](state, decision, title)
            if done:
                break

        if state.pending and state.iteration >= max_iterations:
            logger.warning(
                "Iteration limit %d reached with %d file(s) pending",
                max_iterations,
                len(state.pending),
            )
            state.insights.append(
                f"Iteration limit reached; {len(state.pending)} file(s) were not analyzed"
            )

        return self._synthesize(state, title)

    def _plan(self, state: AnalysisState, title: Optional[str]) -> None:
        files = state.pending
        parsed = None
        try:
            completion = self._call(
                state,
                REASONING_SYSTEM,
                build_strategy_message(files, title, PLANNING_PREVIEW_FILES),
                tool="plan_strategy",
                max_tokens=REASONING_MAX_TOKENS,
                temperature=REASONING_TEMPERATURE,
            )
            parsed = parse_strategy(completion.text)
        except OracleError as e:
            logger.warning("Strategy planning failed, using fallback: %s", e)

        if parsed is None:
            strategy = (
                Strategy.FOCUSED
                if len(files) > FOCUSED_STRATEGY_FILE_THRESHOLD
                else Strategy.COMPREHENSIVE
            )
            reasoning = f"Fallback strategy for {len(files)} file(s)"
        else:
            strategy, reasoning = parsed

        state.strategy = strategy
        state.log(f"Strategy: {strategy} - {reasoning}")
        self._notify(f"Planning complete: {strategy} strategy for {len(files)} file(s)")

    def _decide(self, state: AnalysisState) -> NextAction:
        ranked = prioritize(state.pending, state.analyzed)
        total = state.total_files
        required = max(0, math.ceil(total * SYNTHESIZE_COVERAGE) - len(state.analyzed))

        decision = None
        try:
            completion = self._call(
                state,
                REASONING_SYSTEM,
                build_next_action_message(
                    strategy=state.strategy,
                    analyzed_count=len(state.analyzed),
                    pending=ranked,
                    risk_count=len(state.risks),
                    insight_count=len(state.insights),
                    preview=DECISION_PREVIEW_FILES,
                    required_before_synthesis=required,
                ),
                tool="decide_next_action",
                max_tokens=REASONING_MAX_TOKENS,
                temperature=REASONING_TEMPERATURE,
            )
            decision = parse_next_action(completion.text)
        except OracleError as e:
            logger.warning("Next-action decision failed, using fallback: %s", e)

        if decision is None:
            decision = fallback_decision(state)

        state.log(
            f"Iteration {state.iteration}: {decision.action} "
            f"[{', '.join(decision.targets)}] - {decision.reasoning or 'no reasoning given'}"
        )
        return decision

    def _synthesize(self, state: AnalysisState, title: Optional[str]) -> AggregatedResult:
        if not state.analyzed:
            logger.warning("No files analyzed; returning zero-coverage result")
            return zero_coverage_result(state, self.model_id)

        self._notify(f"Synthesizing findings from {len(state.analyzed)} file(s)")
        file_summaries = "\n\n".join(
            f"{path}:\n{a.summary}\nComplexity: {a.complexity}/5"
            for path, a in state.analyzed.items()
        )
        try:
            completion = self._call(
                state,
                SYNTHESIS_SYSTEM,
                build_synthesis_message(
                    file_summaries,
                    state.context_log,
                    len(state.analyzed),
                    self.output_format,
                    title,
                    arch_context=self.arch_context,
                ),
                tool="synthesize",
            )
        except OracleError as e:
            logger.warning("Synthesis failed, using deterministic fallback: %s", e)
            return fallback_synthesis(state, self.model_id)

        if not completion.text.strip():
            logger.warning("Empty synthesis response, using deterministic fallback")
            return fallback_synthesis(state, self.model_id)

        return aggregate_state(state, parse_response(completion.text), self.model_id)

    # ── action handlers (return True to stop looping) ────────────────────

    def _resolve_targets(self, state: AnalysisState, targets: list[str]) -> list[FileChange]:
        resolved: list[FileChange] = []
        for path in targets:
            file = state.find_pending(path)
            if file is not None and file not in resolved:
                resolved.append(file)
        if not resolved:
            if targets:
                logger.warning(
                    "Decision targets not pending (%s); using %s",
                    ", ".join(targets),
                    state.pending[0].path,
                )
            resolved = [state.pending[0]]
        return resolved

    def _do_analyze_file(
        self, state: AnalysisState, decision: NextAction, title: Optional[str]
    ) -> bool:
        file = self._resolve_targets(state, decision.targets)[0]
        self._analyze_with_retry(state, file, title)
        return False

    def _do_analyze_group(
        self, state: AnalysisState, decision: NextAction, title: Optional[str]
    ) -> bool:
        group = self._resolve_targets(state, decision.targets)
        group_paths = [f.path for f in group] if len(group) > 1 else None
        for file in group:
            self._analyze_with_retry(state, file, title, group_paths)
        return False

    def _do_synthesize(
        self, state: AnalysisState, decision: NextAction, title: Optional[str]
    ) -> bool:
        if can_synthesize(len(state.analyzed), state.total_files):
            return True

        file = state.pending[0]
        logger.info(
            "Premature synthesize (%d/%d analyzed); analyzing %s instead",
            len(state.analyzed),
            state.total_files,
            file.path,
        )
        state.log(f"Synthesis deferred: coverage too low, analyzing {file.path}")
        self._analyze_with_retry(state, file, title)
        return False

    # ── per-file analysis ────────────────────────────────────────────────

    def _analyze_with_retry(
        self,
        state: AnalysisState,
        file: FileChange,
        title: Optional[str],
        group_paths: Optional[list[str]] = None,
    ) -> bool:
        last_error: Optional[Exception] = None
        for attempt in range(1, MAX_ATTEMPTS_PER_FILE + 1):
            try:
                analysis = self._analyze_file(state, file, title, group_paths)
            except OracleError as e:
                last_error = e
                logger.warning(
                    "Analysis of %s failed (attempt %d/%d): %s",
                    file.path,
                    attempt,
                    MAX_ATTEMPTS_PER_FILE,
                    e,
                )
                continue

            state.record(file, analysis)
            if analysis.complexity >= HIGH_COMPLEXITY_INSIGHT:
                state.insights.append(
                    f"High complexity in {file.path}: {analysis.complexity}/5"
                )
            self._notify(
                f"Analyzed {file.display_name} "
                f"({len(state.analyzed)}/{state.total_files})"
            )
            return True

        state.drop(file)
        state.insights.append(f"Skipped {file.path}: analysis failed ({last_error})")
        logger.error("Dropping %s after failed analysis: %s", file.path, last_error)
        return False

    def _file_content(self, file: FileChange) -> tuple[str, bool]:
        """Content to show the oracle, and whether it is the full file."""
        if self.source is None or file.status not in (FileStatus.ADDED, FileStatus.DELETED):
            return file.diff_text, False

        if file.status == FileStatus.ADDED:
            path, ref = file.path, self.source.head_ref
        else:
            path, ref = file.old_path or file.path, self.source.base_ref
        if not ref:
            return file.diff_text, False

        try:
            content = self.source.get_file_content(path, ref)
        except SourceHostError as e:
            logger.warning("Could not fetch %s@%s, using diff: %s", path, ref, e)
            return file.diff_text, False

        if not content:
            return file.diff_text, False
        if file.status == FileStatus.DELETED:
            return f"{content}\n\nRemoval diff:\n{file.diff_text}", True
        return content, True

    def _analyze_file(
        self,
        state: AnalysisState,
        file: FileChange,
        title: Optional[str],
        group_paths: Optional[list[str]],
    ) -> FileAnalysis:
        content, full_content = self._file_content(file)
        completion = self._call(
            state,
            FILE_ANALYSIS_SYSTEM,
            build_file_analysis_message(
                file,
                content,
                state.mode,
                self.output_format,
                title=title,
                group_paths=group_paths,
                full_content=full_content,
                arch_context=self.arch_context,
            ),
            tool=f"analyze_file[{file.path}]",
        )
        parsed = parse_response(completion.text)
        return FileAnalysis(
            summary=parsed.summary,
            risks=list(parsed.risks) if state.mode.risks else [],
            complexity=parsed.complexity,
            tokens_used=completion.total_tokens,
        )
