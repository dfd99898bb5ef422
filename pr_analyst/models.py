"""Data models for the pull-request analysis agent."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class FileStatus(str, Enum):
    """How a file was touched by the diff."""

    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"

    def __str__(self) -> str:
        return self.value

    @property
    def label(self) -> str:
        """Short suffix used in log lines and prompt titles."""
        return {
            FileStatus.ADDED: " (NEW)",
            FileStatus.DELETED: " (DELETED)",
            FileStatus.RENAMED: " (RENAMED)",
        }.get(self, "")


class Strategy(str, Enum):
    """Advisory analysis strategy chosen during planning."""

    COMPREHENSIVE = "comprehensive"
    FOCUSED = "focused"
    DEEP_DIVE = "deep-dive"

    def __str__(self) -> str:
        return self.value


class Action(str, Enum):
    """Closed set of moves the orchestrator loop can make."""

    ANALYZE_FILE = "analyze_file"
    ANALYZE_GROUP = "analyze_group"
    SYNTHESIZE = "synthesize"

    def __str__(self) -> str:
        return self.value


class AnalysisPath(str, Enum):
    """Which pipeline produced a result."""

    ITERATIVE = "iterative"
    CHUNKED = "chunked"

    def __str__(self) -> str:
        return self.value


OUTPUT_FORMATS = ("terminal", "markdown")


@dataclass(frozen=True)
class AnalysisMode:
    """Which sections of the review the caller wants."""

    summary: bool = True
    risks: bool = True
    complexity: bool = True

    @property
    def any_requested(self) -> bool:
        return self.summary or self.risks or self.complexity

    def to_dict(self) -> dict:
        return {
            "summary": self.summary,
            "risks": self.risks,
            "complexity": self.complexity,
        }

    @classmethod
    def from_dict(cls, d: Optional[dict]) -> "AnalysisMode":
        if not d:
            return cls()
        return cls(
            summary=bool(d.get("summary", True)),
            risks=bool(d.get("risks", True)),
            complexity=bool(d.get("complexity", True)),
        )


@dataclass(frozen=True)
class AnalysisOptions:
    """Per-call switches: caching, path selection, output format, extra context."""

    no_cache: bool = False
    chunked: Optional[bool] = None  # None = pick by diff size
    output_format: str = "terminal"
    # Architecture docs are read from repo_path when both are set
    use_arch_docs: bool = True
    repo_path: Optional[str] = None


@dataclass
class FileChange:
    """One file touched by the diff."""

    path: str
    status: FileStatus = FileStatus.MODIFIED
    additions: int = 0
    deletions: int = 0
    diff_text: str = ""
    old_path: Optional[str] = None  # set for renames and deletions
    language: Optional[str] = None

    @property
    def changed_lines(self) -> int:
        return self.additions + self.deletions

    @property
    def display_name(self) -> str:
        return f"{self.path}{self.status.label}"


@dataclass(frozen=True)
class FileAnalysis:
    """Oracle verdict for a single file."""

    summary: str
    risks: list[str] = field(default_factory=list)
    complexity: int = 3
    tokens_used: int = 0

    def to_dict(self) -> dict:
        return {
            "summary": self.summary,
            "risks": list(self.risks),
            "complexity": self.complexity,
            "tokens_used": self.tokens_used,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "FileAnalysis":
        return cls(
            summary=d.get("summary", ""),
            risks=list(d.get("risks", [])),
            complexity=int(d.get("complexity", 3)),
            tokens_used=int(d.get("tokens_used", 0)),
        )


@dataclass(frozen=True)
class Chunk:
    """A token-bounded slice of a diff.

    The first ``overlap_lines`` lines repeat the tail of the previous chunk.
    """

    content: str
    token_estimate: int
    overlap_lines: int = 0
    index: int = 0


@dataclass(frozen=True)
class ChunkAnalysis:
    """Oracle verdict for a single chunk."""

    index: int
    summary: str
    risks: list[str] = field(default_factory=list)
    complexity: int = 3
    tokens_used: int = 0


@dataclass(frozen=True)
class NextAction:
    """A parsed next-step decision from the reasoning call."""

    action: Action
    targets: list[str] = field(default_factory=list)
    reasoning: str = ""


@dataclass
class AnalysisState:
    """Mutable session state owned by exactly one orchestrator run.

    A path is never in ``pending`` and ``analyzed`` at the same time:
    :meth:`record` and :meth:`drop` remove it from ``pending`` in the same
    step that they file it away.
    """

    pending: list[FileChange] = field(default_factory=list)
    analyzed: dict[str, FileAnalysis] = field(default_factory=dict)
    risks: dict[str, None] = field(default_factory=dict)  # insertion-ordered set
    insights: list[str] = field(default_factory=list)
    context_log: list[str] = field(default_factory=list)
    strategy: Strategy = Strategy.COMPREHENSIVE
    iteration: int = 0
    mode: AnalysisMode = field(default_factory=AnalysisMode)
    tokens_used: int = 0
    dropped: list[str] = field(default_factory=list)

    @property
    def total_files(self) -> int:
        return len(self.analyzed) + len(self.pending) + len(self.dropped)

    @property
    def coverage(self) -> float:
        total = self.total_files
        return len(self.analyzed) / total if total else 0.0

    def find_pending(self, path: str) -> Optional[FileChange]:
        return next((f for f in self.pending if f.path == path), None)

    def _remove_pending(self, path: str) -> None:
        self.pending = [f for f in self.pending if f.path != path]

    def record(self, file: FileChange, analysis: FileAnalysis) -> None:
        self.analyzed[file.path] = analysis
        self._remove_pending(file.path)
        for risk in analysis.risks:
            self.risks.setdefault(risk, None)

    def drop(self, file: FileChange) -> None:
        self._remove_pending(file.path)
        self.dropped.append(file.path)

    def log(self, entry: str) -> None:
        self.context_log.append(entry)


@dataclass(frozen=True)
class AggregatedResult:
    """Final, immutable outcome of one analysis run."""

    summary: str
    risks: tuple[str, ...] = ()
    complexity: int = 3
    recommendations: tuple[str, ...] = ()
    tokens_used: int = 0
    insights: tuple[str, ...] = ()
    context_log: tuple[str, ...] = ()
    file_analyses: dict[str, FileAnalysis] = field(default_factory=dict)
    strategy: Optional[Strategy] = None
    path: AnalysisPath = AnalysisPath.ITERATIVE
    model: str = ""
    mode: AnalysisMode = field(default_factory=AnalysisMode)
    # False when a file or chunk analysis failed or nothing was covered
    complete: bool = True

    def to_dict(self) -> dict:
        return {
            "summary": self.summary,
            "risks": list(self.risks),
            "complexity": self.complexity,
            "recommendations": list(self.recommendations),
            "tokens_used": self.tokens_used,
            "insights": list(self.insights),
            "context_log": list(self.context_log),
            "file_analyses": {
                path: analysis.to_dict()
                for path, analysis in self.file_analyses.items()
            },
            "strategy": str(self.strategy) if self.strategy else None,
            "path": str(self.path),
            "model": self.model,
            "mode": self.mode.to_dict(),
            "complete": self.complete,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "AggregatedResult":
        strategy = d.get("strategy")
        return cls(
            summary=d.get("summary", ""),
            risks=tuple(d.get("risks", [])),
            complexity=int(d.get("complexity", 3)),
            recommendations=tuple(d.get("recommendations", [])),
            tokens_used=int(d.get("tokens_used", 0)),
            insights=tuple(d.get("insights", [])),
            context_log=tuple(d.get("context_log", [])),
            file_analyses={
                path: FileAnalysis.from_dict(a)
                for path, a in d.get("file_analyses", {}).items()
            },
            strategy=Strategy(strategy) if strategy else None,
            path=AnalysisPath(d.get("path", "iterative")),
            model=d.get("model", ""),
            mode=AnalysisMode.from_dict(d.get("mode")),
            complete=bool(d.get("complete", True)),
        )

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)
