"""Diff parsing — unified diff to FileChange records."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Optional

from pr_analyst.config import LANGUAGE_BY_EXTENSION, SKIP_PATH_PATTERNS
from pr_analyst.models import FileChange, FileStatus

logger = logging.getLogger(__name__)

_HEADER_RE = re.compile(r"^diff --git a/(.+?) b/(.+)$")
_SKIP_RES = [re.compile(p) for p in SKIP_PATH_PATTERNS]

DEV_NULL = "/dev/null"


def should_skip_file(path: str) -> bool:
    """Build output, vendored dependencies, lockfiles and generated maps."""
    return any(pattern.search(path) for pattern in _SKIP_RES)


def detect_language(path: str) -> Optional[str]:
    if "." not in path.rsplit("/", 1)[-1]:
        return None
    ext = path.rsplit(".", 1)[-1].lower()
    return LANGUAGE_BY_EXTENSION.get(ext)


@dataclass
class _FileBlock:
    """Accumulator for one ``diff --git`` block while scanning."""

    old_path: str
    new_path: str
    lines: list[str] = field(default_factory=list)
    status: Optional[FileStatus] = None
    old_is_null: bool = False
    new_is_null: bool = False
    in_hunks: bool = False
    additions: int = 0
    deletions: int = 0

    def resolve_status(self) -> FileStatus:
        # Explicit git markers win over path comparison
        if self.status is not None:
            return self.status
        if self.old_is_null:
            return FileStatus.ADDED
        if self.new_is_null:
            return FileStatus.DELETED
        if self.old_path != self.new_path:
            return FileStatus.RENAMED
        return FileStatus.MODIFIED

    def to_file_change(self) -> FileChange:
        status = self.resolve_status()
        path = self.new_path
        if status == FileStatus.DELETED and self.new_path == DEV_NULL:
            path = self.old_path
        old_path = None
        if status in (FileStatus.RENAMED, FileStatus.DELETED):
            old_path = self.old_path
        return FileChange(
            path=path,
            status=status,
            additions=self.additions,
            deletions=self.deletions,
            diff_text="\n".join(self.lines) + "\n",
            old_path=old_path,
            language=detect_language(path),
        )


def _start_block(header: str) -> Optional[_FileBlock]:
    match = _HEADER_RE.match(header)
    if match:
        return _FileBlock(old_path=match.group(1), new_path=match.group(2), lines=[header])

    # Paths without the a/ b/ prefixes (diff.noprefix) still split cleanly
    parts = header.split()
    if len(parts) == 4:
        return _FileBlock(old_path=parts[2], new_path=parts[3], lines=[header])

    logger.warning("Skipping malformed diff header: %r", header[:200])
    return None


def _consume(block: _FileBlock, line: str) -> None:
    block.lines.append(line)

    if line.startswith("@@"):
        block.in_hunks = True
    elif not block.in_hunks:
        # Extended header lines only appear before the first hunk
        if line.startswith("new file"):
            block.status = FileStatus.ADDED
        elif line.startswith("deleted file"):
            block.status = FileStatus.DELETED
        elif line.startswith("rename from "):
            block.status = FileStatus.RENAMED
            block.old_path = line[len("rename from "):].strip()
        elif line.startswith("rename to "):
            block.status = FileStatus.RENAMED
            block.new_path = line[len("rename to "):].strip()
        elif line.startswith("--- "):
            block.old_is_null = line[4:].strip() == DEV_NULL
        elif line.startswith("+++ "):
            block.new_is_null = line[4:].strip() == DEV_NULL

    # Counts exclude the ---/+++ file headers wherever they appear
    if line.startswith("+") and not line.startswith("+++"):
        block.additions += 1
    elif line.startswith("-") and not line.startswith("---"):
        block.deletions += 1


def parse_diff(
    diff_text: str,
    skip: Optional[Callable[[str], bool]] = None,
) -> list[FileChange]:
    """Parse a unified diff into FileChange records, in diff order.

    Files for which ``skip`` returns True (build artifacts by default) are
    dropped. Malformed input never raises; it only yields fewer records.
    """
    skip = skip or should_skip_file
    files: list[FileChange] = []
    skipped: list[str] = []
    current: Optional[_FileBlock] = None

    def flush(block: Optional[_FileBlock]) -> None:
        if block is None:
            return
        change = block.to_file_change()
        if skip(change.path):
            skipped.append(change.path)
            return
        files.append(change)

    for line in diff_text.splitlines():
        if line.startswith("diff --git"):
            flush(current)
            current = _start_block(line)
            continue

        if current is None:
            continue

        _consume(current, line)

    flush(current)

    if skipped:
        logger.info(
            "Filtered %d build artifact(s) from diff: %s",
            len(skipped),
            ", ".join(skipped[:5]) + (" ..." if len(skipped) > 5 else ""),
        )

    return files


def diff_stats(files: list[FileChange]) -> dict:
    """Generate summary statistics for parsed diff files."""
    return {
        "files_changed": len(files),
        "lines_added": sum(f.additions for f in files),
        "lines_removed": sum(f.deletions for f in files),
        "new_files": [f.path for f in files if f.status == FileStatus.ADDED],
        "deleted_files": [f.path for f in files if f.status == FileStatus.DELETED],
        "renamed_files": [f.path for f in files if f.status == FileStatus.RENAMED],
    }
