"""Priority scoring — decide which pending files deserve attention first."""

from __future__ import annotations

import re
from collections.abc import Container

from pr_analyst.config import PATH_BONUSES, STATUS_BONUS
from pr_analyst.models import FileChange

_PATH_BONUS_RES = [(re.compile(pattern), bonus) for pattern, bonus in PATH_BONUSES]


def score(file: FileChange, analyzed: Container[str] = ()) -> int:
    """Priority of ``file``; higher is analyzed earlier.

    Line churn is the base. Structural changes (added, deleted, renamed) and
    sensitive paths (config, auth, tests, source) add fixed bonuses. A file
    that has already been analyzed always scores 0.
    """
    if file.path in analyzed:
        return 0

    total = file.additions + file.deletions
    total += STATUS_BONUS.get(str(file.status), 0)
    for pattern, bonus in _PATH_BONUS_RES:
        if pattern.search(file.path):
            total += bonus
    return total


def prioritize(
    files: list[FileChange], analyzed: Container[str] = ()
) -> list[FileChange]:
    """Return ``files`` ordered by descending score (ties keep diff order)."""
    return sorted(files, key=lambda f: score(f, analyzed), reverse=True)
