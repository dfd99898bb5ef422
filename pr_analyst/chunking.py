"""Diff chunking — split oversized diffs into overlapping, token-bounded chunks."""

from __future__ import annotations

import logging
import math

from pr_analyst.config import (
    CHARS_PER_TOKEN,
    CHUNK_MAX_TOKENS,
    CHUNK_OVERLAP_TOKENS,
    MAX_NORMAL_TOKENS,
)
from pr_analyst.models import Chunk

logger = logging.getLogger(__name__)


def estimate_tokens(text: str) -> int:
    """Rough token count (1 token ≈ CHARS_PER_TOKEN characters)."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def needs_chunking(diff_text: str, threshold: int = MAX_NORMAL_TOKENS) -> bool:
    return estimate_tokens(diff_text) > threshold


def _overlap_tail(lines: list[str], budget: int) -> list[str]:
    """Longest suffix of ``lines`` whose estimated tokens fit in ``budget``."""
    if budget <= 0:
        return []
    total = 0
    count = 0
    for line in reversed(lines):
        cost = estimate_tokens(line)
        if total + cost > budget:
            break
        total += cost
        count += 1
    return lines[len(lines) - count:] if count else []


def _make_chunk(lines: list[str], overlap: int, index: int) -> Chunk:
    content = "\n".join(lines)
    return Chunk(
        content=content,
        token_estimate=estimate_tokens(content),
        overlap_lines=overlap,
        index=index,
    )


def chunk_diff(
    diff_text: str,
    max_chunk_tokens: int = CHUNK_MAX_TOKENS,
    overlap_tokens: int = CHUNK_OVERLAP_TOKENS,
) -> list[Chunk]:
    """Split ``diff_text`` line by line into chunks under ``max_chunk_tokens``.

    When the next line would overflow the running chunk, the chunk is closed
    and a new one is opened with the trailing lines of the closed chunk that
    fit in ``overlap_tokens`` (and still leave room for the next line), so a
    hunk cut at the boundary keeps some of its context.

    A single line larger than the ceiling becomes a chunk of its own. Joining
    every chunk's lines after its ``overlap_lines`` gives back the input; see
    :func:`reassemble`.
    """
    if not diff_text:
        return []

    chunks: list[Chunk] = []
    current: list[str] = []
    current_tokens = 0
    overlap = 0

    for line in diff_text.split("\n"):
        line_tokens = estimate_tokens(line)

        if (
            current
            and len(current) > overlap
            and current_tokens + line_tokens > max_chunk_tokens
        ):
            chunks.append(_make_chunk(current, overlap, len(chunks)))

            seed = _overlap_tail(
                current, min(overlap_tokens, max_chunk_tokens - line_tokens)
            )
            current = list(seed)
            overlap = len(seed)
            current_tokens = sum(estimate_tokens(l) for l in seed)

        current.append(line)
        current_tokens += line_tokens

    chunks.append(_make_chunk(current, overlap, len(chunks)))

    if len(chunks) > 1:
        logger.info(
            "Diff split into %d chunks (~%d tokens total, ceiling %d/chunk)",
            len(chunks),
            estimate_tokens(diff_text),
            max_chunk_tokens,
        )

    return chunks


def reassemble(chunks: list[Chunk]) -> str:
    """Rebuild the original text from chunks, dropping the repeated overlap."""
    lines: list[str] = []
    for chunk in chunks:
        lines.extend(chunk.content.split("\n")[chunk.overlap_lines:])
    return "\n".join(lines)
