"""Tests for token estimation and diff chunking."""

import pytest

from pr_analyst.chunking import chunk_diff, estimate_tokens, needs_chunking, reassemble


def _numbered_diff(lines=200, width=40):
    return "\n".join(f"+line {i:04d} " + "x" * width for i in range(lines))


class TestEstimateTokens:
    @pytest.mark.parametrize(
        "text, expected", [("", 0), ("a", 1), ("abcd", 1), ("abcde", 2)]
    )
    def test_ceiling_of_quarter_length(self, text, expected):
        assert estimate_tokens(text) == expected

    def test_needs_chunking_threshold(self):
        assert not needs_chunking("a" * 40, threshold=10)
        assert needs_chunking("a" * 41, threshold=10)


class TestChunkDiff:
    def test_empty_input(self):
        assert chunk_diff("") == []

    def test_small_diff_is_one_chunk(self):
        text = _numbered_diff(lines=3)
        [chunk] = chunk_diff(text, max_chunk_tokens=1000, overlap_tokens=100)
        assert chunk.content == text
        assert chunk.overlap_lines == 0
        assert chunk.index == 0

    def test_chunks_respect_ceiling(self):
        text = _numbered_diff()
        chunks = chunk_diff(text, max_chunk_tokens=200, overlap_tokens=50)
        assert len(chunks) > 1
        for chunk in chunks:
            assert chunk.token_estimate <= 200 + len(chunk.content.split("\n"))

    def test_every_line_is_covered_in_order(self):
        text = _numbered_diff()
        chunks = chunk_diff(text, max_chunk_tokens=200, overlap_tokens=50)
        assert reassemble(chunks) == text

    def test_overlap_repeats_previous_tail(self):
        text = _numbered_diff()
        chunks = chunk_diff(text, max_chunk_tokens=200, overlap_tokens=50)
        for prev, chunk in zip(chunks, chunks[1:]):
            assert chunk.overlap_lines > 0
            head = chunk.content.split("\n")[: chunk.overlap_lines]
            assert prev.content.split("\n")[-chunk.overlap_lines :] == head

    def test_zero_overlap(self):
        text = _numbered_diff()
        chunks = chunk_diff(text, max_chunk_tokens=200, overlap_tokens=0)
        assert all(c.overlap_lines == 0 for c in chunks)
        assert "\n".join(c.content for c in chunks) == text

    def test_indices_are_sequential(self):
        chunks = chunk_diff(_numbered_diff(), max_chunk_tokens=200, overlap_tokens=50)
        assert [c.index for c in chunks] == list(range(len(chunks)))

    def test_oversized_line_gets_its_own_chunk(self):
        text = "short\n" + "y" * 2000 + "\nshort again"
        chunks = chunk_diff(text, max_chunk_tokens=100, overlap_tokens=10)
        assert any(c.content.endswith("y" * 2000) for c in chunks)
        assert reassemble(chunks) == text

    def test_trailing_newline_preserved(self):
        text = _numbered_diff(lines=50) + "\n"
        chunks = chunk_diff(text, max_chunk_tokens=100, overlap_tokens=20)
        assert reassemble(chunks) == text
