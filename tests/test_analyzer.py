"""Tests for the analyze() entry point and the chunked path."""

import pytest

from conftest import FakeOracle

from pr_analyst import llm
from pr_analyst.analyzer import analyze, rank_files
from pr_analyst.cache import ResultCache
from pr_analyst.errors import ConfigurationError, InvalidRequestError, OracleError
from pr_analyst.models import AnalysisMode, AnalysisOptions, AnalysisPath


def _big_diff(lines=1600):
    body = "".join(f"+{'x' * 48} {i:05d}\n" for i in range(lines))
    return (
        "diff --git a/big.txt b/big.txt\n"
        "--- a/big.txt\n"
        "+++ b/big.txt\n"
        "@@ -0,0 +1,1600 @@\n" + body
    )


class TestRequestValidation:
    @pytest.mark.parametrize("diff", ["", "   \n"])
    def test_empty_diff(self, oracle, diff):
        with pytest.raises(InvalidRequestError):
            analyze(diff, complete=oracle)
        assert oracle.calls == []

    def test_nothing_requested(self, oracle, three_file_diff):
        mode = AnalysisMode(summary=False, risks=False, complexity=False)
        with pytest.raises(InvalidRequestError):
            analyze(three_file_diff, mode=mode, complete=oracle)

    def test_unknown_output_format(self, oracle, three_file_diff):
        with pytest.raises(ValueError):
            analyze(three_file_diff, options=AnalysisOptions(output_format="html"), complete=oracle)

    def test_default_oracle_requires_credentials(self, monkeypatch, three_file_diff):
        def no_credentials():
            raise ConfigurationError("no creds", field="BEDROCK_PROFILE")

        monkeypatch.setattr(llm, "ensure_credentials", no_credentials)
        with pytest.raises(ConfigurationError):
            analyze(three_file_diff)


class TestCaching:
    def test_identical_request_is_served_from_cache(self, oracle, tmp_path, three_file_diff):
        cache = ResultCache(tmp_path)
        first = analyze(three_file_diff, title="T", complete=oracle, cache=cache)
        calls = len(oracle.calls)

        second = analyze(three_file_diff, title="T", complete=oracle, cache=cache)
        assert second == first
        assert len(oracle.calls) == calls

    def test_different_title_misses(self, oracle, tmp_path, three_file_diff):
        cache = ResultCache(tmp_path)
        analyze(three_file_diff, title="A", complete=oracle, cache=cache)
        calls = len(oracle.calls)
        analyze(three_file_diff, title="B", complete=oracle, cache=cache)
        assert len(oracle.calls) == 2 * calls

    def test_outage_result_is_not_cached(self, tmp_path, three_file_diff):
        cache = ResultCache(tmp_path)
        down = FakeOracle({"analyze_file": OracleError("outage")})
        first = analyze(three_file_diff, complete=down, cache=cache)
        assert first.file_analyses == {}
        assert not first.complete
        assert list(tmp_path.iterdir()) == []

        healthy = FakeOracle()
        second = analyze(three_file_diff, complete=healthy, cache=cache)
        assert len(second.file_analyses) == 3
        assert second.complete
        assert healthy.tools("analyze_file")

    def test_partial_result_is_not_cached(self, tmp_path, three_file_diff):
        cache = ResultCache(tmp_path)
        flaky = FakeOracle({"analyze_file[src/app.py]": OracleError("throttled")})
        analyze(three_file_diff, complete=flaky, cache=cache)

        healthy = FakeOracle()
        result = analyze(three_file_diff, complete=healthy, cache=cache)
        assert "src/app.py" in result.file_analyses
        assert len(healthy.calls) > 0

    def test_failed_chunk_result_is_not_cached(self, tmp_path):
        cache = ResultCache(tmp_path)
        flaky = FakeOracle({"analyze_chunk[1/2]": OracleError("overloaded")})
        assert not analyze(_big_diff(), complete=flaky, cache=cache).complete

        healthy = FakeOracle()
        result = analyze(_big_diff(), complete=healthy, cache=cache)
        assert result.complete
        assert len(healthy.tools("analyze_chunk")) == 2

    def test_no_cache_skips_read_and_write(self, oracle, tmp_path, three_file_diff):
        cache = ResultCache(tmp_path / "c")
        analyze(
            three_file_diff,
            options=AnalysisOptions(no_cache=True),
            complete=oracle,
            cache=cache,
        )
        assert not (tmp_path / "c").exists()

        analyze(three_file_diff, complete=oracle, cache=cache)
        calls = len(oracle.calls)
        analyze(
            three_file_diff,
            options=AnalysisOptions(no_cache=True),
            complete=oracle,
            cache=cache,
        )
        assert len(oracle.calls) > calls


class TestPathSelection:
    def test_small_diff_is_iterative(self, oracle, three_file_diff):
        result = analyze(three_file_diff, complete=oracle)
        assert result.path == AnalysisPath.ITERATIVE
        assert oracle.tools("analyze_chunk") == []

    def test_forced_chunked_single_chunk(self, oracle, three_file_diff):
        result = analyze(
            three_file_diff, options=AnalysisOptions(chunked=True), complete=oracle
        )
        assert result.path == AnalysisPath.CHUNKED
        assert oracle.tools() == ["analyze_chunk[1/1]"]
        assert result.summary == "Updates the module wiring."
        assert result.recommendations == ()

    def test_large_diff_is_chunked_automatically(self, oracle):
        result = analyze(_big_diff(), complete=oracle)
        assert result.path == AnalysisPath.CHUNKED
        assert sorted(oracle.tools("analyze_chunk")) == ["analyze_chunk[1/2]", "analyze_chunk[2/2]"]
        assert oracle.tools("consolidate_chunks") == ["consolidate_chunks"]
        assert result.summary == "The PR moves helpers into a new module and removes legacy code."
        assert result.complexity == 2
        assert result.tokens_used == 15 * 3
        assert any("2 overlapping parts" in r for r in result.recommendations)

    def test_forced_iterative_on_large_diff(self, oracle):
        result = analyze(_big_diff(), options=AnalysisOptions(chunked=False), complete=oracle)
        assert result.path == AnalysisPath.ITERATIVE
        assert list(result.file_analyses) == ["big.txt"]

    def test_failed_chunk_is_reported(self):
        oracle = FakeOracle({"analyze_chunk[1/2]": OracleError("overloaded")})
        result = analyze(_big_diff(), complete=oracle)
        assert len(oracle.tools("analyze_chunk[1/2]")) == 2
        assert oracle.tools("consolidate_chunks") == []
        assert "Part 1 of 2 could not be analyzed." in result.recommendations
        assert result.summary == "Updates the module wiring."

    def test_chunk_prompts_mention_overlap(self, oracle):
        analyze(_big_diff(), complete=oracle)
        second = [m for t, m in oracle.calls if t == "analyze_chunk[2/2]"][0]
        assert "repeat the end of the previous chunk" in second


class TestRankFiles:
    def test_priority_order(self, three_file_diff):
        ranked = rank_files(three_file_diff)
        assert [(f["path"], f["score"]) for f in ranked] == [
            ("old/legacy.py", 52),
            ("src/new_util.py", 42),
            ("src/app.py", 14),
        ]

    def test_empty_diff(self):
        with pytest.raises(InvalidRequestError):
            rank_files("")


class TestArchDocs:
    @pytest.fixture
    def repo(self, tmp_path):
        docs = tmp_path / ".arch-docs"
        docs.mkdir()
        (docs / "security.md").write_text(
            "# Security\nSecrets come from the environment only.\n", encoding="utf-8"
        )
        return tmp_path

    def test_context_reaches_file_and_synthesis_prompts(self, oracle, repo, three_file_diff):
        analyze(three_file_diff, options=AnalysisOptions(repo_path=str(repo)), complete=oracle)
        messages = oracle.messages("analyze_file") + oracle.messages("synthesize")
        assert len(messages) == 4
        assert all("Repository Architecture Context:" in m for m in messages)
        assert all("Secrets come from the environment only." in m for m in messages)

    def test_context_reaches_chunk_prompts(self, oracle, repo, three_file_diff):
        options = AnalysisOptions(repo_path=str(repo), chunked=True)
        analyze(three_file_diff, options=options, complete=oracle)
        [message] = oracle.messages("analyze_chunk")
        assert "[Security - Security]" in message

    def test_disabled(self, oracle, repo, three_file_diff):
        options = AnalysisOptions(repo_path=str(repo), use_arch_docs=False)
        analyze(three_file_diff, options=options, complete=oracle)
        assert not any("Architecture Context" in m for _, m in oracle.calls)

    def test_doc_changes_invalidate_cache(self, oracle, repo, tmp_path, three_file_diff):
        cache = ResultCache(tmp_path / "cache")
        options = AnalysisOptions(repo_path=str(repo))
        analyze(three_file_diff, options=options, complete=oracle, cache=cache)
        calls = len(oracle.calls)

        analyze(three_file_diff, options=options, complete=oracle, cache=cache)
        assert len(oracle.calls) == calls

        (repo / ".arch-docs" / "security.md").write_text(
            "# Security\nSecrets live in the vault.\n", encoding="utf-8"
        )
        analyze(three_file_diff, options=options, complete=oracle, cache=cache)
        assert len(oracle.calls) == 2 * calls
