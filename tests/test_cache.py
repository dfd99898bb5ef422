"""Tests for the file-backed result cache."""

import threading
import time

from pr_analyst.cache import ResultCache, fingerprint
from pr_analyst.models import AggregatedResult, AnalysisMode, FileAnalysis, Strategy


def _result(summary="ok"):
    return AggregatedResult(
        summary=summary,
        risks=("[File: a.py] Broken",),
        complexity=4,
        recommendations=("Fix it",),
        tokens_used=42,
        file_analyses={"a.py": FileAnalysis("a", risks=["Broken"], complexity=4)},
        strategy=Strategy.FOCUSED,
        model="m",
    )


class TestFingerprint:
    def test_stable_for_equal_inputs(self):
        a = fingerprint("iterative", "diff", "t", AnalysisMode(), "m", {"x": 1, "y": 2})
        b = fingerprint("iterative", "diff", "t", AnalysisMode(), "m", {"y": 2, "x": 1})
        assert a == b
        assert len(a) == 64

    def test_sensitive_to_every_input(self):
        base = fingerprint("iterative", "diff", "t", AnalysisMode(), "m")
        assert base != fingerprint("chunked", "diff", "t", AnalysisMode(), "m")
        assert base != fingerprint("iterative", "diff2", "t", AnalysisMode(), "m")
        assert base != fingerprint("iterative", "diff", None, AnalysisMode(), "m")
        assert base != fingerprint("iterative", "diff", "t", AnalysisMode(risks=False), "m")
        assert base != fingerprint("iterative", "diff", "t", AnalysisMode(), "other")


class TestResultCache:
    def test_miss_then_hit(self, tmp_path):
        cache = ResultCache(tmp_path / "cache")
        assert cache.get("k") is None
        cache.set("k", _result())
        assert cache.get("k") == _result()

    def test_corrupt_entry_is_a_miss(self, tmp_path):
        cache = ResultCache(tmp_path)
        (tmp_path / "bad.json").write_text("{not json", encoding="utf-8")
        assert cache.get("bad") is None

    def test_ttl_expiry(self, tmp_path):
        cache = ResultCache(tmp_path, ttl_seconds=0.01)
        cache.set("k", _result())
        time.sleep(0.05)
        assert cache.get("k") is None

    def test_overwrite_and_no_temp_files_left(self, tmp_path):
        cache = ResultCache(tmp_path)
        cache.set("k", _result("first"))
        cache.set("k", _result("second"))
        assert cache.get("k").summary == "second"
        assert [p.name for p in tmp_path.iterdir()] == ["k.json"]

    def test_clear(self, tmp_path):
        cache = ResultCache(tmp_path)
        cache.set("a", _result())
        cache.set("b", _result())
        assert cache.clear() == 2
        assert cache.get("a") is None
        assert ResultCache(tmp_path / "missing").clear() == 0

    def test_concurrent_writers(self, tmp_path):
        cache = ResultCache(tmp_path)
        threads = [
            threading.Thread(target=cache.set, args=(f"k{i % 3}", _result(str(i))))
            for i in range(12)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        for i in range(3):
            assert cache.get(f"k{i}") is not None
