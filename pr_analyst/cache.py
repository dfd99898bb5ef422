"""File-backed result cache keyed by a fingerprint of the request."""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Optional

from pr_analyst.config import CACHE_DIR
from pr_analyst.models import AggregatedResult, AnalysisMode

logger = logging.getLogger(__name__)


def fingerprint(
    kind: str,
    diff_text: str,
    title: Optional[str],
    mode: AnalysisMode,
    model: str,
    flags: Optional[dict] = None,
) -> str:
    """SHA-256 over the canonical JSON of everything that shapes a result."""
    payload = {
        "kind": kind,
        "diff": diff_text,
        "title": title,
        "mode": mode.to_dict(),
        "model": model,
        "flags": flags or {},
    }
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class ResultCache:
    """One JSON file per fingerprint under ``cache_dir``.

    Safe to share between threads: reads and writes hold one lock, and
    writes go through a temp file that is atomically renamed into place.
    """

    def __init__(
        self, cache_dir: str | Path = CACHE_DIR, ttl_seconds: Optional[float] = None
    ) -> None:
        self.cache_dir = Path(cache_dir)
        self.ttl_seconds = ttl_seconds
        self._lock = threading.Lock()

    def _path(self, key: str) -> Path:
        return self.cache_dir / f"{key}.json"

    def get(self, key: str) -> Optional[AggregatedResult]:
        path = self._path(key)
        with self._lock:
            if not path.exists():
                return None
            try:
                entry = json.loads(path.read_text(encoding="utf-8"))
                stored_at = float(entry["stored_at"])
                result = AggregatedResult.from_dict(entry["result"])
            except (OSError, ValueError, KeyError, TypeError) as e:
                logger.warning("Ignoring unreadable cache entry %s: %s", path.name, e)
                return None

        if self.ttl_seconds is not None and time.time() - stored_at > self.ttl_seconds:
            logger.debug("Cache entry %s expired", key[:12])
            return None
        logger.info("Cache hit: %s", key[:12])
        return result

    def set(self, key: str, result: AggregatedResult) -> None:
        entry = {"stored_at": time.time(), "result": result.to_dict()}
        with self._lock:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w", dir=self.cache_dir, suffix=".tmp", delete=False, encoding="utf-8"
            ) as tmp:
                json.dump(entry, tmp)
                tmp_path = tmp.name
            try:
                os.replace(tmp_path, self._path(key))
            except OSError:
                os.remove(tmp_path)
                raise
        logger.debug("Cached result %s", key[:12])

    def clear(self) -> int:
        """Delete every cached entry and return how many were removed."""
        removed = 0
        with self._lock:
            if not self.cache_dir.exists():
                return 0
            for path in self.cache_dir.glob("*.json"):
                path.unlink()
                removed += 1
        logger.info("Cleared %d cache entr%s", removed, "y" if removed == 1 else "ies")
        return removed
