"""Tests for the on-disk enhancement cache."""

import json
from pathlib import Path

from core.cache import ResultCache

DAY = 24 * 60 * 60


class Clock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestResultCache:
    def test_set_and_get(self, tmp_path: Path):
        cache = ResultCache(tmp_path)
        cache.set("job_abc_123", {"tokens_used": 5})
        assert cache.get("job_abc_123") == {"tokens_used": 5}

    def test_persisted_shape(self, tmp_path: Path):
        clock = Clock()
        cache = ResultCache(tmp_path, ttl_days=30, clock=clock)
        cache.set("k", {"sections": []})
        entry = json.loads((tmp_path / "k.json").read_text(encoding="utf-8"))
        assert entry["result"] == {"sections": []}
        assert entry["created_at"] == clock.now
        assert entry["expires_at"] == clock.now + 30 * DAY

    def test_miss(self, tmp_path: Path):
        assert ResultCache(tmp_path).get("absent") is None

    def test_expired_entry_is_removed(self, tmp_path: Path):
        clock = Clock()
        cache = ResultCache(tmp_path, ttl_days=30, clock=clock)
        cache.set("k", {"x": 1})
        clock.now += 31 * DAY
        assert cache.get("k") is None
        assert not (tmp_path / "k.json").exists()

    def test_corrupt_entry_is_removed(self, tmp_path: Path):
        (tmp_path / "bad.json").write_text("{oops", encoding="utf-8")
        cache = ResultCache(tmp_path)
        assert cache.get("bad") is None
        assert not (tmp_path / "bad.json").exists()

    def test_unsafe_key_characters(self, tmp_path: Path):
        cache = ResultCache(tmp_path)
        cache.set("../escape/key", {"x": 1})
        assert cache.get("../escape/key") == {"x": 1}
        assert list(tmp_path.glob("*.json"))

    def test_cleanup_removes_expired_and_corrupt(self, tmp_path: Path):
        clock = Clock()
        cache = ResultCache(tmp_path, ttl_days=1, clock=clock)
        cache.set("old", {"x": 1})
        clock.now += 2 * DAY
        cache.set("fresh", {"x": 2})
        (tmp_path / "junk.json").write_text("[]", encoding="utf-8")

        assert cache.cleanup() == 2
        assert cache.get("fresh") == {"x": 2}

    def test_stats_and_clear(self, tmp_path: Path):
        clock = Clock()
        cache = ResultCache(tmp_path, ttl_days=1, clock=clock)
        cache.set("a", {"x": 1})
        clock.now += 10
        cache.set("b", {"x": 2})

        stats = cache.stats()
        assert stats["entries"] == 2
        assert stats["expired"] == 0
        assert stats["oldest_created_at"] == clock.now - 10
        assert stats["size_bytes"] > 0

        assert cache.clear() == 2
        assert cache.stats()["entries"] == 0
