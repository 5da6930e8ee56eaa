"""On-disk cache for enhancement results."""

from __future__ import annotations

import json
import logging
import os
import time
from pathlib import Path
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_TTL_DAYS = 30
_DAY = 24 * 60 * 60


class ResultCache:
    """One JSON file per key: ``{"result", "created_at", "expires_at"}``.

    Writes go through a temp file and ``os.replace`` so a reader never sees a
    partial entry. Expired or unreadable entries are deleted on read.
    """

    def __init__(
        self,
        cache_dir: Path,
        ttl_days: float = DEFAULT_TTL_DAYS,
        clock: Callable[[], float] = time.time,
    ):
        self.cache_dir = Path(cache_dir).expanduser()
        self.ttl_seconds = ttl_days * _DAY
        self.clock = clock

    def _path(self, key: str) -> Path:
        safe = "".join(c if c.isalnum() or c in "-_" else "_" for c in key)
        return self.cache_dir / f"{safe}.json"

    def _read(self, path: Path) -> Optional[dict]:
        try:
            entry = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError, OSError):
            return None
        if not isinstance(entry, dict) or "result" not in entry:
            return None
        return entry

    def get(self, key: str) -> Optional[dict[str, Any]]:
        path = self._path(key)
        if not path.exists():
            return None
        entry = self._read(path)
        if entry is None:
            logger.warning(f"⚠ Dropping unreadable cache entry {path.name}")
            path.unlink(missing_ok=True)
            return None
        if self.clock() > entry.get("expires_at", 0):
            logger.info(f"Cache entry expired: {key}")
            path.unlink(missing_ok=True)
            return None
        return entry["result"]

    def set(self, key: str, result: dict[str, Any]) -> None:
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        now = self.clock()
        entry = {
            "result": result,
            "created_at": now,
            "expires_at": now + self.ttl_seconds,
        }
        path = self._path(key)
        tmp = path.with_name(f"{path.name}.{os.getpid()}.tmp")
        tmp.write_text(json.dumps(entry, ensure_ascii=False, indent=2), encoding="utf-8")
        os.replace(tmp, path)

    def _entries(self) -> list[Path]:
        if not self.cache_dir.exists():
            return []
        return sorted(self.cache_dir.glob("*.json"))

    def clear(self) -> int:
        """Delete every entry. Returns the number removed."""
        removed = 0
        for path in self._entries():
            path.unlink(missing_ok=True)
            removed += 1
        return removed

    def cleanup(self) -> int:
        """Delete expired and corrupt entries. Returns the number removed."""
        now = self.clock()
        removed = 0
        for path in self._entries():
            entry = self._read(path)
            if entry is None or now > entry.get("expires_at", 0):
                path.unlink(missing_ok=True)
                removed += 1
        if removed:
            logger.info(f"✓ Removed {removed} stale cache entries")
        return removed

    def stats(self) -> dict[str, Any]:
        now = self.clock()
        total = expired = size = 0
        oldest: Optional[float] = None
        for path in self._entries():
            total += 1
            size += path.stat().st_size
            entry = self._read(path)
            if entry is None or now > entry.get("expires_at", 0):
                expired += 1
                continue
            created = entry.get("created_at")
            if created is not None and (oldest is None or created < oldest):
                oldest = created
        return {
            "entries": total,
            "expired": expired,
            "size_bytes": size,
            "oldest_created_at": oldest,
            "cache_dir": str(self.cache_dir),
        }
