"""Local-directory object storage."""

from __future__ import annotations

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)


class LocalObjectStorage:
    """Stores objects as files under ``root/bucket/key``."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def _path(self, bucket: str, key: str) -> Path:
        target = (self.root / bucket / key).resolve()
        base = (self.root / bucket).resolve()
        if base not in target.parents:
            raise ValueError(f"Key escapes bucket: {key}")
        return target

    def upload(self, bucket: str, key: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        """Write ``data`` and return the object's location."""
        path = self._path(bucket, key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".part")
        tmp.write_bytes(data)
        os.replace(tmp, path)
        logger.info(f"✓ Stored {bucket}/{key} ({len(data)} bytes, {content_type})")
        return str(path)

    def exists(self, bucket: str, key: str) -> bool:
        return self._path(bucket, key).exists()
