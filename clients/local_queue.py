"""JSON-file work queue.

Messages live in one JSON file so that ``main.py submit`` and a running
worker can share the queue. A received message stays in the file but is
invisible until its visibility timeout expires; ``ack`` deletes it, ``nack``
makes it visible again after a delay.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional

from core.models import QueueMessage

logger = logging.getLogger(__name__)

# Seconds between checks while long-polling an empty queue
POLL_STEP = 1.0


def _iso(epoch: float) -> str:
    return datetime.fromtimestamp(epoch, timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class FileQueue:
    """Durable queue with visibility timeouts and a dead-letter file."""

    def __init__(
        self,
        queue_file: Path,
        dead_letter_file: Path,
        clock: Callable[[], float] = time.time,
        sleep=asyncio.sleep,
    ):
        self.queue_file = Path(queue_file)
        self.dead_letter_file = Path(dead_letter_file)
        self._clock = clock
        self._sleep = sleep

    def _load(self, path: Path) -> list[dict[str, Any]]:
        if not path.exists():
            return []
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, IOError) as e:
            logger.warning(f"⚠ Unreadable queue file {path.name}, starting empty: {e}")
            return []
        return data.get("messages", []) if isinstance(data, dict) else []

    def _save(self, path: Path, messages: list[dict[str, Any]]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(json.dumps({"messages": messages}, ensure_ascii=False, indent=2), encoding="utf-8")
        os.replace(tmp, path)

    def send(self, body: dict, delay_seconds: int = 0) -> str:
        """Enqueue ``body``; returns the message id."""
        messages = self._load(self.queue_file)
        now = self._clock()
        entry = {
            "id": str(uuid.uuid4()),
            "body": body,
            "enqueued_at": _iso(now),
            "visible_at": now + max(0, delay_seconds),
            "receipt_handle": None,
            "receive_count": 0,
        }
        messages.append(entry)
        self._save(self.queue_file, messages)
        return entry["id"]

    def _claim(self, max_messages: int, visibility_timeout_seconds: int) -> list[QueueMessage]:
        messages = self._load(self.queue_file)
        now = self._clock()
        claimed = []
        for entry in messages:
            if len(claimed) >= max_messages:
                break
            if entry.get("visible_at", 0) > now:
                continue
            entry["receipt_handle"] = uuid.uuid4().hex
            entry["receive_count"] = entry.get("receive_count", 0) + 1
            entry["visible_at"] = now + visibility_timeout_seconds
            claimed.append(QueueMessage(
                id=entry["id"],
                body=entry["body"],
                receipt_handle=entry["receipt_handle"],
                enqueued_at=entry.get("enqueued_at"),
                receive_count=entry["receive_count"],
            ))
        if claimed:
            self._save(self.queue_file, messages)
        return claimed

    async def receive(
        self,
        max_messages: int = 1,
        visibility_timeout_seconds: int = 600,
        wait_time_seconds: int = 0,
    ) -> list[QueueMessage]:
        """Claim up to ``max_messages`` visible messages.

        Waits up to ``wait_time_seconds`` for one to become visible.
        """
        if max_messages <= 0:
            return []
        deadline = self._clock() + wait_time_seconds
        while True:
            claimed = self._claim(max_messages, visibility_timeout_seconds)
            if claimed or self._clock() >= deadline:
                return claimed
            await self._sleep(min(POLL_STEP, max(0.0, deadline - self._clock())))

    def _take(self, message: QueueMessage) -> Optional[dict[str, Any]]:
        """Remove and return the entry still held under this receipt."""
        messages = self._load(self.queue_file)
        for i, entry in enumerate(messages):
            if entry["id"] == message.id and entry.get("receipt_handle") == message.receipt_handle:
                del messages[i]
                self._save(self.queue_file, messages)
                return entry
        logger.warning(f"⚠ Stale receipt for message {message.id}")
        return None

    async def ack(self, message: QueueMessage) -> None:
        self._take(message)

    async def nack(self, message: QueueMessage, delay_seconds: int = 0) -> None:
        """Return the message to the queue, visible after ``delay_seconds``."""
        messages = self._load(self.queue_file)
        for entry in messages:
            if entry["id"] == message.id and entry.get("receipt_handle") == message.receipt_handle:
                entry["receipt_handle"] = None
                entry["visible_at"] = self._clock() + max(0, delay_seconds)
                self._save(self.queue_file, messages)
                return
        logger.warning(f"⚠ Stale receipt for message {message.id}")

    async def dead_letter(self, message: QueueMessage) -> None:
        """Move the message to the dead-letter file."""
        entry = self._take(message) or {"id": message.id, "body": message.body}
        entry["receipt_handle"] = None
        entry["dead_lettered_at"] = _iso(self._clock())
        dead = self._load(self.dead_letter_file)
        dead.append(entry)
        self._save(self.dead_letter_file, dead)

    def dead_letters(self) -> list[dict[str, Any]]:
        return self._load(self.dead_letter_file)

    def __len__(self) -> int:
        return len(self._load(self.queue_file))
