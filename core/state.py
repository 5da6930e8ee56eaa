"""Job record persistence."""

from __future__ import annotations

import json
import os
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from .models import Job, JobProgress, JobStatus, RenderOptions


def now_iso() -> str:
    """Return current UTC time in ISO format."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class JobStore:
    """JSON-file backed job records.

    The file is re-read before every operation so that a CLI process and a
    worker process sharing the same file see each other's writes. Within one
    process every read-modify-write holds a lock, so the worker may call the
    store from ``asyncio.to_thread``. Writers in separate processes are not
    coordinated: the last write wins.
    """

    def __init__(self, state_file: Path):
        self.state_file = Path(state_file)
        self._state: dict[str, Any] = {"jobs": {}}
        self._lock = threading.RLock()
        self._load()

    def _load(self) -> None:
        """Load state from file."""
        if self.state_file.exists():
            try:
                self._state = json.loads(self.state_file.read_text(encoding="utf-8"))
            except (json.JSONDecodeError, IOError):
                self._state = {"jobs": {}}
        if "jobs" not in self._state:
            self._state["jobs"] = {}

    def _save(self) -> None:
        """Save state to file."""
        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.state_file.with_suffix(self.state_file.suffix + ".tmp")
        tmp.write_text(
            json.dumps(self._state, ensure_ascii=False, indent=2),
            encoding="utf-8"
        )
        os.replace(tmp, self.state_file)

    def create(
        self,
        owner_id: str,
        video_ref: str,
        options: Optional[RenderOptions] = None,
        webhook_url: Optional[str] = None,
        max_retries: int = 3,
    ) -> Job:
        """Create a queued job and persist it."""
        job = Job(
            id=str(uuid.uuid4()),
            owner_id=owner_id,
            video_ref=video_ref,
            options=options or RenderOptions(),
            status=JobStatus.QUEUED,
            max_retries=max_retries,
            webhook_url=webhook_url,
            created_at=now_iso(),
        )
        with self._lock:
            self._load()
            self._state["jobs"][job.id] = job.to_dict()
            self._save()
        return job

    def find_by_id(self, job_id: str) -> Optional[Job]:
        with self._lock:
            self._load()
            data = self._state["jobs"].get(job_id)
            if data is None:
                return None
            return Job.from_dict(data)

    def update(self, job_id: str, **fields) -> Optional[Job]:
        """Apply a partial update. Dataclass values are serialized.

        Returns the updated job, or None if it does not exist.
        """
        with self._lock:
            self._load()
            data = self._state["jobs"].get(job_id)
            if data is None:
                return None
            for key, value in fields.items():
                data[key] = _serialize(value)
            self._save()
            return Job.from_dict(data)

    def update_status(self, job_id: str, status: JobStatus, **fields) -> Optional[Job]:
        """Set status and stamp started_at/completed_at where appropriate."""
        fields["status"] = status
        if status == JobStatus.PROCESSING and "started_at" not in fields:
            fields["started_at"] = now_iso()
        if status.terminal and "completed_at" not in fields:
            fields["completed_at"] = now_iso()
        return self.update(job_id, **fields)

    def update_progress(self, job_id: str, progress: JobProgress) -> Optional[Job]:
        """Record progress. Stored percent never goes backwards for a job."""
        with self._lock:
            self._load()
            data = self._state["jobs"].get(job_id)
            if data is None:
                return None
            current = data.get("progress") or {}
            merged = progress.to_dict()
            merged["percent"] = max(progress.percent, current.get("percent", 0))
            data["progress"] = merged
            self._save()
            return Job.from_dict(data)

    def find_by_user_id(
        self,
        owner_id: str,
        status: Optional[JobStatus] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Job]:
        """List a user's jobs, newest first."""
        jobs = self._jobs_for(owner_id, status)
        jobs.sort(key=lambda j: j.get("created_at") or "", reverse=True)
        return [Job.from_dict(j) for j in jobs[offset:offset + limit]]

    def count_by_user_id(self, owner_id: str, status: Optional[JobStatus] = None) -> int:
        return len(self._jobs_for(owner_id, status))

    def _jobs_for(self, owner_id: str, status: Optional[JobStatus]) -> list[dict]:
        with self._lock:
            self._load()
            return [
                data for data in self._state["jobs"].values()
                if data.get("owner_id") == owner_id
                and (status is None or data.get("status") == status.value)
            ]

    def get_summary_stats(self) -> dict[str, int]:
        """Get count of jobs by status."""
        with self._lock:
            self._load()
            stats: dict[str, int] = {}
            for data in self._state["jobs"].values():
                status = data.get("status", "queued")
                stats[status] = stats.get(status, 0) + 1
            return stats


def _serialize(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if hasattr(value, "value") and isinstance(value, str):
        # str-valued enums
        return value.value
    return value
