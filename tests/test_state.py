"""Tests for the JSON-file job store."""

import json
from concurrent.futures import ThreadPoolExecutor

from core.models import JobProgress, JobResult, JobStatus, RenderOptions
from core.state import JobStore


class TestJobStore:
    def test_create_and_find(self, store: JobStore):
        job = store.create("u1", "https://example.com/v", RenderOptions(), webhook_url="https://hook")
        found = store.find_by_id(job.id)
        assert found is not None
        assert found.status == JobStatus.QUEUED
        assert found.webhook_url == "https://hook"
        assert found.created_at is not None

    def test_find_missing(self, store: JobStore):
        assert store.find_by_id("nope") is None

    def test_update_missing_returns_none(self, store: JobStore):
        assert store.update("nope", retry_count=1) is None

    def test_persists_across_instances(self, store: JobStore, tmp_path):
        job = store.create("u1", "https://example.com/v")
        other = JobStore(tmp_path / "jobs.json")
        assert other.find_by_id(job.id) is not None

    def test_update_status_stamps_times(self, store: JobStore):
        job = store.create("u1", "https://example.com/v")
        processing = store.update_status(job.id, JobStatus.PROCESSING)
        assert processing.started_at is not None
        assert processing.completed_at is None
        done = store.update_status(
            job.id, JobStatus.COMPLETED, result=JobResult(output_path="results/x", file_size=3)
        )
        assert done.completed_at is not None
        assert done.result.output_path == "results/x"

    def test_progress_never_goes_backwards(self, store: JobStore):
        job = store.create("u1", "https://example.com/v")
        store.update_progress(job.id, JobProgress(percent=40, current_step="Capturing frames"))
        updated = store.update_progress(job.id, JobProgress(percent=20, current_step="late"))
        assert updated.progress.percent == 40
        assert updated.progress.current_step == "late"

    def test_find_by_user_newest_first_with_paging(self, store: JobStore):
        ids = []
        for i in range(5):
            job = store.create("u1", f"https://example.com/{i}")
            store.update(job.id, created_at=f"2026-01-0{i + 1}T00:00:00Z")
            ids.append(job.id)
        store.create("u2", "https://example.com/other")

        page = store.find_by_user_id("u1", limit=2, offset=1)
        assert [j.id for j in page] == [ids[3], ids[2]]
        assert store.count_by_user_id("u1") == 5

    def test_find_by_user_filters_status(self, store: JobStore):
        a = store.create("u1", "https://example.com/a")
        store.create("u1", "https://example.com/b")
        store.update_status(a.id, JobStatus.CANCELLED)
        cancelled = store.find_by_user_id("u1", status=JobStatus.CANCELLED)
        assert [j.id for j in cancelled] == [a.id]
        assert store.count_by_user_id("u1", status=JobStatus.QUEUED) == 1

    def test_summary_stats(self, store: JobStore):
        a = store.create("u1", "https://example.com/a")
        store.create("u1", "https://example.com/b")
        store.update_status(a.id, JobStatus.FAILED)
        assert store.get_summary_stats() == {"failed": 1, "queued": 1}

    def test_corrupt_file_starts_empty(self, tmp_path):
        path = tmp_path / "jobs.json"
        path.write_text("{not json", encoding="utf-8")
        store = JobStore(path)
        assert store.get_summary_stats() == {}
        store.create("u1", "https://example.com/v")
        assert len(json.loads(path.read_text(encoding="utf-8"))["jobs"]) == 1

    def test_threaded_writes_are_not_lost(self, store: JobStore, tmp_path):
        jobs = [store.create("u1", f"https://example.com/{i}") for i in range(12)]

        def touch(job):
            store.update_progress(job.id, JobProgress(percent=40, current_step="Working"))
            store.update_status(job.id, JobStatus.PROCESSING)

        with ThreadPoolExecutor(max_workers=6) as pool:
            created = list(pool.map(lambda i: store.create("u2", f"https://example.com/x{i}"), range(12)))
            list(pool.map(touch, jobs))

        reloaded = JobStore(tmp_path / "jobs.json")
        assert reloaded.count_by_user_id("u2") == len(created) == 12
        for job in jobs:
            found = reloaded.find_by_id(job.id)
            assert found.status == JobStatus.PROCESSING
            assert found.progress.percent == 40
