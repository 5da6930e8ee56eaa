"""Job submission and lookup, plus the synchronous conversion path."""

from __future__ import annotations

import asyncio
import shutil
from pathlib import Path
from typing import Any, Callable, Optional

from .errors import ConversionError, ErrorKind
from .models import Job, JobError, JobResult, JobStatus, RenderOptions
from .state import JobStore
from clients.video_source import normalize_ref
from utils import get_logger

logger = get_logger("jobs")


class JobService:
    """Front door for creating, cancelling and reading jobs."""

    def __init__(
        self,
        store: JobStore,
        queue,
        storage=None,
        pipeline_factory: Optional[Callable[[], Any]] = None,
        config: Optional[dict[str, Any]] = None,
        work_root: Optional[Path] = None,
    ):
        self.store = store
        self.queue = queue
        self.storage = storage
        self.pipeline_factory = pipeline_factory
        self.config = config or {}
        self.work_root = Path(work_root) if work_root else Path("output/tmp")

    def submit(
        self,
        owner_id: str,
        video_ref: str,
        options: Optional[RenderOptions] = None,
        webhook_url: Optional[str] = None,
    ) -> Job:
        """Validate, create a queued job and enqueue it.

        Raises:
            ConversionError: INVALID_INPUT for a bad reference or options.
        """
        ref = normalize_ref(video_ref)
        options = options or RenderOptions()
        options.validate()
        max_retries = self.config.get("processing", {}).get("max_retries", 3)
        job = self.store.create(owner_id, ref, options, webhook_url=webhook_url, max_retries=max_retries)
        self.queue.send({"jobId": job.id})
        logger.info(f"✓ Queued job {job.id} for {ref}")
        return job

    def get(self, job_id: str, owner_id: Optional[str] = None) -> Optional[Job]:
        """Return the job, or None if missing or owned by someone else."""
        job = self.store.find_by_id(job_id)
        if job is None or (owner_id is not None and job.owner_id != owner_id):
            return None
        return job

    def cancel(self, job_id: str, owner_id: Optional[str] = None) -> Optional[Job]:
        """Mark a non-terminal job cancelled.

        A job already running is not interrupted; if the worker finishes it,
        the worker's final status overwrites the cancellation.

        Returns None when the job does not exist.

        Raises:
            ConversionError: INVALID_INPUT when the job already finished.
        """
        job = self.get(job_id, owner_id)
        if job is None:
            return None
        if job.status.terminal:
            raise ConversionError(
                ErrorKind.INVALID_INPUT, f"Job {job_id} is already {job.status.value}"
            )
        logger.info(f"Cancelling job {job_id} ({job.status.value})")
        return self.store.update_status(job_id, JobStatus.CANCELLED)

    def list_jobs(
        self,
        owner_id: str,
        status: Optional[JobStatus] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[Job], int]:
        """One page of the owner's jobs and the total count."""
        jobs = self.store.find_by_user_id(owner_id, status=status, limit=limit, offset=offset)
        return jobs, self.store.count_by_user_id(owner_id, status=status)

    async def convert_sync(
        self,
        owner_id: str,
        video_ref: str,
        options: Optional[RenderOptions] = None,
        output_dir: Optional[Path] = None,
    ) -> Job:
        """Convert immediately, bounded by ``processing.sync_timeout``.

        The job record is created as processing and ends completed or
        failed; nothing is enqueued. When ``output_dir`` is given the
        document is kept there, otherwise it is uploaded to storage.
        """
        if self.pipeline_factory is None:
            raise ConversionError(ErrorKind.CONFIGURATION, "No pipeline configured")
        ref = normalize_ref(video_ref)
        options = options or RenderOptions()
        options.validate()
        job = await asyncio.to_thread(self.store.create, owner_id, ref, options, max_retries=0)
        job = await asyncio.to_thread(self.store.update_status, job.id, JobStatus.PROCESSING) or job
        timeout = self.config.get("processing", {}).get("sync_timeout", 840)

        work_dir = Path(output_dir) if output_dir else self.work_root / job.id
        upload = output_dir is None and self.storage is not None
        try:
            pipeline = self.pipeline_factory()
            result = await pipeline.process_with_deadline(job, work_dir, timeout)
            output_path = result.output_path
            size = result.file_size
            if upload:
                key = f"results/{owner_id}/{job.id}/output.{options.format.extension}"
                data = await asyncio.to_thread(Path(result.output_path).read_bytes)
                bucket = self.config.get("worker", {}).get("output_bucket", "results")
                await asyncio.to_thread(self.storage.upload, bucket, key, data, options.format.content_type)
                output_path, size = key, len(data)
        except Exception as e:
            error = JobError.from_exception(e)
            await asyncio.to_thread(self.store.update_status, job.id, JobStatus.FAILED, error=error)
            logger.error(f"✗ Conversion failed: {error.kind.value}: {error.message}")
            raise ConversionError.wrap(e) from None
        finally:
            if upload:
                shutil.rmtree(work_dir, ignore_errors=True)

        return await asyncio.to_thread(
            self.store.update_status,
            job.id,
            JobStatus.COMPLETED,
            result=JobResult(
                output_path=output_path,
                file_size=size,
                pages=result.pages,
                frame_count=result.frame_count,
                processing_seconds=round(result.duration, 2),
            ),
            video=result.metadata.to_summary(),
        )
