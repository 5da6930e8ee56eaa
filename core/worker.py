"""Queue consumer: claims jobs from the work queue and runs the pipeline.

Each received message names one job (``{"jobId": ...}``). A message ends in
exactly one of three ways:

- ack          - job converted and uploaded, or nothing to do
- nack(delay)  - retryable failure with retries left
- dead_letter  - non-retryable failure or retries exhausted
"""

from __future__ import annotations

import asyncio
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

from .config import resolve_path
from .errors import ConversionError
from .models import (
    Job,
    JobError,
    JobProgress,
    JobResult,
    JobStatus,
    PipelineState,
    QueueMessage,
)
from .state import JobStore
from utils import get_logger, job_logger

logger = get_logger("worker")

# Statuses for which a (re)delivered message is acknowledged without work
SKIP_STATUSES = (JobStatus.CANCELLED, JobStatus.COMPLETED, JobStatus.FAILED)


@dataclass
class WorkerConfig:
    max_concurrent_jobs: int = 3
    visibility_timeout: int = 600
    poll_interval: float = 5.0
    wait_time: int = 20
    base_delay_seconds: int = 60
    stop_poll_interval: float = 1.0
    output_bucket: str = "results"
    temp_dir: Path = Path("output/tmp")

    @classmethod
    def from_config(cls, config: dict[str, Any], root: Optional[Path] = None) -> "WorkerConfig":
        wc = config.get("worker", {})
        return cls(
            max_concurrent_jobs=wc.get("max_concurrent_jobs", 3),
            visibility_timeout=wc.get("visibility_timeout", 600),
            poll_interval=wc.get("poll_interval", 5.0),
            wait_time=wc.get("wait_time", 20),
            base_delay_seconds=wc.get("base_delay_seconds", 60),
            stop_poll_interval=wc.get("stop_poll_interval", 1.0),
            output_bucket=wc.get("output_bucket", "results"),
            temp_dir=resolve_path(config, "temp_dir", root),
        )


class QueueConsumer:
    """Polls the queue and processes up to ``max_concurrent_jobs`` at once."""

    def __init__(
        self,
        queue,
        store: JobStore,
        storage,
        pipeline_factory: Callable[[], Any],
        notifier=None,
        config: Optional[WorkerConfig] = None,
        sleep: Callable = asyncio.sleep,
    ):
        self.queue = queue
        self.store = store
        self.storage = storage
        self.pipeline_factory = pipeline_factory
        self.notifier = notifier
        self.config = config or WorkerConfig()
        self._sleep = sleep
        self._running = False
        self._stopping = False
        self._in_flight = 0
        self._tasks: set[asyncio.Task] = set()

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def capacity(self) -> int:
        return max(0, self.config.max_concurrent_jobs - self._in_flight)

    @property
    def running(self) -> bool:
        return self._running

    def backoff_delay(self, retry_count: int) -> int:
        """Delay before the next attempt: 2^retry_count x base delay."""
        return self.config.base_delay_seconds * 2 ** retry_count

    async def start(self) -> None:
        """Poll until ``stop()`` is called."""
        self._running = True
        self._stopping = False
        logger.info(f"Worker started: {self.config}")
        while self._running:
            try:
                await self.poll_once()
            except Exception as e:
                logger.error(f"✗ Polling error: {e}")
            if self._running:
                await self._sleep(self.config.poll_interval)
        logger.info("Worker polling stopped")

    async def poll_once(self) -> int:
        """Run one receive cycle. Returns the number of jobs started."""
        capacity = self.capacity
        if capacity == 0:
            return 0
        messages = await self.queue.receive(
            max_messages=capacity,
            visibility_timeout_seconds=self.config.visibility_timeout,
            wait_time_seconds=self.config.wait_time,
        )
        if self._stopping and messages:
            # stop() arrived during the long poll: hand the messages back
            for message in messages:
                await self.queue.nack(message, 0)
            return 0
        for message in messages:
            self._spawn(message)
        return len(messages)

    def _spawn(self, message: QueueMessage) -> None:
        self._in_flight += 1
        task = asyncio.create_task(self._process(message))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _process(self, message: QueueMessage) -> None:
        try:
            await self.handle_message(message)
        except Exception as e:
            logger.error(f"✗ Unhandled error for message {message.id}: {e}")
        finally:
            self._in_flight -= 1

    async def stop(self) -> None:
        """Stop polling and wait for in-flight jobs to finish."""
        logger.info("Stopping worker...")
        self._running = False
        self._stopping = True
        while self._in_flight > 0:
            logger.info(f"Waiting for {self._in_flight} active job(s)...")
            await self._sleep(self.config.stop_poll_interval)
        logger.info("Worker stopped")

    async def handle_message(self, message: QueueMessage) -> None:
        """Process one message to completion, retry or dead-letter."""
        job_id = message.job_id
        log = job_logger(job_id or "?")

        job = await asyncio.to_thread(self.store.find_by_id, job_id) if job_id else None
        if job is None:
            log.warning("⚠ Job not found, dropping message")
            await self.queue.ack(message)
            return
        if job.status in SKIP_STATUSES:
            log.info(f"Job already {job.status.value}, dropping message")
            await self.queue.ack(message)
            return

        job = await asyncio.to_thread(self.store.update_status, job.id, JobStatus.PROCESSING) or job
        log.info(f"Processing {job.video_ref} (attempt {job.retry_count + 1}/{job.max_retries + 1})")

        try:
            job = await self._convert(job, log)
        except Exception as e:
            await self._fail(job, message, e, log)
            return

        await self.queue.ack(message)
        log.info(f"✓ Completed: {job.result.output_path}")
        if job.webhook_url and self.notifier is not None:
            await self.notifier.notify(job, "completed")

    async def _convert(self, job: Job, log) -> Job:
        """Run the pipeline, upload the output and mark the job completed."""
        work_dir = self.config.temp_dir / job.id
        work_dir.mkdir(parents=True, exist_ok=True)

        # Observers are synchronous, so progress writes stay on the loop
        def record(state: PipelineState) -> None:
            self.store.update_progress(
                job.id, JobProgress(percent=state.progress, current_step=state.current_step)
            )

        try:
            pipeline = self.pipeline_factory()
            pipeline.on_progress(record)
            result = await pipeline.process_with_deadline(job, work_dir, self.config.visibility_timeout)

            fmt = job.options.format
            key = f"results/{job.owner_id}/{job.id}/output.{fmt.extension}"
            data = await asyncio.to_thread(Path(result.output_path).read_bytes)
            await asyncio.to_thread(
                self.storage.upload, self.config.output_bucket, key, data, fmt.content_type
            )
        finally:
            try:
                shutil.rmtree(work_dir)
            except OSError as e:
                log.warning(f"⚠ Failed to clean up {work_dir}: {e}")

        updated = await asyncio.to_thread(
            self.store.update_status,
            job.id,
            JobStatus.COMPLETED,
            result=JobResult(
                output_path=key,
                file_size=len(data),
                pages=result.pages,
                frame_count=result.frame_count,
                processing_seconds=round(result.duration, 2),
            ),
            video=result.metadata.to_summary(),
            error=None,
        )
        return updated or job

    async def _fail(self, job: Job, message: QueueMessage, exc: Exception, log) -> None:
        error = ConversionError.wrap(exc)
        if error.retryable and job.retry_count < job.max_retries:
            delay = self.backoff_delay(job.retry_count)
            await self.queue.nack(message, delay)
            # Progress is kept: stored percent never decreases for a job
            await asyncio.to_thread(
                self.store.update, job.id, status=JobStatus.QUEUED, retry_count=job.retry_count + 1
            )
            log.warning(
                f"⚠ {error.kind.value}: {error.message} - retry {job.retry_count + 1}/{job.max_retries} in {delay}s"
            )
            return

        await self.queue.dead_letter(message)
        failed = await asyncio.to_thread(
            self.store.update_status, job.id, JobStatus.FAILED, error=JobError.from_exception(error)
        )
        log.error(f"✗ Failed permanently: {error.kind.value}: {error.message}")
        if job.webhook_url and self.notifier is not None and failed is not None:
            await self.notifier.notify(failed, "failed")
