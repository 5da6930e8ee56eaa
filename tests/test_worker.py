"""Tests for the queue consumer."""

import asyncio
import threading
from pathlib import Path

from conftest import FakePipeline
from clients.local_queue import FileQueue
from clients.storage import LocalObjectStorage
from core.errors import ConversionError, ErrorKind
from core.models import JobStatus, OutputFormat, RenderOptions
from core.state import JobStore
from core.worker import QueueConsumer, WorkerConfig

WEBHOOK = "https://hooks.example.com/v2doc"


class Clock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class RecordingQueue(FileQueue):
    """File queue that remembers nack delays."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.nack_delays = []

    async def nack(self, message, delay_seconds=0):
        self.nack_delays.append(delay_seconds)
        await super().nack(message, delay_seconds)


class RecordingNotifier:
    def __init__(self):
        self.events = []

    async def notify(self, job, event):
        self.events.append((job.id, event, job.status))
        return True


class PipelineFactory:
    """Builds a fresh fake pipeline per job and counts the builds."""

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.built = 0

    def __call__(self):
        self.built += 1
        return FakePipeline(**self.kwargs)


def _setup(tmp_path: Path, factory: PipelineFactory, **config):
    clock = Clock()
    queue = RecordingQueue(tmp_path / "queue.json", tmp_path / "dlq.json", clock=clock)
    storage = LocalObjectStorage(tmp_path / "storage")
    notifier = RecordingNotifier()
    settings = {"wait_time": 0, "poll_interval": 0.01, "stop_poll_interval": 0.01, "temp_dir": tmp_path / "tmp"}
    settings.update(config)
    return clock, queue, storage, notifier, WorkerConfig(**settings)


def _submit(store, queue, max_retries=3, webhook_url=WEBHOOK):
    job = store.create(
        "u1", "https://youtu.be/abc123",
        RenderOptions(format=OutputFormat.MARKDOWN),
        webhook_url=webhook_url, max_retries=max_retries,
    )
    queue.send({"jobId": job.id})
    return job


async def _deliver(consumer: QueueConsumer, queue: FileQueue):
    messages = await queue.receive(max_messages=1, visibility_timeout_seconds=600)
    assert len(messages) == 1
    await consumer.handle_message(messages[0])


class TestWorkerConfig:
    def test_from_config(self, config, tmp_path: Path):
        config["worker"]["max_concurrent_jobs"] = 5
        wc = WorkerConfig.from_config(config, tmp_path)
        assert wc.max_concurrent_jobs == 5
        assert wc.visibility_timeout == 600
        assert wc.base_delay_seconds == 60
        assert wc.temp_dir == tmp_path / "output" / "tmp"


class TestHandleMessage:
    def test_success_uploads_and_completes(self, store, tmp_path: Path):
        factory = PipelineFactory()
        _, queue, storage, notifier, wc = _setup(tmp_path, factory)
        consumer = QueueConsumer(queue, store, storage, factory, notifier=notifier, config=wc)
        job = _submit(store, queue)

        asyncio.run(_deliver(consumer, queue))

        done = store.find_by_id(job.id)
        key = f"results/u1/{job.id}/output.md"
        assert done.status == JobStatus.COMPLETED
        assert done.result.output_path == key
        assert done.result.pages == 3
        assert done.result.frame_count == 2
        assert done.video.title == "Battery Deep Dive"
        assert done.error is None
        assert done.started_at and done.completed_at
        assert done.progress.percent == 50
        assert storage.exists("results", key)
        assert len(queue) == 0
        assert not (tmp_path / "tmp" / job.id).exists()
        assert notifier.events == [(job.id, "completed", JobStatus.COMPLETED)]

    def test_no_webhook_no_notification(self, store, tmp_path: Path):
        factory = PipelineFactory()
        _, queue, storage, notifier, wc = _setup(tmp_path, factory)
        consumer = QueueConsumer(queue, store, storage, factory, notifier=notifier, config=wc)
        _submit(store, queue, webhook_url=None)

        asyncio.run(_deliver(consumer, queue))

        assert notifier.events == []

    def test_retryable_failure_backs_off_then_dead_letters(self, store, tmp_path: Path):
        factory = PipelineFactory(error=ConversionError(ErrorKind.NETWORK, "connection reset"))
        clock, queue, storage, notifier, wc = _setup(tmp_path, factory)
        consumer = QueueConsumer(queue, store, storage, factory, notifier=notifier, config=wc)
        job = _submit(store, queue, max_retries=3)

        async def scenario():
            for _ in range(4):
                clock.now += 1000
                await _deliver(consumer, queue)

        asyncio.run(scenario())

        failed = store.find_by_id(job.id)
        assert queue.nack_delays == [60, 120, 240]
        assert len(queue.dead_letters()) == 1
        assert len(queue) == 0
        assert failed.status == JobStatus.FAILED
        assert failed.retry_count == 3
        assert failed.error.kind == ErrorKind.NETWORK
        assert failed.error.retryable
        assert factory.built == 4
        assert notifier.events == [(job.id, "failed", JobStatus.FAILED)]

    def test_retry_keeps_progress_and_requeues(self, store, tmp_path: Path):
        factory = PipelineFactory(error=ConversionError(ErrorKind.TIMEOUT, "deadline"))
        _, queue, storage, notifier, wc = _setup(tmp_path, factory)
        consumer = QueueConsumer(queue, store, storage, factory, notifier=notifier, config=wc)
        job = _submit(store, queue)

        asyncio.run(_deliver(consumer, queue))

        retried = store.find_by_id(job.id)
        assert retried.status == JobStatus.QUEUED
        assert retried.retry_count == 1
        assert retried.progress.percent == 50
        assert retried.progress.current_step == "Working"
        assert len(queue) == 1
        assert notifier.events == []

    def test_store_calls_leave_the_event_loop(self, tmp_path: Path):
        class ThreadRecordingStore(JobStore):
            def __init__(self, *args, **kwargs):
                super().__init__(*args, **kwargs)
                self.threads = []

            def find_by_id(self, job_id):
                self.threads.append(threading.get_ident())
                return super().find_by_id(job_id)

            def update(self, job_id, **fields):
                self.threads.append(threading.get_ident())
                return super().update(job_id, **fields)

        store = ThreadRecordingStore(tmp_path / "jobs.json")
        factory = PipelineFactory(error=ConversionError(ErrorKind.NETWORK, "reset"))
        _, queue, storage, notifier, wc = _setup(tmp_path, factory)
        consumer = QueueConsumer(queue, store, storage, factory, notifier=notifier, config=wc)
        job = _submit(store, queue)
        store.threads.clear()

        async def scenario():
            await _deliver(consumer, queue)
            return threading.get_ident()

        loop_thread = asyncio.run(scenario())
        threads = list(store.threads)

        # lookup, PROCESSING, QUEUED for the retry
        assert len(threads) == 3
        assert loop_thread not in threads
        assert store.find_by_id(job.id).status == JobStatus.QUEUED

    def test_non_retryable_failure_dead_letters_immediately(self, store, tmp_path: Path):
        factory = PipelineFactory(error=ConversionError(ErrorKind.ACCESS_DENIED, "private video"))
        _, queue, storage, notifier, wc = _setup(tmp_path, factory)
        consumer = QueueConsumer(queue, store, storage, factory, notifier=notifier, config=wc)
        job = _submit(store, queue)

        asyncio.run(_deliver(consumer, queue))

        failed = store.find_by_id(job.id)
        assert queue.nack_delays == []
        assert len(queue.dead_letters()) == 1
        assert failed.status == JobStatus.FAILED
        assert failed.retry_count == 0
        assert failed.error.kind == ErrorKind.ACCESS_DENIED
        assert not failed.error.retryable

    def test_unexpected_exception_is_unknown(self, store, tmp_path: Path):
        factory = PipelineFactory(error=RuntimeError("boom"))
        _, queue, storage, notifier, wc = _setup(tmp_path, factory)
        consumer = QueueConsumer(queue, store, storage, factory, notifier=notifier, config=wc)
        job = _submit(store, queue)

        asyncio.run(_deliver(consumer, queue))

        failed = store.find_by_id(job.id)
        assert failed.status == JobStatus.FAILED
        assert failed.error.kind == ErrorKind.UNKNOWN
        assert failed.error.message == "boom"

    def test_missing_job_is_acked(self, store, tmp_path: Path):
        factory = PipelineFactory()
        _, queue, storage, notifier, wc = _setup(tmp_path, factory)
        consumer = QueueConsumer(queue, store, storage, factory, notifier=notifier, config=wc)
        queue.send({"jobId": "does-not-exist"})

        asyncio.run(_deliver(consumer, queue))

        assert len(queue) == 0
        assert factory.built == 0

    def test_finished_jobs_are_acked_without_work(self, store, tmp_path: Path):
        factory = PipelineFactory()
        _, queue, storage, notifier, wc = _setup(tmp_path, factory)
        consumer = QueueConsumer(queue, store, storage, factory, notifier=notifier, config=wc)

        for status in (JobStatus.CANCELLED, JobStatus.COMPLETED, JobStatus.FAILED):
            job = _submit(store, queue)
            store.update_status(job.id, status)
            asyncio.run(_deliver(consumer, queue))
            assert store.find_by_id(job.id).status == status

        assert len(queue) == 0
        assert factory.built == 0
        assert notifier.events == []

    def test_cancel_while_running_is_overwritten(self, store, tmp_path: Path):
        factory = PipelineFactory(on_run=lambda job: store.update_status(job.id, JobStatus.CANCELLED))
        _, queue, storage, notifier, wc = _setup(tmp_path, factory)
        consumer = QueueConsumer(queue, store, storage, factory, notifier=notifier, config=wc)
        job = _submit(store, queue)

        asyncio.run(_deliver(consumer, queue))

        assert store.find_by_id(job.id).status == JobStatus.COMPLETED


class TestConcurrency:
    def test_backoff_delay(self, store, tmp_path: Path):
        factory = PipelineFactory()
        _, queue, storage, _, wc = _setup(tmp_path, factory)
        consumer = QueueConsumer(queue, store, storage, factory, config=wc)
        assert [consumer.backoff_delay(n) for n in range(3)] == [60, 120, 240]

    def test_never_exceeds_max_concurrent_jobs(self, store, tmp_path: Path):
        running = {"now": 0, "peak": 0}

        def on_run(job):
            running["now"] += 1
            running["peak"] = max(running["peak"], running["now"])

        async def scenario():
            gate = asyncio.Event()
            factory = PipelineFactory(gate=gate, on_run=on_run)
            _, queue, storage, _, wc = _setup(tmp_path, factory, max_concurrent_jobs=2)
            consumer = QueueConsumer(queue, store, storage, factory, config=wc)
            jobs = [_submit(store, queue) for _ in range(3)]

            assert await consumer.poll_once() == 2
            await asyncio.sleep(0.05)
            assert consumer.in_flight == 2
            assert consumer.capacity == 0
            assert await consumer.poll_once() == 0

            gate.set()
            await consumer.stop()
            assert consumer.in_flight == 0
            return jobs, queue

        jobs, queue = asyncio.run(scenario())

        statuses = [store.find_by_id(job.id).status for job in jobs]
        assert running["peak"] == 2
        assert statuses.count(JobStatus.COMPLETED) == 2
        assert statuses.count(JobStatus.QUEUED) == 1
        assert len(queue) == 1

    def test_messages_received_while_stopping_are_returned(self, store, tmp_path: Path):
        factory = PipelineFactory()
        _, queue, storage, _, wc = _setup(tmp_path, factory)
        consumer = QueueConsumer(queue, store, storage, factory, config=wc)
        job = _submit(store, queue)

        async def scenario():
            await consumer.stop()
            return await consumer.poll_once()

        assert asyncio.run(scenario()) == 0
        assert queue.nack_delays == [0]
        assert factory.built == 0
        assert store.find_by_id(job.id).status == JobStatus.QUEUED
        # visible again for the next worker
        assert len(asyncio.run(queue.receive(max_messages=1))) == 1

    def test_start_and_stop(self, store, tmp_path: Path):
        factory = PipelineFactory()
        _, queue, storage, _, wc = _setup(tmp_path, factory)
        consumer = QueueConsumer(queue, store, storage, factory, config=wc)
        job = _submit(store, queue)

        async def scenario():
            poller = asyncio.create_task(consumer.start())
            for _ in range(200):
                if store.find_by_id(job.id).status == JobStatus.COMPLETED:
                    break
                await asyncio.sleep(0.01)
            assert consumer.running
            await consumer.stop()
            await poller
            assert not consumer.running

        asyncio.run(scenario())
        assert store.find_by_id(job.id).status == JobStatus.COMPLETED
        assert len(queue) == 0
