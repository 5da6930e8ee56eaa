"""Tests for the JSON-file work queue."""

import asyncio
from pathlib import Path

from clients.local_queue import FileQueue


class Clock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _queue(tmp_path: Path, clock: Clock, sleep=None) -> FileQueue:
    kwargs = {"sleep": sleep} if sleep else {}
    return FileQueue(tmp_path / "queue.json", tmp_path / "dlq.json", clock=clock, **kwargs)


def _receive(queue: FileQueue, n: int = 10, visibility: int = 600, wait: int = 0):
    return asyncio.run(queue.receive(max_messages=n, visibility_timeout_seconds=visibility, wait_time_seconds=wait))


class TestFileQueue:
    def test_send_and_receive(self, tmp_path: Path):
        queue = _queue(tmp_path, Clock())
        queue.send({"jobId": "j1"})
        messages = _receive(queue)
        assert len(messages) == 1
        assert messages[0].job_id == "j1"
        assert messages[0].receive_count == 1
        assert messages[0].receipt_handle

    def test_received_message_invisible_until_timeout(self, tmp_path: Path):
        clock = Clock()
        queue = _queue(tmp_path, clock)
        queue.send({"jobId": "j1"})
        _receive(queue, visibility=600)
        assert _receive(queue) == []
        clock.now += 601
        again = _receive(queue)
        assert len(again) == 1
        assert again[0].receive_count == 2

    def test_max_messages(self, tmp_path: Path):
        queue = _queue(tmp_path, Clock())
        for i in range(5):
            queue.send({"jobId": f"j{i}"})
        assert [m.job_id for m in _receive(queue, n=2)] == ["j0", "j1"]
        assert _receive(queue, n=0) == []

    def test_ack_removes(self, tmp_path: Path):
        queue = _queue(tmp_path, Clock())
        queue.send({"jobId": "j1"})
        message = _receive(queue)[0]
        asyncio.run(queue.ack(message))
        assert len(queue) == 0

    def test_nack_delays_redelivery(self, tmp_path: Path):
        clock = Clock()
        queue = _queue(tmp_path, clock)
        queue.send({"jobId": "j1"})
        message = _receive(queue)[0]
        asyncio.run(queue.nack(message, 120))
        clock.now += 119
        assert _receive(queue) == []
        clock.now += 2
        assert len(_receive(queue)) == 1

    def test_stale_receipt_ignored(self, tmp_path: Path):
        clock = Clock()
        queue = _queue(tmp_path, clock)
        queue.send({"jobId": "j1"})
        old = _receive(queue, visibility=10)[0]
        clock.now += 11
        _receive(queue)
        asyncio.run(queue.ack(old))
        assert len(queue) == 1

    def test_dead_letter(self, tmp_path: Path):
        queue = _queue(tmp_path, Clock())
        queue.send({"jobId": "j1"})
        message = _receive(queue)[0]
        asyncio.run(queue.dead_letter(message))
        assert len(queue) == 0
        dead = queue.dead_letters()
        assert len(dead) == 1
        assert dead[0]["body"] == {"jobId": "j1"}

    def test_delayed_send(self, tmp_path: Path):
        clock = Clock()
        queue = _queue(tmp_path, clock)
        queue.send({"jobId": "j1"}, delay_seconds=30)
        assert _receive(queue) == []
        clock.now += 30
        assert len(_receive(queue)) == 1

    def test_long_poll_waits_for_message(self, tmp_path: Path):
        clock = Clock()
        queue = None

        async def fake_sleep(seconds):
            clock.now += seconds
            if clock.now >= 1003:
                queue.send({"jobId": "late"})

        queue = _queue(tmp_path, clock, sleep=fake_sleep)
        messages = _receive(queue, wait=20)
        assert [m.job_id for m in messages] == ["late"]

    def test_long_poll_times_out_empty(self, tmp_path: Path):
        clock = Clock()
        slept = []

        async def fake_sleep(seconds):
            slept.append(seconds)
            clock.now += seconds

        queue = _queue(tmp_path, clock, sleep=fake_sleep)
        assert _receive(queue, wait=5) == []
        assert sum(slept) == 5
