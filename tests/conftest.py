"""Shared fixtures: temporary stores and fake collaborators."""

import asyncio
import copy
import sys
from pathlib import Path
from typing import Callable, Optional

import pytest

# Ensure the project root is importable
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from clients.ollama_client import ChatResponse
from core.config import DEFAULT_CONFIG
from core.errors import ConversionError, ErrorKind
from core.models import (
    ConversionResult,
    Frame,
    Section,
    SubtitleSegment,
    SubtitleTrack,
    VideoMetadata,
)
from core.state import JobStore


# ---------------------------------------------------------------------------
# Sample content
# ---------------------------------------------------------------------------

SAMPLE_LINES = [
    "Welcome back to the channel, today we look at battery chemistry.",
    "Lithium iron phosphate cells last around three thousand cycles.",
    "That is roughly twice the cycle life of older nickel based cells.",
    "Next we compare the cost per kilowatt hour across suppliers.",
    "Prices dropped by forty percent between 2020 and 2024.",
    "Finally, a quick look at recycling and second life storage.",
]


def make_segments(duration: float = 180, step: float = 30) -> list[SubtitleSegment]:
    segments = []
    t = 0.0
    i = 0
    while t < duration:
        segments.append(SubtitleSegment(start=t, end=t + step - 2, text=SAMPLE_LINES[i % len(SAMPLE_LINES)]))
        t += step
        i += 1
    return segments


def make_sections(count: int, text: str = "some words here") -> list[Section]:
    return [Section(timestamp=float(i * 60), raw_text=f"{text} {i}") for i in range(count)]


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeLLM:
    """Chat client returning canned replies.

    ``handler(system, user)`` returns the reply text or raises.
    """

    def __init__(self, handler: Optional[Callable[[str, str], str]] = None, tokens: int = 10):
        self.handler = handler or (lambda system, user: "{}")
        self.tokens = tokens
        self.calls: list[tuple[str, str]] = []

    async def chat(self, system, user, json_mode=False, temperature=0.3, max_tokens=4096):
        self.calls.append((system, user))
        return ChatResponse(text=self.handler(system, user), tokens_used=self.tokens)


class FakeVideoSource:
    def __init__(
        self,
        duration: int = 180,
        language: str = "ko",
        segments: Optional[list[SubtitleSegment]] = None,
        metadata_error: Optional[Exception] = None,
        video_error: Optional[Exception] = None,
        metadata_delay: float = 0,
    ):
        self.duration = duration
        self.language = language
        self.segments = make_segments(duration) if segments is None else segments
        self.metadata_error = metadata_error
        self.video_error = video_error
        self.metadata_delay = metadata_delay
        self.video_downloads = 0

    async def get_metadata(self, ref):
        if self.metadata_delay:
            await asyncio.sleep(self.metadata_delay)
        if self.metadata_error is not None:
            raise self.metadata_error
        return VideoMetadata(id="abc123", title="Battery Deep Dive", channel="Lab Notes", duration=self.duration)

    async def get_captions(self, ref, languages):
        if not self.segments:
            return None
        return SubtitleTrack(language=self.language, source="captions", segments=list(self.segments))

    async def download_audio(self, ref, dest):
        raise ConversionError(ErrorKind.TOOL_FAILURE, "audio download not available")

    async def download_video(self, ref, dest, quality="low"):
        self.video_downloads += 1
        if self.video_error is not None:
            raise self.video_error
        dest.mkdir(parents=True, exist_ok=True)
        path = dest / "video.mp4"
        path.write_bytes(b"video")
        return path


class FakeExtractor:
    def __init__(self, fail_at: tuple = ()):
        self.fail_at = fail_at
        self.calls: list[float] = []

    async def capture_frame(self, video_path, timestamp, output_path, quality="low"):
        self.calls.append(timestamp)
        if timestamp in self.fail_at:
            raise ConversionError(ErrorKind.TOOL_FAILURE, f"ffmpeg failed at {timestamp}")
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(b"\xff\xd8\xff\xe0jpeg")
        return Frame(timestamp=timestamp, image_path=str(output_path), width=640, height=360)


class FakePipeline:
    """Stands in for ``Pipeline`` in worker and job service tests."""

    def __init__(self, error: Optional[Exception] = None, gate: Optional[asyncio.Event] = None, on_run=None):
        self.error = error
        self.gate = gate
        self.on_run = on_run
        self.callbacks = []

    def on_progress(self, callback):
        self.callbacks.append(callback)

    async def process_with_deadline(self, job, output_dir, timeout):
        from core.models import PipelineState, PipelineStatus

        for callback in self.callbacks:
            callback(PipelineState(PipelineStatus.PROCESSING, 50, "Working"))
        if self.on_run is not None:
            self.on_run(job)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        path = output_dir / f"out.{job.options.format.extension}"
        path.write_text("# Battery Deep Dive\n", encoding="utf-8")
        return ConversionResult(
            output_path=str(path),
            file_size=path.stat().st_size,
            pages=3,
            frame_count=2,
            metadata=VideoMetadata(id="abc123", title="Battery Deep Dive", channel="Lab Notes", duration=180),
            duration=1.5,
        )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def config() -> dict:
    """Default config without retry sleeps."""
    cfg = copy.deepcopy(DEFAULT_CONFIG)
    cfg["enhance"]["retry_base_delay"] = 0
    return cfg


@pytest.fixture
def store(tmp_path: Path) -> JobStore:
    return JobStore(tmp_path / "jobs.json")


@pytest.fixture
def sample_segments() -> list[SubtitleSegment]:
    return make_segments()


@pytest.fixture
def video_source() -> FakeVideoSource:
    return FakeVideoSource()


@pytest.fixture
def extractor() -> FakeExtractor:
    return FakeExtractor()
