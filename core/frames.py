"""Frame capture: timestamps, lazy capture stream and degraded placeholders."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import AsyncIterator, Callable, Optional

from .errors import ConversionError
from .models import Chapter, Frame
from .sampling import SamplingPolicy

logger = logging.getLogger(__name__)


def generate_timestamps(duration: float, interval: float) -> list[float]:
    """``0, interval, 2*interval, ...`` strictly below ``duration``."""
    if interval <= 0:
        raise ValueError("interval must be positive")
    timestamps = []
    t = 0.0
    while t < duration:
        timestamps.append(t)
        t += interval
    return timestamps


class FrameStream:
    """A finite, single-use async sequence of frames.

    Iterating a second time raises ``RuntimeError``; call ``collect`` once
    and keep the list if the frames are needed again.
    """

    def __init__(self, source: AsyncIterator[Frame], total: int):
        self._source = source
        self.total = total
        self._consumed = False

    def __aiter__(self) -> AsyncIterator[Frame]:
        if self._consumed:
            raise RuntimeError("FrameStream can only be iterated once")
        self._consumed = True
        return self._source

    async def collect(self, limit: Optional[int] = None) -> list[Frame]:
        frames: list[Frame] = []
        if limit is not None and limit <= 0:
            self._consumed = True
            await self._close()
            return frames
        async for frame in self:
            frames.append(frame)
            if limit is not None and len(frames) >= limit:
                break
        await self._close()
        return frames

    async def _close(self) -> None:
        aclose = getattr(self._source, "aclose", None)
        if aclose is not None:
            await aclose()


class FrameCapturer:
    """Captures one frame per timestamp from a once-downloaded video."""

    def __init__(
        self,
        video_source,
        extractor,
        work_dir: Path,
        quality: str = "low",
        sampling: Optional[SamplingPolicy] = None,
        on_progress: Optional[Callable[[int, int], None]] = None,
    ):
        self.video_source = video_source
        self.extractor = extractor
        self.work_dir = Path(work_dir)
        self.quality = quality
        self.sampling = sampling or SamplingPolicy.disabled()
        self.on_progress = on_progress

    def stream(self, video_ref: str, timestamps: list[float], sample: bool = True) -> FrameStream:
        """Lazily capture frames at ``timestamps``, evenly sampled unless ``sample`` is off."""
        selected = self.sampling.sample_timestamps(timestamps) if sample else timestamps
        return FrameStream(self._capture(video_ref, selected), total=len(selected))

    async def _capture(self, video_ref: str, timestamps: list[float]) -> AsyncIterator[Frame]:
        if not timestamps:
            return
        frames_dir = self.work_dir / "frames"
        try:
            video_path = await self.video_source.download_video(video_ref, self.work_dir / "video", self.quality)
        except ConversionError as e:
            logger.warning(f"⚠ Video download failed, continuing without images: {e}")
            video_path = None

        total = len(timestamps)
        for i, ts in enumerate(timestamps, 1):
            frame = Frame(timestamp=ts)
            if video_path is not None:
                try:
                    frame = await self.extractor.capture_frame(
                        video_path, ts, frames_dir / f"frame_{int(ts):06d}.jpg", self.quality
                    )
                except ConversionError as e:
                    logger.warning(f"⚠ Frame at {ts:.0f}s failed: {e}")
            if self.on_progress:
                self.on_progress(i, total)
            yield frame

    async def capture_all(self, video_ref: str, duration: float, interval: float) -> list[Frame]:
        return await self.stream(video_ref, generate_timestamps(duration, interval)).collect()

    async def capture_for_chapters(self, video_ref: str, chapters: list[Chapter]) -> list[Frame]:
        # Chapters are capped upstream; frames pair with chapters by index
        return await self.stream(video_ref, [c.start for c in chapters], sample=False).collect()


def placeholder_frames(timestamps: list[float]) -> list[Frame]:
    return [Frame(timestamp=ts) for ts in timestamps]
