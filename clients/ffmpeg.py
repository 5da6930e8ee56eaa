"""Frame capture with ffmpeg."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from core.errors import ConversionError, ErrorKind
from core.models import Frame
from .process import find_executable, run_tool

logger = logging.getLogger(__name__)

QUALITY_SIZES = {
    "low": (854, 480),
    "medium": (1280, 720),
    "high": (1920, 1080),
}


class FFmpegFrameExtractor:
    """Grab single frames from a local video file."""

    def __init__(self, ffmpeg_path: Optional[str] = None, timeout: float = 60):
        self._ffmpeg_path = ffmpeg_path
        self.timeout = timeout

    @property
    def ffmpeg(self) -> str:
        if self._ffmpeg_path is None:
            self._ffmpeg_path = find_executable("ffmpeg")
        return self._ffmpeg_path

    async def capture_frame(
        self,
        video_path: Path,
        timestamp: float,
        output_path: Path,
        quality: str = "low",
    ) -> Frame:
        width, height = QUALITY_SIZES.get(quality, QUALITY_SIZES["low"])
        scale = f"{width}:{height}"
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        cmd = [
            self.ffmpeg,
            "-ss", f"{timestamp:.3f}",
            "-i", str(video_path),
            "-vframes", "1",
            "-vf", f"scale={scale}:force_original_aspect_ratio=decrease,pad={scale}:(ow-iw)/2:(oh-ih)/2",
            "-q:v", "2",
            "-y",
            str(output_path),
        ]
        result = await run_tool(cmd, self.timeout)
        if result.returncode != 0 or not output_path.exists():
            tail = result.stderr.strip().splitlines()[-1:] or ["no output"]
            raise ConversionError(ErrorKind.TOOL_FAILURE, f"ffmpeg failed at {timestamp:.0f}s: {tail[0]}")
        return Frame(timestamp=timestamp, image_path=str(output_path), width=width, height=height)
