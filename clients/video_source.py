"""Video source backed by yt-dlp.

Resolves metadata, downloads audio/video and fetches native captions.
"""

from __future__ import annotations

import json
import logging
import re
import tempfile
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

from core.errors import ConversionError, ErrorKind
from core.models import Chapter, SubtitleSegment, SubtitleTrack, VideoMetadata
from .process import find_executable, run_tool

logger = logging.getLogger(__name__)

_VIDEO_ID = re.compile(r"^[A-Za-z0-9_-]{11}$")

QUALITY_HEIGHTS = {"low": 480, "medium": 720, "high": 1080}

# Ordered: first match wins
_STDERR_KINDS = [
    (re.compile(r"private video|sign in to confirm|members-only|login required|age-restricted", re.I), ErrorKind.ACCESS_DENIED),
    (re.compile(r"HTTP Error 429|too many requests", re.I), ErrorKind.RATE_LIMITED),
    (re.compile(r"video unavailable|unsupported url|is not a valid url|does not exist|has been removed", re.I), ErrorKind.INVALID_INPUT),
    (re.compile(r"timed out|connection|network is unreachable|name resolution|unable to download", re.I), ErrorKind.NETWORK),
]


def normalize_ref(ref: str) -> str:
    """Return a URL for ``ref`` (URL or bare YouTube id).

    Raises ``ConversionError(INVALID_INPUT)`` when it is neither.
    """
    ref = (ref or "").strip()
    if _VIDEO_ID.match(ref):
        return f"https://www.youtube.com/watch?v={ref}"
    parsed = urlparse(ref)
    if parsed.scheme in ("http", "https") and parsed.netloc:
        return ref
    raise ConversionError(ErrorKind.INVALID_INPUT, f"Not a video URL or id: {ref[:100]}")


def classify_stderr(stderr: str) -> ErrorKind:
    for pattern, kind in _STDERR_KINDS:
        if pattern.search(stderr):
            return kind
    return ErrorKind.TOOL_FAILURE


_VTT_TIME = re.compile(
    r"(?:(\d+):)?(\d{2}):(\d{2})[.,](\d{3})\s*-->\s*(?:(\d+):)?(\d{2}):(\d{2})[.,](\d{3})"
)
_VTT_TAG = re.compile(r"<[^>]+>")


def _seconds(h: Optional[str], m: str, s: str, ms: str) -> float:
    return int(h or 0) * 3600 + int(m) * 60 + int(s) + int(ms) / 1000


def parse_vtt(content: str) -> list[SubtitleSegment]:
    """Parse WebVTT cues. Consecutive duplicate lines (rolling captions) are merged."""
    segments: list[SubtitleSegment] = []
    lines = content.splitlines()
    i = 0
    while i < len(lines):
        match = _VTT_TIME.search(lines[i])
        if not match:
            i += 1
            continue
        g = match.groups()
        start = _seconds(g[0], g[1], g[2], g[3])
        end = _seconds(g[4], g[5], g[6], g[7])
        i += 1
        texts = []
        while i < len(lines) and lines[i].strip():
            cleaned = _VTT_TAG.sub("", lines[i]).strip()
            if cleaned:
                texts.append(cleaned)
            i += 1
        text = " ".join(texts)
        if not text:
            continue
        if segments and segments[-1].text == text:
            segments[-1].end = max(segments[-1].end, end)
            continue
        segments.append(SubtitleSegment(start=start, end=end, text=text))
    return segments


class YtDlpVideoSource:
    """Video source using the yt-dlp command-line tool."""

    def __init__(
        self,
        ytdlp_path: Optional[str] = None,
        cookies_browser: Optional[str] = None,
        ffmpeg_location: Optional[str] = None,
        timeout: float = 600,
    ):
        self._ytdlp_path = ytdlp_path
        self.cookies_browser = cookies_browser
        self.ffmpeg_location = ffmpeg_location
        self.timeout = timeout

    @property
    def ytdlp(self) -> str:
        if self._ytdlp_path is None:
            self._ytdlp_path = find_executable("yt-dlp")
        return self._ytdlp_path

    def _base_cmd(self) -> list[str]:
        cmd = [self.ytdlp, "--no-warnings", "--no-progress"]
        if self.cookies_browser:
            cmd.extend(["--cookies-from-browser", self.cookies_browser])
        if self.ffmpeg_location:
            cmd.extend(["--ffmpeg-location", self.ffmpeg_location])
        return cmd

    async def _run(self, args: list[str], what: str) -> str:
        result = await run_tool(self._base_cmd() + args, self.timeout)
        if result.returncode != 0:
            message = result.stderr.strip().splitlines()[-1:] or ["no output"]
            raise ConversionError(classify_stderr(result.stderr), f"yt-dlp {what} failed: {message[0]}")
        return result.stdout

    async def get_metadata(self, ref: str) -> VideoMetadata:
        url = normalize_ref(ref)
        stdout = await self._run(["-J", "--skip-download", url], "metadata")
        try:
            info = json.loads(stdout)
        except json.JSONDecodeError as e:
            raise ConversionError(ErrorKind.TOOL_FAILURE, f"yt-dlp returned invalid JSON: {e}")

        captions = sorted(set(info.get("subtitles") or {}) | set(info.get("automatic_captions") or {}))
        chapters = [
            Chapter(title=c.get("title", ""), start=float(c.get("start_time", 0)), end=float(c.get("end_time", 0)))
            for c in info.get("chapters") or []
        ]
        return VideoMetadata(
            id=info.get("id", ""),
            title=info.get("title", ""),
            channel=info.get("channel") or info.get("uploader") or "",
            duration=int(info.get("duration") or 0),
            thumbnail=info.get("thumbnail") or "",
            description=info.get("description") or "",
            captions=captions,
            chapters=chapters,
        )

    async def download_audio(self, ref: str, dest: Path) -> Path:
        dest = Path(dest)
        dest.mkdir(parents=True, exist_ok=True)
        await self._run(
            ["-x", "--audio-format", "m4a", "--audio-quality", "0", "-o", str(dest / "audio.%(ext)s"), normalize_ref(ref)],
            "audio download",
        )
        return self._find_output(dest, "audio", (".m4a", ".mp3", ".wav", ".webm", ".opus"))

    async def download_video(self, ref: str, dest: Path, quality: str = "low") -> Path:
        dest = Path(dest)
        dest.mkdir(parents=True, exist_ok=True)
        height = QUALITY_HEIGHTS.get(quality, 480)
        fmt = f"bestvideo[height<={height}][ext=mp4]+bestaudio[ext=m4a]/best[height<={height}]/best"
        await self._run(
            ["-f", fmt, "-o", str(dest / "video.%(ext)s"), normalize_ref(ref)],
            "video download",
        )
        return self._find_output(dest, "video", (".mp4", ".mkv", ".webm"))

    def _find_output(self, dest: Path, stem: str, suffixes: tuple[str, ...]) -> Path:
        for f in sorted(dest.glob(f"{stem}.*")):
            if f.suffix in suffixes:
                return f
        raise ConversionError(ErrorKind.TOOL_FAILURE, f"Downloaded {stem} file not found")

    async def get_captions(self, ref: str, languages: list[str]) -> Optional[SubtitleTrack]:
        """Fetch the first available caption track in preference order."""
        url = normalize_ref(ref)
        with tempfile.TemporaryDirectory(prefix="v2doc-subs-") as tmp:
            tmp_dir = Path(tmp)
            for lang in languages:
                await self._run(
                    [
                        "--skip-download", "--write-subs", "--write-auto-subs",
                        "--sub-langs", lang, "--sub-format", "vtt",
                        "-o", str(tmp_dir / "subs.%(ext)s"), url,
                    ],
                    "caption download",
                )
                for vtt in sorted(tmp_dir.glob("subs*.vtt")):
                    segments = parse_vtt(vtt.read_text(encoding="utf-8", errors="replace"))
                    vtt.unlink()
                    if segments:
                        logger.info(f"✓ Captions found ({lang}): {len(segments)} segments")
                        return SubtitleTrack(language=lang, source="captions", segments=segments)
        return None
