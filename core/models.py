"""Data models for jobs and the conversion pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from .errors import ConversionError, ErrorKind, sanitize_message


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class OutputFormat(str, Enum):
    """Closed set of output formats."""

    DOCUMENT = "document"
    MARKDOWN = "markdown"
    HTML = "html"
    BRIEF = "brief"

    @property
    def extension(self) -> str:
        return _EXTENSIONS[self]

    @property
    def content_type(self) -> str:
        return _CONTENT_TYPES[self]


_EXTENSIONS = {
    OutputFormat.DOCUMENT: "epub",
    OutputFormat.MARKDOWN: "md",
    OutputFormat.HTML: "html",
    OutputFormat.BRIEF: "html",
}

_CONTENT_TYPES = {
    OutputFormat.DOCUMENT: "application/epub+zip",
    OutputFormat.MARKDOWN: "text/markdown",
    OutputFormat.HTML: "text/html",
    OutputFormat.BRIEF: "text/html",
}

FRAME_QUALITIES = ("low", "medium", "high")


@dataclass
class RenderOptions:
    """Per-job rendering options."""

    format: OutputFormat = OutputFormat.DOCUMENT
    frame_interval: int = 60  # seconds
    frame_quality: str = "low"
    language: Optional[str] = None  # preferred subtitle language
    include_summary: bool = True
    include_translation: bool = False
    target_language: str = "en"

    def validate(self) -> None:
        if self.frame_interval <= 0:
            raise ConversionError(ErrorKind.INVALID_INPUT, "frame_interval must be positive")
        if self.frame_quality not in FRAME_QUALITIES:
            raise ConversionError(
                ErrorKind.INVALID_INPUT, f"Unknown frame quality: {self.frame_quality}"
            )

    def to_dict(self) -> dict:
        return {
            "format": self.format.value,
            "frame_interval": self.frame_interval,
            "frame_quality": self.frame_quality,
            "language": self.language,
            "include_summary": self.include_summary,
            "include_translation": self.include_translation,
            "target_language": self.target_language,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "RenderOptions":
        data = data or {}
        try:
            fmt = OutputFormat(data.get("format", OutputFormat.DOCUMENT.value))
        except ValueError:
            raise ConversionError(
                ErrorKind.INVALID_INPUT, f"Unknown output format: {data.get('format')}"
            )
        return cls(
            format=fmt,
            frame_interval=int(data.get("frame_interval", 60)),
            frame_quality=data.get("frame_quality", "low"),
            language=data.get("language"),
            include_summary=bool(data.get("include_summary", True)),
            include_translation=bool(data.get("include_translation", False)),
            target_language=data.get("target_language", "en"),
        )


@dataclass
class JobProgress:
    percent: int = 0
    current_step: str = ""
    steps_completed: list[str] = field(default_factory=list)
    steps_remaining: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "percent": self.percent,
            "current_step": self.current_step,
            "steps_completed": list(self.steps_completed),
            "steps_remaining": list(self.steps_remaining),
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "JobProgress":
        data = data or {}
        return cls(
            percent=data.get("percent", 0),
            current_step=data.get("current_step", ""),
            steps_completed=list(data.get("steps_completed", [])),
            steps_remaining=list(data.get("steps_remaining", [])),
        )


@dataclass
class JobResult:
    output_path: str
    file_size: int = 0
    pages: int = 0
    frame_count: int = 0
    processing_seconds: float = 0.0

    def to_dict(self) -> dict:
        return {
            "output_path": self.output_path,
            "file_size": self.file_size,
            "pages": self.pages,
            "frame_count": self.frame_count,
            "processing_seconds": self.processing_seconds,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "JobResult":
        return cls(
            output_path=data.get("output_path", ""),
            file_size=data.get("file_size", 0),
            pages=data.get("pages", 0),
            frame_count=data.get("frame_count", 0),
            processing_seconds=data.get("processing_seconds", 0.0),
        )


@dataclass
class JobError:
    """User-visible error recorded on a failed job."""

    kind: ErrorKind
    message: str
    retryable: bool = False

    @classmethod
    def from_exception(cls, exc: BaseException) -> "JobError":
        err = ConversionError.wrap(exc)
        return cls(kind=err.kind, message=sanitize_message(err.message), retryable=err.retryable)

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "message": self.message, "retryable": self.retryable}

    @classmethod
    def from_dict(cls, data: dict) -> "JobError":
        try:
            kind = ErrorKind(data.get("kind", "unknown"))
        except ValueError:
            kind = ErrorKind.UNKNOWN
        return cls(kind=kind, message=data.get("message", ""), retryable=bool(data.get("retryable", False)))


@dataclass
class VideoSummary:
    """Video facts recorded on the job after a run."""

    title: str = ""
    channel: str = ""
    duration: int = 0
    thumbnail: str = ""

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "channel": self.channel,
            "duration": self.duration,
            "thumbnail": self.thumbnail,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "VideoSummary":
        return cls(
            title=data.get("title", ""),
            channel=data.get("channel", ""),
            duration=data.get("duration", 0),
            thumbnail=data.get("thumbnail", ""),
        )


@dataclass
class Job:
    """A persisted conversion job."""

    id: str
    owner_id: str
    video_ref: str
    options: RenderOptions = field(default_factory=RenderOptions)
    status: JobStatus = JobStatus.QUEUED
    progress: JobProgress = field(default_factory=JobProgress)
    retry_count: int = 0
    max_retries: int = 3
    webhook_url: Optional[str] = None
    created_at: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    result: Optional[JobResult] = None
    error: Optional[JobError] = None
    video: Optional[VideoSummary] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "video_ref": self.video_ref,
            "options": self.options.to_dict(),
            "status": self.status.value,
            "progress": self.progress.to_dict(),
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "webhook_url": self.webhook_url,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "result": self.result.to_dict() if self.result else None,
            "error": self.error.to_dict() if self.error else None,
            "video": self.video.to_dict() if self.video else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Job":
        return cls(
            id=data["id"],
            owner_id=data.get("owner_id", ""),
            video_ref=data.get("video_ref", ""),
            options=RenderOptions.from_dict(data.get("options")),
            status=JobStatus(data.get("status", JobStatus.QUEUED.value)),
            progress=JobProgress.from_dict(data.get("progress")),
            retry_count=data.get("retry_count", 0),
            max_retries=data.get("max_retries", 3),
            webhook_url=data.get("webhook_url"),
            created_at=data.get("created_at"),
            started_at=data.get("started_at"),
            completed_at=data.get("completed_at"),
            result=JobResult.from_dict(data["result"]) if data.get("result") else None,
            error=JobError.from_dict(data["error"]) if data.get("error") else None,
            video=VideoSummary.from_dict(data["video"]) if data.get("video") else None,
        )


class PipelineStatus(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    PROCESSING = "processing"
    GENERATING = "generating"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass(frozen=True)
class PipelineState:
    """Transient progress snapshot emitted to observers."""

    status: PipelineStatus
    progress: int
    current_step: str


@dataclass
class SubtitleSegment:
    start: float
    end: float
    text: str

    @property
    def duration(self) -> float:
        return max(0.0, self.end - self.start)

    def to_dict(self) -> dict:
        return {"start": self.start, "end": self.end, "text": self.text}

    @classmethod
    def from_dict(cls, data: dict) -> "SubtitleSegment":
        return cls(start=float(data["start"]), end=float(data["end"]), text=data.get("text", ""))


@dataclass
class SubtitleTrack:
    language: str = ""
    source: str = "none"  # captions | transcription | none
    segments: list[SubtitleSegment] = field(default_factory=list)

    @classmethod
    def empty(cls) -> "SubtitleTrack":
        return cls(language="", source="none", segments=[])


@dataclass
class Chapter:
    title: str
    start: float
    end: float

    def to_dict(self) -> dict:
        return {"title": self.title, "start": self.start, "end": self.end}

    @classmethod
    def from_dict(cls, data: dict) -> "Chapter":
        return cls(
            title=data.get("title", ""),
            start=float(data.get("start", data.get("start_time", 0))),
            end=float(data.get("end", data.get("end_time", 0))),
        )


@dataclass
class VideoMetadata:
    """Video facts resolved from the source."""

    id: str
    title: str
    channel: str = ""
    duration: int = 0  # seconds
    thumbnail: str = ""
    description: str = ""
    captions: list[str] = field(default_factory=list)
    chapters: list[Chapter] = field(default_factory=list)

    def to_summary(self) -> VideoSummary:
        return VideoSummary(
            title=self.title,
            channel=self.channel,
            duration=self.duration,
            thumbnail=self.thumbnail,
        )


@dataclass
class Frame:
    timestamp: float
    image_path: Optional[str] = None  # None when capture degraded
    width: int = 0
    height: int = 0

    @property
    def captured(self) -> bool:
        return self.image_path is not None


@dataclass
class Quote:
    text: str
    speaker: Optional[str] = None

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"text": self.text}
        if self.speaker:
            data["speaker"] = self.speaker
        return data


@dataclass
class EnhancedContent:
    """Model-produced rewrite of one section."""

    one_liner: str = ""
    key_points: list[str] = field(default_factory=list)
    paragraphs: list[str] = field(default_factory=list)
    bullets: list[str] = field(default_factory=list)
    notable_quotes: list[Quote] = field(default_factory=list)
    translated_text: str = ""

    def to_dict(self) -> dict:
        return {
            "one_liner": self.one_liner,
            "key_points": list(self.key_points),
            "main_information": {
                "paragraphs": list(self.paragraphs),
                "bullets": list(self.bullets),
            },
            "notable_quotes": [q.to_dict() for q in self.notable_quotes],
            "translated_text": self.translated_text,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "EnhancedContent":
        main = data.get("main_information") or {}
        quotes = []
        for q in data.get("notable_quotes") or []:
            if isinstance(q, str):
                quotes.append(Quote(text=q))
            elif isinstance(q, dict) and q.get("text"):
                quotes.append(Quote(text=q["text"], speaker=q.get("speaker")))
        return cls(
            one_liner=data.get("one_liner", ""),
            key_points=list(data.get("key_points") or []),
            paragraphs=list(main.get("paragraphs") or []),
            bullets=list(main.get("bullets") or []),
            notable_quotes=quotes,
            translated_text=data.get("translated_text", ""),
        )


@dataclass
class Section:
    """One slice of the output document."""

    timestamp: float
    raw_text: str = ""
    segments: list[SubtitleSegment] = field(default_factory=list)
    frame: Optional[Frame] = None
    chapter_title: Optional[str] = None
    summary: Optional[str] = None
    key_points: list[str] = field(default_factory=list)
    enhanced: Optional[EnhancedContent] = None


@dataclass
class ContentSummary:
    """Whole-document summary."""

    summary: str = ""
    key_points: list[str] = field(default_factory=list)
    topics: list[str] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not self.summary and not self.key_points

    def to_dict(self) -> dict:
        return {"summary": self.summary, "key_points": list(self.key_points), "topics": list(self.topics)}

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "ContentSummary":
        data = data or {}
        return cls(
            summary=data.get("summary", ""),
            key_points=list(data.get("key_points") or []),
            topics=list(data.get("topics") or []),
        )


@dataclass
class Document:
    """Everything the renderer needs."""

    metadata: VideoMetadata
    sections: list[Section]
    options: RenderOptions
    summary: Optional[ContentSummary] = None
    chapters: list[Chapter] = field(default_factory=list)
    content_type: Optional[str] = None
    subtitle_language: str = ""


@dataclass
class ConversionResult:
    output_path: str
    file_size: int
    pages: int
    frame_count: int
    metadata: VideoMetadata
    duration: float  # processing seconds


@dataclass
class QueueMessage:
    """A message received from the work queue."""

    id: str
    body: dict
    receipt_handle: str
    enqueued_at: Optional[str] = None
    receive_count: int = 0

    @property
    def job_id(self) -> Optional[str]:
        return self.body.get("jobId")
