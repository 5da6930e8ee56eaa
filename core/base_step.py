"""Base class for pipeline stages and the per-run context they share."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from .models import (
    Chapter,
    ContentSummary,
    Frame,
    Job,
    PipelineStatus,
    Section,
    SubtitleSegment,
    SubtitleTrack,
    VideoMetadata,
)

if TYPE_CHECKING:
    from .pipeline import Pipeline
    from utils.render import RenderedDocument

logger = logging.getLogger("pipeline.stage")


@dataclass
class PipelineContext:
    """State written by each stage and read by the ones after it."""

    job: Job
    output_dir: Path
    work_dir: Path
    metadata: Optional[VideoMetadata] = None
    subtitles: SubtitleTrack = field(default_factory=SubtitleTrack.empty)
    segments: list[SubtitleSegment] = field(default_factory=list)
    content_type: Optional[str] = None
    chapters: list[Chapter] = field(default_factory=list)
    summary: Optional[ContentSummary] = None
    frames: list[Frame] = field(default_factory=list)
    sections: list[Section] = field(default_factory=list)
    tokens_used: int = 0
    output: Optional["RenderedDocument"] = None

    @property
    def options(self):
        return self.job.options


class BaseStage:
    """Base class for all pipeline stages.

    A fatal stage aborts the job when it raises; any other stage is expected
    to degrade on its own, and the coordinator logs and moves on if it
    still raises.
    """

    name = "stage"
    label = "Working"
    fatal = False
    status = PipelineStatus.PROCESSING
    start_percent = 0
    end_percent = 0

    def __init__(self, pipeline: "Pipeline"):
        self.pipeline = pipeline
        self.config = pipeline.config
        self.capabilities = pipeline.capabilities
        self.sampling = pipeline.sampling
        self.logger = logger

    def progress(self, percent: int, step: Optional[str] = None) -> None:
        self.pipeline.emit(self.status, percent, step or self.label)

    async def run(self, ctx: PipelineContext) -> None:
        """Execute the stage. Must be implemented by subclasses."""
        raise NotImplementedError("Subclasses must implement run()")
