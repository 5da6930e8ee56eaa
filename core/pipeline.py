"""Conversion pipeline coordinator.

Runs the seven stages of a conversion in order:

1. metadata   - resolve title, duration, captions, source chapters (fatal)
2. subtitles  - captions, transcription fallback, translation
3. chapters   - content type and chapters
4. summary    - whole-document summary
5. frames     - one frame per interval or chapter
6. content    - merge into sections and enhance
7. output     - render the document (fatal)
"""

from __future__ import annotations

import asyncio
import tempfile
import time
from pathlib import Path
from typing import Any, Callable, Optional

from .assistant import ContentAssistant
from .base_step import BaseStage, PipelineContext
from .batcher import EnhancementBatcher
from .cache import ResultCache
from .capabilities import Capabilities
from .config import resolve_path
from .errors import ConversionError, ErrorKind
from .models import ConversionResult, Job, PipelineState, PipelineStatus
from .sampling import SamplingPolicy
from .step_chapters import ChapterStage
from .step_content import ContentStage
from .step_frames import FrameStage
from .step_metadata import MetadataStage
from .step_output import OutputStage
from .step_subtitles import SubtitleStage
from .step_summary import SummaryStage
from utils import get_logger

logger = get_logger("pipeline")

STAGES = (
    MetadataStage,
    SubtitleStage,
    ChapterStage,
    SummaryStage,
    FrameStage,
    ContentStage,
    OutputStage,
)

ProgressCallback = Callable[[PipelineState], None]


class Pipeline:
    """Drives one conversion at a time.

    Create one instance per job: progress tracking is per run.
    """

    def __init__(
        self,
        config: dict[str, Any],
        capabilities: Capabilities,
        video_source,
        frame_extractor,
        renderer,
        batcher: Optional[EnhancementBatcher] = None,
        sampling: Optional[SamplingPolicy] = None,
        prompts_dir: Optional[Path] = None,
    ):
        self.config = config
        self.capabilities = capabilities
        self.video_source = video_source
        self.frame_extractor = frame_extractor
        self.renderer = renderer
        self.sampling = sampling or SamplingPolicy.from_config(config)
        self.assistant = ContentAssistant(capabilities.llm, prompts_dir) if capabilities.has_llm else None
        if batcher is None and capabilities.has_llm:
            batcher = EnhancementBatcher.from_config(config, capabilities.llm)
        self.batcher = batcher
        self.logger = logger
        self.stages: list[BaseStage] = [stage(self) for stage in STAGES]
        self._callbacks: list[ProgressCallback] = []
        self._percent = 0

    @classmethod
    def from_config(
        cls,
        config: dict[str, Any],
        capabilities: Optional[Capabilities] = None,
        root: Optional[Path] = None,
    ) -> "Pipeline":
        """Build a pipeline wired to the local collaborators."""
        from clients.ffmpeg import FFmpegFrameExtractor
        from clients.video_source import YtDlpVideoSource
        from utils.render import DocumentRenderer

        capabilities = capabilities or Capabilities.from_config(config)
        batcher = None
        if capabilities.has_llm:
            cache = ResultCache(
                resolve_path(config, "cache_dir", root),
                ttl_days=config.get("cache", {}).get("ttl_days", 30),
            )
            batcher = EnhancementBatcher.from_config(config, capabilities.llm, cache=cache)
        return cls(
            config,
            capabilities,
            video_source=YtDlpVideoSource(),
            frame_extractor=FFmpegFrameExtractor(),
            renderer=DocumentRenderer(),
            batcher=batcher,
        )

    def on_progress(self, callback: ProgressCallback) -> None:
        self._callbacks.append(callback)

    def emit(self, status: PipelineStatus, percent: int, step: str) -> None:
        """Notify observers. Percent never decreases within a run."""
        self._percent = max(self._percent, min(100, int(percent)))
        state = PipelineState(status=status, progress=self._percent, current_step=step)
        for callback in self._callbacks:
            try:
                callback(state)
            except Exception as e:
                self.logger.warning(f"⚠ Progress observer failed: {e}")

    async def process(self, job: Job, output_dir: Path) -> ConversionResult:
        """Convert one job into a document under ``output_dir``.

        Raises:
            ConversionError: when a fatal stage fails.
        """
        job.options.validate()
        self._percent = 0
        started = time.monotonic()
        self.logger.info(f"=== Converting {job.video_ref} (job {job.id}) ===")

        with tempfile.TemporaryDirectory(prefix="v2doc-work-") as work_dir:
            ctx = PipelineContext(job=job, output_dir=Path(output_dir), work_dir=Path(work_dir))
            for stage in self.stages:
                await self._run_stage(stage, ctx)

        self.emit(PipelineStatus.COMPLETE, 100, "Complete")
        elapsed = time.monotonic() - started
        self.logger.info(f"✓ Done in {elapsed:.1f}s: {ctx.output.output_path}")
        return ConversionResult(
            output_path=str(ctx.output.output_path),
            file_size=ctx.output.file_size,
            pages=ctx.output.pages,
            frame_count=sum(1 for f in ctx.frames if f.captured),
            metadata=ctx.metadata,
            duration=elapsed,
        )

    async def _run_stage(self, stage: BaseStage, ctx: PipelineContext) -> None:
        self.emit(stage.status, stage.start_percent, stage.label)
        try:
            await stage.run(ctx)
        except Exception as e:
            if stage.fatal:
                error = ConversionError.wrap(e, stage.name)
                self.emit(PipelineStatus.FAILED, self._percent, f"{stage.label} failed")
                self.logger.error(f"✗ Stage '{stage.name}' failed: {error.kind.value}: {error.message}")
                if error is e:
                    raise
                raise error from e
            self.logger.warning(f"⚠ Stage '{stage.name}' failed, continuing: {e}")
        self.emit(stage.status, stage.end_percent, stage.label)

    async def process_with_deadline(self, job: Job, output_dir: Path, timeout: float) -> ConversionResult:
        """``process`` bounded by a wall-clock deadline (TIMEOUT on expiry)."""
        try:
            return await asyncio.wait_for(self.process(job, output_dir), timeout=timeout)
        except asyncio.TimeoutError:
            self.logger.error(f"✗ Conversion exceeded {timeout:.0f}s")
            raise ConversionError(ErrorKind.TIMEOUT, f"Conversion exceeded {timeout:.0f}s deadline")

    async def process_batch(self, jobs: list[Job], output_dir: Path) -> list[ConversionResult]:
        """Process jobs one after another; failures are logged and skipped."""
        results = []
        for i, job in enumerate(jobs, 1):
            self.logger.info(f"[{i}/{len(jobs)}] {job.video_ref}")
            try:
                results.append(await self.process(job, output_dir))
            except ConversionError as e:
                self.logger.error(f"  ✗ {job.video_ref}: {e.kind.value}: {e.message}")
        self.logger.info(f"Batch complete: {len(results)}/{len(jobs)} succeeded")
        return results
