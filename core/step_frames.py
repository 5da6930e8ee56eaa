"""Stage 5: capture one frame per interval or per chapter."""

from __future__ import annotations

from .base_step import BaseStage, PipelineContext
from .frames import FrameCapturer, generate_timestamps, placeholder_frames


class FrameStage(BaseStage):
    name = "frames"
    label = "Capturing frames"
    start_percent = 40
    end_percent = 70

    def _on_progress(self, current: int, total: int) -> None:
        span = self.end_percent - self.start_percent
        self.progress(self.start_percent + int(current / total * span), f"Capturing frames ({current}/{total})")

    async def run(self, ctx: PipelineContext) -> None:
        capturer = FrameCapturer(
            self.pipeline.video_source,
            self.pipeline.frame_extractor,
            ctx.work_dir,
            quality=ctx.options.frame_quality,
            sampling=self.sampling,
            on_progress=self._on_progress,
        )

        ref = ctx.job.video_ref
        if ctx.chapters:
            timestamps = [c.start for c in ctx.chapters]
            capture = capturer.capture_for_chapters(ref, ctx.chapters)
        else:
            duration = ctx.metadata.duration or (ctx.segments[-1].end if ctx.segments else 0)
            all_timestamps = generate_timestamps(duration, ctx.options.frame_interval)
            timestamps = self.sampling.sample_timestamps(all_timestamps)
            if len(timestamps) < len(all_timestamps):
                self.logger.info(f"Sampling: {len(timestamps)} of {len(all_timestamps)} frames")
            capture = capturer.capture_all(ref, duration, ctx.options.frame_interval)

        try:
            ctx.frames = await capture
        except Exception as e:
            self.logger.warning(f"⚠ Frame capture failed, using text-only sections: {e}")
            ctx.frames = placeholder_frames(timestamps)

        captured = sum(1 for f in ctx.frames if f.captured)
        self.logger.info(f"✓ Frames: {captured}/{len(ctx.frames)} captured")
