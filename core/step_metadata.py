"""Stage 1: resolve video metadata."""

from __future__ import annotations

from .base_step import BaseStage, PipelineContext
from .models import PipelineStatus


class MetadataStage(BaseStage):
    name = "metadata"
    label = "Resolving video metadata"
    fatal = True
    status = PipelineStatus.FETCHING
    start_percent = 0
    end_percent = 5

    async def run(self, ctx: PipelineContext) -> None:
        metadata = await self.pipeline.video_source.get_metadata(ctx.job.video_ref)
        ctx.metadata = metadata
        self.logger.info(f"✓ {metadata.title} ({metadata.duration}s, {metadata.channel})")

        max_duration = self.config.get("processing", {}).get("max_duration", 7200)
        if max_duration and metadata.duration > max_duration:
            self.logger.warning(
                f"⚠ Video is {metadata.duration}s, longer than the {max_duration}s limit; processing anyway"
            )

        if self.config.get("chapter", {}).get("use_source_chapters", True) and metadata.chapters:
            ctx.chapters = list(metadata.chapters)
            self.logger.info(f"Source chapters: {len(ctx.chapters)}")
