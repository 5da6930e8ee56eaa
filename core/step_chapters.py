"""Stage 3: classify the video and settle on chapters."""

from __future__ import annotations

from .base_step import BaseStage, PipelineContext


class ChapterStage(BaseStage):
    name = "chapters"
    label = "Analyzing structure"
    start_percent = 20
    end_percent = 35

    async def run(self, ctx: PipelineContext) -> None:
        if self.capabilities.has_llm and ctx.segments:
            try:
                ctx.content_type = await self.pipeline.assistant.classify_video_type(
                    ctx.metadata.title, ctx.metadata.description, ctx.segments
                )
                self.logger.info(f"Content type: {ctx.content_type}")
            except Exception as e:
                self.logger.warning(f"⚠ Classification failed: {e}")
        self.progress(25)

        cc = self.config.get("chapter", {})
        if not ctx.chapters and cc.get("auto_generate", True) and self.capabilities.has_llm and ctx.segments:
            self.progress(30, "Generating chapters")
            try:
                ctx.chapters = await self.pipeline.assistant.detect_chapters(
                    ctx.metadata.title,
                    ctx.metadata.duration,
                    ctx.segments,
                    min_chapter_length=cc.get("min_chapter_length", 60),
                    max_chapters=cc.get("max_chapters", 15),
                    language=ctx.options.target_language,
                )
                self.logger.info(f"✓ Generated {len(ctx.chapters)} chapters")
            except Exception as e:
                self.logger.warning(f"⚠ Chapter generation failed, using time intervals: {e}")
                ctx.chapters = []

        limited = self.sampling.limit_chapters(ctx.chapters)
        if len(limited) < len(ctx.chapters):
            self.logger.info(f"Sampling: {len(limited)} of {len(ctx.chapters)} chapters")
        ctx.chapters = limited
