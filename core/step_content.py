"""Stage 6: merge frames with subtitles and enhance the sections."""

from __future__ import annotations

from .base_step import BaseStage, PipelineContext
from .batcher import EnhanceOptions
from .filter import SectionFilter
from .merger import ContentMerger
from .models import Section
from .sampling import placeholder_enhancement


class ContentStage(BaseStage):
    name = "content"
    label = "Building sections"
    start_percent = 70
    end_percent = 80

    async def run(self, ctx: PipelineContext) -> None:
        merger = ContentMerger(ctx.options.frame_interval, SectionFilter.from_config(self.config))
        if ctx.chapters:
            sections = merger.merge_with_chapters(ctx.frames, ctx.segments, ctx.chapters)
        else:
            sections = merger.merge(ctx.frames, ctx.segments)
        self.logger.info(f"Sections: {len(sections)} kept of {len(ctx.frames)} frames")
        ctx.sections = sections

        to_enhance, skipped = self.sampling.split_sections(sections)
        for section in skipped:
            section.enhanced = placeholder_enhancement(section)
        if skipped:
            self.logger.info(f"Sampling: enhancing {len(to_enhance)}, skipping {len(skipped)} sections")

        if not to_enhance or not self.capabilities.has_llm:
            return
        if not self.config.get("enhance", {}).get("enabled", True):
            await self._summarize_sections(ctx, to_enhance)
            return

        self.progress(75, "Enhancing sections")
        try:
            await self._enhance(ctx, to_enhance)
        except Exception as e:
            self.logger.warning(f"⚠ Batched enhancement failed, falling back to per-section summaries: {e}")
            await self._summarize_sections(ctx, to_enhance)

    async def _enhance(self, ctx: PipelineContext, sections: list[Section]) -> None:
        ec = self.config.get("enhance", {})
        options = EnhanceOptions(
            job_id=ctx.job.id,
            target_language=ctx.options.target_language,
            max_key_points=self.config.get("summary", {}).get("section_key_points", 3),
            include_quotes=ec.get("include_quotes", True),
            enable_cache=self.config.get("cache", {}).get("enabled", True),
        )
        result = await self.pipeline.batcher.process_all_sections(sections, options)
        for section in sections:
            section.enhanced = result.sections.get(section.timestamp)
        ctx.tokens_used += result.tokens_used

        wants_summary = ctx.options.include_summary and not self.sampling.skip_summary
        if ctx.summary is None and wants_summary and not result.global_summary.empty:
            ctx.summary = result.global_summary
        self.logger.info(
            f"✓ Enhanced {len(sections)} sections"
            + (" (cached)" if result.from_cache else f" ({result.tokens_used} tokens)")
        )

    async def _summarize_sections(self, ctx: PipelineContext, sections: list[Section]) -> None:
        try:
            summaries = await self.pipeline.assistant.summarize_sections(
                sections,
                language=ctx.options.target_language,
                max_key_points=self.config.get("summary", {}).get("section_key_points", 3),
            )
        except Exception as e:
            self.logger.warning(f"⚠ Section summaries failed, keeping raw text: {e}")
            return
        for section in sections:
            if section.timestamp in summaries:
                section.summary, section.key_points = summaries[section.timestamp]
