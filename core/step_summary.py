"""Stage 4: whole-document summary."""

from __future__ import annotations

from .base_step import BaseStage, PipelineContext


class SummaryStage(BaseStage):
    name = "summary"
    label = "Summarizing"
    start_percent = 35
    end_percent = 40

    async def run(self, ctx: PipelineContext) -> None:
        sc = self.config.get("summary", {})
        if not (ctx.options.include_summary and sc.get("enabled", True)):
            return
        if not self.capabilities.has_llm or self.sampling.skip_summary or not ctx.segments:
            return
        try:
            ctx.summary = await self.pipeline.assistant.summarize(
                ctx.metadata.title,
                ctx.segments,
                language=ctx.options.target_language,
                max_length=sc.get("max_length", 500),
                style=sc.get("style", "brief"),
            )
            self.logger.info(f"✓ Summary: {len(ctx.summary.summary)} chars, {len(ctx.summary.key_points)} key points")
        except Exception as e:
            self.logger.warning(f"⚠ Summary failed: {e}")
            ctx.summary = None
