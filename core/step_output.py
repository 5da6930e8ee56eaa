"""Stage 7: render the output document."""

from __future__ import annotations

import asyncio

from .base_step import BaseStage, PipelineContext
from .models import Document, PipelineStatus
from utils.render import safe_filename


class OutputStage(BaseStage):
    name = "output"
    label = "Generating document"
    fatal = True
    status = PipelineStatus.GENERATING
    start_percent = 80
    end_percent = 100

    async def run(self, ctx: PipelineContext) -> None:
        document = Document(
            metadata=ctx.metadata,
            sections=ctx.sections,
            options=ctx.options,
            summary=ctx.summary,
            chapters=ctx.chapters,
            content_type=ctx.content_type,
            subtitle_language=ctx.subtitles.language,
        )
        fmt = ctx.options.format
        ctx.output_dir.mkdir(parents=True, exist_ok=True)
        output_path = ctx.output_dir / f"{safe_filename(ctx.metadata.title)}.{fmt.extension}"

        self.progress(82, f"Rendering {fmt.value}")
        ctx.output = await asyncio.to_thread(self.pipeline.renderer.generate, fmt, document, output_path)
        self.logger.info(f"✓ Output: {output_path.name} ({ctx.output.file_size} bytes, {ctx.output.pages} pages)")
