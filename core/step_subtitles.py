"""Stage 2: extract subtitles, fall back to transcription, translate."""

from __future__ import annotations

from typing import Optional

from .base_step import BaseStage, PipelineContext
from .models import PipelineStatus, SubtitleTrack


class SubtitleStage(BaseStage):
    name = "subtitles"
    label = "Extracting subtitles"
    status = PipelineStatus.FETCHING
    start_percent = 5
    end_percent = 20

    def preferred_languages(self, ctx: PipelineContext) -> list[str]:
        languages = []
        if ctx.options.language:
            languages.append(ctx.options.language)
        for lang in self.config.get("subtitle", {}).get("languages", []):
            if lang not in languages:
                languages.append(lang)
        return languages

    async def run(self, ctx: PipelineContext) -> None:
        track = await self._captions(ctx)
        if track is None:
            track = await self._transcribe(ctx)
        if track is None:
            self.logger.warning("⚠ No subtitles available, sections will be image-only")
            track = SubtitleTrack.empty()

        ctx.subtitles = track
        ctx.segments = list(track.segments)
        self.progress(12, "Subtitles ready")

        if self._should_translate(track):
            await self._translate(ctx, track)

    async def _captions(self, ctx: PipelineContext) -> Optional[SubtitleTrack]:
        try:
            return await self.pipeline.video_source.get_captions(
                ctx.job.video_ref, self.preferred_languages(ctx)
            )
        except Exception as e:
            self.logger.warning(f"⚠ Caption download failed: {e}")
            return None

    async def _transcribe(self, ctx: PipelineContext) -> Optional[SubtitleTrack]:
        if not self.capabilities.has_transcriber:
            return None
        self.progress(8, "Transcribing audio")
        try:
            audio = await self.pipeline.video_source.download_audio(ctx.job.video_ref, ctx.work_dir / "audio")
            return await self.capabilities.transcriber.transcribe(audio, ctx.options.language)
        except Exception as e:
            self.logger.warning(f"⚠ Transcription failed: {e}")
            return None

    def _should_translate(self, track: SubtitleTrack) -> bool:
        tc = self.config.get("translation", {})
        target = tc.get("default_language", "ko")
        return bool(
            tc.get("enabled", True)
            and tc.get("auto_translate", True)
            and self.capabilities.has_llm
            and not self.sampling.skip_translation
            and track.segments
            and track.language
            and track.language.split("-")[0] != target
        )

    async def _translate(self, ctx: PipelineContext, track: SubtitleTrack) -> None:
        target = self.config.get("translation", {}).get("default_language", "ko")
        self.progress(15, f"Translating subtitles ({track.language} → {target})")
        try:
            ctx.segments = await self.pipeline.assistant.translate(track.segments, track.language, target)
            self.logger.info(f"✓ Translated {len(ctx.segments)} segments to {target}")
        except Exception as e:
            self.logger.warning(f"⚠ Translation failed, keeping original text: {e}")
            ctx.segments = list(track.segments)
