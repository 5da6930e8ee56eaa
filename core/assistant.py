"""Single-purpose language-model helpers used by the pipeline stages."""

from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import Optional

from .errors import ConversionError, ErrorKind
from .models import Chapter, ContentSummary, Section, SubtitleSegment
from utils.llm_json import loads_lenient
from utils.prompts import language_name, load_prompt

logger = logging.getLogger(__name__)

CONTENT_TYPES = (
    "lecture", "tutorial", "interview", "presentation", "review",
    "news", "vlog", "documentary", "entertainment", "other",
)

TRANSLATE_BATCH_SIZE = 50
CHAPTER_BLOCK_SECONDS = 30
MAX_CHAPTER_BLOCKS = 40
SUMMARY_INPUT_CHARS = 12000


def format_timestamp(seconds: float) -> str:
    """Format seconds as H:MM:SS or M:SS."""
    seconds = int(seconds)
    h, rem = divmod(seconds, 3600)
    m, s = divmod(rem, 60)
    if h > 0:
        return f"{h}:{m:02d}:{s:02d}"
    return f"{m}:{s:02d}"


class ContentAssistant:
    """Wraps a chat client with prompt templates.

    Methods raise ``ConversionError`` when the call fails or the reply cannot
    be used. Callers decide how to degrade.
    """

    def __init__(self, llm, prompts_dir: Optional[Path] = None):
        self.llm = llm
        self.prompts_dir = prompts_dir

    async def _ask_json(self, system: str, user: str, max_tokens: int = 2000):
        response = await self.llm.chat(system, user, json_mode=True, temperature=0.3, max_tokens=max_tokens)
        parsed = loads_lenient(response.text)
        if parsed is None:
            raise ConversionError(ErrorKind.UNKNOWN, "Model reply was not valid JSON")
        return parsed

    async def translate(
        self,
        segments: list[SubtitleSegment],
        source_language: str,
        target_language: str,
    ) -> list[SubtitleSegment]:
        """Translate segment texts, keeping timings. Unparsed lines keep the original."""
        translated: list[SubtitleSegment] = []
        system = load_prompt(
            "translate",
            self.prompts_dir,
            source_language=language_name(source_language) if source_language else "the source language",
            target_language=language_name(target_language),
        )
        for i in range(0, len(segments), TRANSLATE_BATCH_SIZE):
            batch = segments[i:i + TRANSLATE_BATCH_SIZE]
            user = "\n".join(f"[{idx}] {seg.text}" for idx, seg in enumerate(batch))
            parsed = await self._ask_json(system, user, max_tokens=4000)
            lines = parsed.get("translations") if isinstance(parsed, dict) else parsed
            if not isinstance(lines, list):
                lines = []
            for idx, seg in enumerate(batch):
                text = lines[idx] if idx < len(lines) and isinstance(lines[idx], str) else ""
                translated.append(SubtitleSegment(seg.start, seg.end, text.strip() or seg.text))
        return translated

    async def classify_video_type(self, title: str, description: str, segments: list[SubtitleSegment]) -> str:
        excerpt = " ".join(seg.text for seg in segments)[:3000]
        prompt = load_prompt(
            "classify",
            self.prompts_dir,
            title=title,
            description=(description or "")[:500],
            text=excerpt,
        )
        parsed = await self._ask_json("You classify videos. Answer with JSON only.", prompt, max_tokens=200)
        kind = str(parsed.get("type", "other")).lower() if isinstance(parsed, dict) else "other"
        return kind if kind in CONTENT_TYPES else "other"

    async def detect_chapters(
        self,
        title: str,
        duration: float,
        segments: list[SubtitleSegment],
        min_chapter_length: int = 60,
        max_chapters: int = 15,
        language: str = "ko",
    ) -> list[Chapter]:
        """Ask the model for topic boundaries."""
        if not segments:
            return []

        blocks: list[tuple[float, list[str]]] = [(segments[0].start, [segments[0].text])]
        for seg in segments[1:]:
            start, texts = blocks[-1]
            if seg.start - start > CHAPTER_BLOCK_SECONDS:
                blocks.append((seg.start, [seg.text]))
            else:
                texts.append(seg.text)
        if len(blocks) > MAX_CHAPTER_BLOCKS:
            step = math.ceil(len(blocks) / MAX_CHAPTER_BLOCKS)
            blocks = blocks[::step]

        text = "\n\n".join(f"[{start:.0f}] {' '.join(texts)[:200]}" for start, texts in blocks)
        prompt = load_prompt(
            "chapters",
            self.prompts_dir,
            title=title,
            duration=int(duration),
            min_chapter_length=min_chapter_length,
            max_chapters=max_chapters,
            language=language_name(language),
            text=text,
        )
        parsed = await self._ask_json("You detect topic changes in videos. Answer with JSON only.", prompt)
        items = parsed.get("chapters") if isinstance(parsed, dict) else parsed
        if not isinstance(items, list):
            raise ConversionError(ErrorKind.UNKNOWN, "Model reply had no chapter list")

        candidates = []
        for item in items:
            if not isinstance(item, dict) or not item.get("title"):
                continue
            start = item.get("start", item.get("startTime"))
            if isinstance(start, (int, float)):
                candidates.append((float(start), str(item["title"])))
        candidates.sort()

        last_end = max(segments[-1].end, float(duration or 0))
        chapters = []
        for i, (start, chapter_title) in enumerate(candidates):
            end = candidates[i + 1][0] if i + 1 < len(candidates) else last_end
            if end - start >= min_chapter_length:
                chapters.append(Chapter(title=chapter_title, start=start, end=end))
        return chapters[:max_chapters]

    async def summarize(
        self,
        title: str,
        segments: list[SubtitleSegment],
        language: str = "ko",
        max_length: int = 500,
        style: str = "brief",
    ) -> ContentSummary:
        text = " ".join(seg.text for seg in segments)[:SUMMARY_INPUT_CHARS]
        prompt = load_prompt(
            "summarize",
            self.prompts_dir,
            title=title,
            language=language_name(language),
            max_length=max_length,
            style=style,
            text=text,
        )
        parsed = await self._ask_json("You summarize videos. Answer with JSON only.", prompt)
        if not isinstance(parsed, dict) or not parsed.get("summary"):
            raise ConversionError(ErrorKind.UNKNOWN, "Model reply had no summary")
        return ContentSummary(
            summary=parsed["summary"],
            key_points=list(parsed.get("keyPoints") or parsed.get("key_points") or []),
            topics=list(parsed.get("topics") or []),
        )

    async def summarize_sections(
        self,
        sections: list[Section],
        language: str = "ko",
        max_key_points: int = 3,
    ) -> dict[float, tuple[str, list[str]]]:
        """Plain per-section summaries, keyed by section timestamp."""
        text = "\n\n".join(
            f"[{idx}] ({format_timestamp(s.timestamp)})\n{s.raw_text}" for idx, s in enumerate(sections)
        )
        prompt = load_prompt(
            "section_summary",
            self.prompts_dir,
            language=language_name(language),
            max_key_points=max_key_points,
            text=text,
        )
        parsed = await self._ask_json(
            "You summarize video sections. Answer with JSON only.",
            prompt,
            max_tokens=min(16000, 400 * max(1, len(sections))),
        )
        items = parsed.get("sections") if isinstance(parsed, dict) else parsed
        if not isinstance(items, list):
            raise ConversionError(ErrorKind.UNKNOWN, "Model reply had no section list")

        results: dict[float, tuple[str, list[str]]] = {}
        for position, item in enumerate(items):
            if not isinstance(item, dict):
                continue
            index = item.get("index", position)
            if isinstance(index, int) and 0 <= index < len(sections):
                results[sections[index].timestamp] = (
                    str(item.get("summary") or ""),
                    list(item.get("keyPoints") or item.get("key_points") or []),
                )
        return results
