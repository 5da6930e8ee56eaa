"""Token-bounded batching of section enhancement calls.

Sections are packed into as few language-model calls as the token budget
allows, each call is retried a bounded number of times, and the combined
result is cached on disk keyed by job, content and output options.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from .cache import ResultCache
from .errors import EnhancementError
from .models import ContentSummary, EnhancedContent, Quote, Section
from utils.llm_json import loads_lenient
from utils.prompts import language_name, load_prompt

logger = logging.getLogger(__name__)

PROMPT_OVERHEAD_TOKENS = 500
TOKENS_PER_SECTION_REPLY = 1400
MAX_REPLY_TOKENS = 16000

RESPONSE_KEYS = ("sections", "results", "items", "data", "output", "section_results", "sectionResults")

# Hangul Jamo, kana, CJK ideographs, Hangul syllables, compatibility ideographs
_WIDE_RANGES = (
    ("\u1100", "\u11ff"),
    ("\u3040", "\u30ff"),
    ("\u3400", "\u4dbf"),
    ("\u4e00", "\u9fff"),
    ("\uac00", "\ud7af"),
    ("\uf900", "\ufaff"),
)


def _is_wide(ch: str) -> bool:
    return any(lo <= ch <= hi for lo, hi in _WIDE_RANGES)


def estimate_tokens(text: str) -> int:
    """Rough token count: 1.5 per wide-script character, 0.25 otherwise."""
    if not text:
        return 0
    wide = sum(1 for ch in text if _is_wide(ch))
    other = len(text) - wide
    return math.ceil(wide * 1.5 + other / 4)


def create_batches(
    sections: list[Section],
    max_tokens: int,
    max_items: int,
) -> list[list[Section]]:
    """Greedy packing under a token budget and an item cap.

    Each batch starts with the fixed prompt overhead. An item that does not
    fit closes the current batch and seeds the next one, so a single
    oversized item still ends up in a batch of its own.
    """
    batches: list[list[Section]] = []
    current: list[Section] = []
    running = PROMPT_OVERHEAD_TOKENS

    for section in sections:
        cost = estimate_tokens(section.raw_text)
        if current and (running + cost > max_tokens or len(current) >= max_items):
            batches.append(current)
            current = []
            running = PROMPT_OVERHEAD_TOKENS
        current.append(section)
        running += cost

    if current:
        batches.append(current)
    return batches


def content_hash(texts: list[str]) -> str:
    return hashlib.sha256("|".join(texts).encode("utf-8")).hexdigest()[:16]


@dataclass
class EnhanceOptions:
    job_id: str
    target_language: str = "ko"
    max_key_points: int = 3
    include_quotes: bool = True
    enable_cache: bool = True

    def config_hash(self) -> str:
        relevant = {
            "target_language": self.target_language,
            "max_key_points": self.max_key_points,
            "include_quotes": self.include_quotes,
        }
        return hashlib.md5(json.dumps(relevant, sort_keys=True).encode("utf-8")).hexdigest()[:8]


@dataclass
class EnhancementResult:
    sections: dict[float, EnhancedContent] = field(default_factory=dict)
    global_summary: ContentSummary = field(default_factory=ContentSummary)
    tokens_used: int = 0
    from_cache: bool = False

    def to_cache(self) -> dict[str, Any]:
        return {
            "sections": [
                {"timestamp": ts, "content": content.to_dict()}
                for ts, content in sorted(self.sections.items())
            ],
            "global_summary": self.global_summary.to_dict(),
            "tokens_used": self.tokens_used,
        }

    @classmethod
    def from_cache(cls, data: dict[str, Any]) -> "EnhancementResult":
        sections = {
            float(entry["timestamp"]): EnhancedContent.from_dict(entry.get("content") or {})
            for entry in data.get("sections", [])
        }
        return cls(
            sections=sections,
            global_summary=ContentSummary.from_dict(data.get("global_summary")),
            tokens_used=data.get("tokens_used", 0),
            from_cache=True,
        )


def parse_response(raw: str) -> list[dict]:
    """Extract the per-section list from a model reply. Never raises."""
    parsed = loads_lenient(raw)
    if isinstance(parsed, list):
        return [item for item in parsed if isinstance(item, dict)]
    if isinstance(parsed, dict):
        for key in RESPONSE_KEYS:
            value = parsed.get(key)
            if isinstance(value, list):
                return [item for item in value if isinstance(item, dict)]
    preview = (raw or "")[:120].replace("\n", " ")
    logger.warning(f"⚠ Could not find section list in model reply: {preview!r}")
    return []


def _to_content(item: dict, raw_text: str) -> EnhancedContent:
    main = item.get("mainInformation") or item.get("main_information") or {}
    quotes = []
    for q in item.get("notableQuotes") or item.get("notable_quotes") or []:
        if isinstance(q, str):
            quotes.append(Quote(text=q))
        elif isinstance(q, dict) and q.get("text"):
            quotes.append(Quote(text=q["text"], speaker=q.get("speaker")))
    return EnhancedContent(
        one_liner=item.get("oneLiner") or item.get("one_liner") or "",
        key_points=list(item.get("keyPoints") or item.get("key_points") or []),
        paragraphs=list(main.get("paragraphs") or []),
        bullets=list(main.get("bullets") or []),
        notable_quotes=quotes,
        translated_text=item.get("translatedText") or item.get("translated_text") or raw_text,
    )


def placeholder_content(raw_text: str) -> EnhancedContent:
    return EnhancedContent(translated_text=raw_text)


class EnhancementBatcher:
    """Drives batched enhancement calls against a chat client."""

    def __init__(
        self,
        llm,
        cache: Optional[ResultCache] = None,
        max_tokens: int = 80000,
        max_items_per_batch: int = 10,
        max_attempts: int = 3,
        retry_base_delay: float = 1.0,
        prompts_dir: Optional[Path] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.llm = llm
        self.cache = cache
        self.max_tokens = max_tokens
        self.max_items_per_batch = max_items_per_batch
        self.max_attempts = max_attempts
        self.retry_base_delay = retry_base_delay
        self.prompts_dir = prompts_dir
        self._sleep = sleep

    @classmethod
    def from_config(cls, config: dict, llm, cache: Optional[ResultCache] = None) -> "EnhancementBatcher":
        ec = config.get("enhance", {})
        return cls(
            llm,
            cache=cache,
            max_tokens=ec.get("max_tokens", 80000),
            max_items_per_batch=ec.get("max_items_per_batch", 10),
            max_attempts=ec.get("max_attempts", 3),
            retry_base_delay=ec.get("retry_base_delay", 1.0),
        )

    def cache_key(self, sections: list[Section], options: EnhanceOptions) -> str:
        texts = [s.raw_text for s in sections]
        return f"{options.job_id}_{content_hash(texts)}_{options.config_hash()}"

    async def process_all_sections(
        self,
        sections: list[Section],
        options: EnhanceOptions,
    ) -> EnhancementResult:
        """Enhance every section, serving from cache when possible.

        Raises:
            EnhancementError: when the model call for a batch fails on every
                attempt. Replies that cannot be parsed fall back to raw text.
        """
        use_cache = options.enable_cache and self.cache is not None
        key = self.cache_key(sections, options)

        if use_cache:
            cached = self.cache.get(key)
            if cached is not None:
                logger.info(f"✓ Enhancement cache hit: {options.job_id}")
                return EnhancementResult.from_cache(cached)

        batches = create_batches(sections, self.max_tokens, self.max_items_per_batch)
        logger.info(f"Enhancing {len(sections)} sections in {len(batches)} batches")

        result = EnhancementResult()
        for i, batch in enumerate(batches, 1):
            contents, tokens = await self._process_batch(batch, options)
            result.sections.update(contents)
            result.tokens_used += tokens
            logger.debug(f"  batch {i}/{len(batches)} done ({tokens} tokens)")

        ordered = [result.sections[s.timestamp] for s in sections if s.timestamp in result.sections]
        result.global_summary = await self._generate_global_summary(ordered, options.target_language)

        if use_cache:
            self.cache.set(key, result.to_cache())

        logger.info(f"✓ Enhancement done: {result.tokens_used} tokens")
        return result

    def _build_prompt(self, options: EnhanceOptions) -> str:
        if options.include_quotes:
            quotes_instruction = '5. notableQuotes: 3 quotes with specific data or numbers (reject vague quotes)\n'
            quotes_schema = (
                ',\n      "notableQuotes": [{"text": "...", "speaker": "..."}]'
            )
        else:
            quotes_instruction = ""
            quotes_schema = ""
        return load_prompt(
            "enhance_batch",
            self.prompts_dir,
            language=language_name(options.target_language),
            max_key_points=options.max_key_points,
            quotes_instruction=quotes_instruction,
            quotes_schema=quotes_schema,
        )

    async def _process_batch(
        self,
        batch: list[Section],
        options: EnhanceOptions,
    ) -> tuple[dict[float, EnhancedContent], int]:
        system = self._build_prompt(options)
        user = "\n\n---\n\n".join(
            f"[SECTION {idx}] (timestamp: {s.timestamp:g}s)\n{s.raw_text}"
            for idx, s in enumerate(batch)
        )
        max_tokens = min(MAX_REPLY_TOKENS, len(batch) * TOKENS_PER_SECTION_REPLY)

        last_error: Optional[BaseException] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                response = await self.llm.chat(
                    system, user, json_mode=True, temperature=0.3, max_tokens=max_tokens
                )
            except Exception as e:
                last_error = e
                logger.warning(f"⚠ Batch attempt {attempt}/{self.max_attempts} failed: {e}")
                if attempt < self.max_attempts:
                    await self._sleep(self.retry_base_delay * 2 ** attempt)
                continue
            # An unusable reply is not retried: every index counts as missing
            items = parse_response(response.text)
            return self._collect(batch, items), response.tokens_used

        raise EnhancementError(f"Batch of {len(batch)} sections failed after {self.max_attempts} attempts: {last_error}")

    def _collect(self, batch: list[Section], items: list[dict]) -> dict[float, EnhancedContent]:
        contents: dict[float, EnhancedContent] = {}
        for position, item in enumerate(items):
            index = item.get("index", position)
            try:
                index = int(index)
            except (TypeError, ValueError):
                continue
            if not 0 <= index < len(batch):
                continue
            section = batch[index]
            contents[section.timestamp] = _to_content(item, section.raw_text)

        missing = [s for s in batch if s.timestamp not in contents]
        if missing:
            logger.warning(f"⚠ {len(missing)} sections missing from model reply, using raw text")
        for section in missing:
            contents[section.timestamp] = placeholder_content(section.raw_text)
        return contents

    async def _generate_global_summary(
        self,
        contents: list[EnhancedContent],
        target_language: str,
    ) -> ContentSummary:
        one_liners = [c.one_liner for c in contents if c.one_liner]
        key_points = [p for c in contents for p in c.key_points if p]
        if not one_liners:
            return ContentSummary()

        system = load_prompt("global_summary", self.prompts_dir, language=language_name(target_language))
        user = "Section summaries:\n" + "\n".join(one_liners) + "\n\nKey points:\n" + "\n".join(key_points)
        try:
            response = await self.llm.chat(system, user, json_mode=True, temperature=0.3, max_tokens=1000)
        except Exception as e:
            logger.warning(f"⚠ Global summary failed: {e}")
            return ContentSummary()

        parsed = loads_lenient(response.text)
        if not isinstance(parsed, dict):
            return ContentSummary()
        return ContentSummary(
            summary=parsed.get("summary") or "",
            key_points=list(parsed.get("keyPoints") or parsed.get("key_points") or []),
        )
