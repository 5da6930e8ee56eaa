"""Section filtering logic."""

from __future__ import annotations

from typing import Any

from .models import SubtitleSegment


class SectionFilter:
    """Drop sections with too little speech to be worth a page."""

    def __init__(self, min_words: int = 5, min_speech_ratio: float = 0.1):
        self.min_words = min_words
        self.min_speech_ratio = min_speech_ratio

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "SectionFilter":
        fc = config.get("sections", {})
        return cls(
            min_words=int(fc.get("min_words", 5)),
            min_speech_ratio=float(fc.get("min_speech_ratio", 0.1)),
        )

    def should_keep(self, segments: list[SubtitleSegment], span: float) -> bool:
        """Keep when there are enough words OR enough speech in the span."""
        words = sum(len(seg.text.split()) for seg in segments)
        if words >= self.min_words:
            return True
        if span <= 0:
            return False
        speech = sum(seg.duration for seg in segments)
        return speech / span >= self.min_speech_ratio
