"""Sampling policy for cheap development runs."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, TypeVar

from .models import Chapter, EnhancedContent, Section

T = TypeVar("T")

PLACEHOLDER = "[Skipped in sampling mode]"


@dataclass(frozen=True)
class SamplingPolicy:
    """Caps on how much of a video a run processes.

    ``None`` means unlimited. Each stage consults the policy once.
    """

    max_chapters: Optional[int] = None
    max_frames: Optional[int] = None
    max_enhanced_sections: Optional[int] = None
    skip_translation: bool = False
    skip_summary: bool = False

    @classmethod
    def disabled(cls) -> "SamplingPolicy":
        return cls()

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "SamplingPolicy":
        sc = config.get("sampling", {})
        if not sc.get("enabled", False):
            return cls.disabled()
        return cls(
            max_chapters=sc.get("max_chapters", 2),
            max_frames=sc.get("max_frames", 2),
            max_enhanced_sections=sc.get("max_enhanced_sections", 1),
            skip_translation=sc.get("skip_translation", True),
            skip_summary=sc.get("skip_summary", True),
        )

    @property
    def active(self) -> bool:
        return self != SamplingPolicy.disabled()

    def limit_chapters(self, chapters: list[Chapter]) -> list[Chapter]:
        if self.max_chapters is None:
            return chapters
        return chapters[: self.max_chapters]

    def sample_timestamps(self, timestamps: list[float]) -> list[float]:
        """Evenly pick at most ``max_frames`` timestamps, keeping the first."""
        limit = self.max_frames
        if limit is None or len(timestamps) <= limit:
            return timestamps
        if limit <= 0:
            return []
        step = len(timestamps) / limit
        return [timestamps[int(i * step)] for i in range(limit)]

    def split_sections(self, sections: list[Section]) -> tuple[list[Section], list[Section]]:
        """Return ``(to_enhance, skipped)``."""
        if self.max_enhanced_sections is None:
            return sections, []
        n = self.max_enhanced_sections
        return sections[:n], sections[n:]


def placeholder_enhancement(section: Section) -> EnhancedContent:
    return EnhancedContent(
        one_liner=PLACEHOLDER,
        key_points=[PLACEHOLDER],
        translated_text=section.raw_text,
    )
