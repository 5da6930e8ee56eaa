"""Merge captured frames and subtitles into document sections."""

from __future__ import annotations

from typing import Optional

from .filter import SectionFilter
from .models import Chapter, Frame, Section, SubtitleSegment


def combine_text(segments: list[SubtitleSegment]) -> str:
    """Join segment texts, skipping exact repeats (rolling captions)."""
    seen: list[str] = []
    for seg in segments:
        text = seg.text.strip()
        if text and text not in seen:
            seen.append(text)
    return " ".join(seen)


def overlapping(segments: list[SubtitleSegment], start: float, end: float) -> list[SubtitleSegment]:
    """Segments that overlap ``[start, end)``."""
    return [
        seg for seg in segments
        if (start <= seg.start < end)
        or (start < seg.end <= end)
        or (seg.start <= start and seg.end >= end)
    ]


def starting_in(segments: list[SubtitleSegment], start: float, end: float) -> list[SubtitleSegment]:
    """Segments whose start lies in ``[start, end)``. No segment lands in two ranges."""
    return [seg for seg in segments if start <= seg.start < end]


class ContentMerger:
    def __init__(self, interval: float, section_filter: Optional[SectionFilter] = None):
        self.interval = interval
        self.section_filter = section_filter or SectionFilter()

    def merge(self, frames: list[Frame], segments: list[SubtitleSegment]) -> list[Section]:
        """One section per frame, covering ``[t, t + interval)``."""
        sections = []
        for frame in sorted(frames, key=lambda f: f.timestamp):
            relevant = overlapping(segments, frame.timestamp, frame.timestamp + self.interval)
            if not self.section_filter.should_keep(relevant, self.interval):
                continue
            sections.append(Section(
                timestamp=frame.timestamp,
                raw_text=combine_text(relevant),
                segments=relevant,
                frame=frame,
            ))
        return sections

    def merge_with_chapters(
        self,
        frames: list[Frame],
        segments: list[SubtitleSegment],
        chapters: list[Chapter],
    ) -> list[Section]:
        """One section per chapter, paired with the frame at the same index."""
        sections = []
        for chapter, frame in zip(chapters, frames):
            relevant = starting_in(segments, chapter.start, chapter.end)
            if not self.section_filter.should_keep(relevant, chapter.end - chapter.start):
                continue
            sections.append(Section(
                timestamp=chapter.start,
                raw_text=combine_text(relevant),
                segments=relevant,
                frame=frame,
                chapter_title=chapter.title,
            ))
        return sections
