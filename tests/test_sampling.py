"""Tests for the sampling policy."""

from conftest import make_sections
from core.models import Chapter
from core.sampling import PLACEHOLDER, SamplingPolicy, placeholder_enhancement


class TestSamplingPolicy:
    def test_disabled_by_default(self):
        policy = SamplingPolicy.from_config({})
        assert policy == SamplingPolicy.disabled()
        assert policy.active is False

    def test_from_config_defaults(self):
        policy = SamplingPolicy.from_config({"sampling": {"enabled": True}})
        assert policy.active
        assert (policy.max_chapters, policy.max_frames, policy.max_enhanced_sections) == (2, 2, 1)
        assert policy.skip_translation and policy.skip_summary

    def test_disabled_passes_everything(self):
        policy = SamplingPolicy.disabled()
        timestamps = [0.0, 60.0, 120.0]
        assert policy.sample_timestamps(timestamps) == timestamps
        sections = make_sections(3)
        assert policy.split_sections(sections) == (sections, [])

    def test_sample_timestamps_evenly(self):
        policy = SamplingPolicy(max_frames=2)
        assert policy.sample_timestamps([0.0, 60.0, 120.0, 180.0]) == [0.0, 120.0]

    def test_sample_timestamps_zero(self):
        assert SamplingPolicy(max_frames=0).sample_timestamps([0.0, 60.0]) == []

    def test_limit_chapters(self):
        chapters = [Chapter(f"c{i}", i * 60, (i + 1) * 60) for i in range(5)]
        assert len(SamplingPolicy(max_chapters=2).limit_chapters(chapters)) == 2

    def test_split_sections(self):
        sections = make_sections(3)
        to_enhance, skipped = SamplingPolicy(max_enhanced_sections=1).split_sections(sections)
        assert to_enhance == sections[:1]
        assert skipped == sections[1:]

    def test_placeholder_keeps_raw_text(self):
        section = make_sections(1)[0]
        content = placeholder_enhancement(section)
        assert content.one_liner == PLACEHOLDER
        assert content.translated_text == section.raw_text
