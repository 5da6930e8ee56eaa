"""Tests for job and document models."""

import pytest

from core.errors import ConversionError, ErrorKind
from core.models import (
    EnhancedContent,
    Job,
    JobError,
    JobResult,
    JobStatus,
    OutputFormat,
    Quote,
    RenderOptions,
)


class TestJobStatus:
    def test_terminal(self):
        assert JobStatus.COMPLETED.terminal
        assert JobStatus.FAILED.terminal
        assert JobStatus.CANCELLED.terminal
        assert not JobStatus.QUEUED.terminal
        assert not JobStatus.PROCESSING.terminal


class TestOutputFormat:
    def test_extensions_and_content_types(self):
        assert OutputFormat.DOCUMENT.extension == "epub"
        assert OutputFormat.MARKDOWN.extension == "md"
        assert OutputFormat.BRIEF.content_type == "text/html"
        assert OutputFormat.DOCUMENT.content_type == "application/epub+zip"


class TestRenderOptions:
    def test_unknown_format_is_invalid_input(self):
        with pytest.raises(ConversionError) as exc:
            RenderOptions.from_dict({"format": "pdf"})
        assert exc.value.kind == ErrorKind.INVALID_INPUT

    def test_validate_rejects_bad_interval(self):
        with pytest.raises(ConversionError):
            RenderOptions(frame_interval=0).validate()

    def test_validate_rejects_bad_quality(self):
        with pytest.raises(ConversionError):
            RenderOptions(frame_quality="ultra").validate()

    def test_defaults_from_empty(self):
        options = RenderOptions.from_dict(None)
        assert options.format == OutputFormat.DOCUMENT
        assert options.frame_interval == 60


class TestJob:
    def test_dict_roundtrip_with_result_and_error(self):
        job = Job(
            id="j1",
            owner_id="u1",
            video_ref="https://example.com/v",
            options=RenderOptions(format=OutputFormat.MARKDOWN, language="en"),
            status=JobStatus.FAILED,
            retry_count=2,
            result=JobResult(output_path="results/u1/j1/output.md", file_size=10),
            error=JobError(kind=ErrorKind.NETWORK, message="reset", retryable=True),
        )
        restored = Job.from_dict(job.to_dict())
        assert restored == job

    def test_job_error_from_exception_is_sanitized(self):
        err = JobError.from_exception(RuntimeError("failed reading /tmp/v2doc/abc/video.mp4"))
        assert err.kind == ErrorKind.UNKNOWN
        assert "/tmp/v2doc" not in err.message
        assert err.retryable is False

    def test_unknown_error_kind_falls_back(self):
        err = JobError.from_dict({"kind": "weird", "message": "x"})
        assert err.kind == ErrorKind.UNKNOWN


class TestEnhancedContent:
    def test_to_dict_nests_main_information(self):
        content = EnhancedContent(
            one_liner="Cells last longer",
            paragraphs=["p1"],
            bullets=["b1"],
            notable_quotes=[Quote(text="3000 cycles", speaker="host")],
        )
        data = content.to_dict()
        assert data["main_information"] == {"paragraphs": ["p1"], "bullets": ["b1"]}
        assert EnhancedContent.from_dict(data) == content
