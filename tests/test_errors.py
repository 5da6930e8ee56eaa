"""Tests for typed conversion errors."""

from core.errors import ConversionError, ErrorKind, sanitize_message


class TestErrorKind:
    def test_retryable_kinds(self):
        retryable = {k for k in ErrorKind if k.retryable}
        assert retryable == {
            ErrorKind.TIMEOUT,
            ErrorKind.RATE_LIMITED,
            ErrorKind.NETWORK,
            ErrorKind.TOOL_FAILURE,
        }

    def test_error_retryable_follows_kind(self):
        assert ConversionError(ErrorKind.NETWORK, "reset").retryable is True
        assert ConversionError(ErrorKind.ACCESS_DENIED, "private").retryable is False

    def test_retryable_ignores_message_text(self):
        """A message mentioning a timeout does not make an error retryable."""
        err = ConversionError(ErrorKind.INVALID_INPUT, "TIMEOUT NETWORK_ERROR ECONNRESET")
        assert err.retryable is False


class TestWrap:
    def test_wrap_keeps_typed_error(self):
        err = ConversionError(ErrorKind.RATE_LIMITED, "slow down")
        wrapped = ConversionError.wrap(err, stage="output")
        assert wrapped is err
        assert wrapped.stage == "output"

    def test_wrap_does_not_overwrite_stage(self):
        err = ConversionError(ErrorKind.TIMEOUT, "late", stage="metadata")
        assert ConversionError.wrap(err, stage="output").stage == "metadata"

    def test_wrap_plain_exception_is_unknown(self):
        wrapped = ConversionError.wrap(RuntimeError("boom"), stage="frames")
        assert wrapped.kind == ErrorKind.UNKNOWN
        assert wrapped.message == "boom"
        assert wrapped.retryable is False

    def test_wrap_empty_message_uses_class_name(self):
        assert ConversionError.wrap(KeyError()).message == "KeyError"


class TestSanitize:
    def test_redacts_absolute_paths(self):
        msg = sanitize_message("cannot open /home/alice/work/video.mp4: denied")
        assert "/home/alice" not in msg
        assert "<path>" in msg

    def test_clamps_length(self):
        assert len(sanitize_message("x" * 2000, max_length=100)) == 100

    def test_empty_message(self):
        assert sanitize_message("") == "Unknown error"
