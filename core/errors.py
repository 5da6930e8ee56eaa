"""Typed conversion errors.

Every failure that can end a job carries an ``ErrorKind`` chosen where the
failure happened (HTTP client, subprocess wrapper, coordinator deadline).
The worker decides retry vs. dead-letter from the kind alone.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Closed set of failure kinds."""

    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    NETWORK = "network"
    TOOL_FAILURE = "tool_failure"
    INVALID_INPUT = "invalid_input"
    ACCESS_DENIED = "access_denied"
    CONFIGURATION = "configuration"
    RENDER_FAILED = "render_failed"
    UNKNOWN = "unknown"

    @property
    def retryable(self) -> bool:
        return self in RETRYABLE_KINDS


RETRYABLE_KINDS = frozenset({
    ErrorKind.TIMEOUT,
    ErrorKind.RATE_LIMITED,
    ErrorKind.NETWORK,
    ErrorKind.TOOL_FAILURE,
})

# Absolute paths (POSIX or Windows) are redacted from user-visible messages
_PATH_PATTERN = re.compile(r"(?:[A-Za-z]:\\|/)(?:[^\s:'\"]+[/\\])+[^\s:'\"]*")


def sanitize_message(message: str, max_length: int = 500) -> str:
    """Strip filesystem paths and clamp length for user-facing errors."""
    cleaned = _PATH_PATTERN.sub("<path>", message or "").strip()
    if len(cleaned) > max_length:
        cleaned = cleaned[: max_length - 3].rstrip() + "..."
    return cleaned or "Unknown error"


class ConversionError(Exception):
    """A job-level failure with a tagged kind."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        stage: Optional[str] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.stage = stage

    @property
    def retryable(self) -> bool:
        return self.kind.retryable

    @classmethod
    def wrap(cls, exc: BaseException, stage: Optional[str] = None) -> "ConversionError":
        """Return ``exc`` unchanged if already typed, else an UNKNOWN error."""
        if isinstance(exc, ConversionError):
            if stage and not exc.stage:
                exc.stage = stage
            return exc
        message = str(exc) or exc.__class__.__name__
        return cls(ErrorKind.UNKNOWN, message, stage=stage)

    def __repr__(self) -> str:
        return f"ConversionError(kind={self.kind.value!r}, message={self.message!r}, stage={self.stage!r})"


class EnhancementError(Exception):
    """A batch of sections could not be enhanced after all attempts."""
