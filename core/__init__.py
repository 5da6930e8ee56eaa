"""Core module exports."""

from .errors import ConversionError, ErrorKind
from .models import Job, JobStatus, OutputFormat, RenderOptions
from .state import JobStore

__all__ = [
    "ConversionError",
    "ErrorKind",
    "Job",
    "JobStatus",
    "OutputFormat",
    "RenderOptions",
    "JobStore",
]
