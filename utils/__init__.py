"""Utility functions."""

from .logger import setup_logging, get_logger, job_logger

__all__ = [
    "setup_logging",
    "get_logger",
    "job_logger",
]
