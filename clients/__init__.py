"""External collaborator clients."""

from .ollama_client import OllamaClient
from .video_source import YtDlpVideoSource
from .ffmpeg import FFmpegFrameExtractor
from .local_queue import FileQueue
from .storage import LocalObjectStorage


__all__ = [
    "OllamaClient",
    "YtDlpVideoSource",
    "FFmpegFrameExtractor",
    "FileQueue",
    "LocalObjectStorage",
]
