"""Whisper client for local speech-to-text transcription.

Used only when a video has no captions. The model is loaded lazily on the
first call and runs in a worker thread so the event loop stays free.
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Optional

from core.errors import ConversionError, ErrorKind
from core.models import SubtitleSegment, SubtitleTrack

# Suppress whisper's FP16 warning on CPU
os.environ.setdefault("WHISPER_WARN_FP16", "0")

logger = logging.getLogger(__name__)


class WhisperClient:
    """Local Whisper speech-to-text client."""

    def __init__(
        self,
        model_name: str = "large-v3",
        device: str = "auto",
    ):
        self.model_name = model_name
        self._model = None
        self._requested_device = device
        self._device: Optional[str] = None

    @property
    def device(self) -> str:
        if self._device is None:
            if self._requested_device == "auto":
                self._device = self._detect_device()
            else:
                self._device = self._requested_device
        return self._device

    def _detect_device(self) -> str:
        """Auto-detect the best available device."""
        try:
            import torch
        except ImportError:
            return "cpu"
        if torch.cuda.is_available():
            logger.info(f"Whisper: CUDA GPU detected: {torch.cuda.get_device_name(0)}")
            return "cuda"
        if hasattr(torch.backends, "mps") and torch.backends.mps.is_available():
            return "mps"
        return "cpu"

    @property
    def model(self):
        """Lazy-load the Whisper model."""
        if self._model is None:
            try:
                import whisper
            except ImportError:
                raise ConversionError(
                    ErrorKind.CONFIGURATION,
                    "openai-whisper not installed. Install the 'asr' extra: pip install -e .[asr]",
                )
            logger.info(f"Loading Whisper model '{self.model_name}' on {self.device}...")
            self._model = whisper.load_model(self.model_name, device=self.device)
        return self._model

    def _transcribe_raw(self, audio_path: Path, language: Optional[str]) -> tuple[dict, str]:
        audio_path = Path(audio_path)
        if not audio_path.exists():
            raise ConversionError(ErrorKind.TOOL_FAILURE, f"Audio file not found: {audio_path}")

        opts: dict = {"verbose": False}
        if language:
            opts["language"] = language
        try:
            result = self.model.transcribe(str(audio_path), **opts)
        except ConversionError:
            raise
        except Exception as e:
            raise ConversionError(ErrorKind.TOOL_FAILURE, f"Transcription failed: {e}")

        detected = result.get("language") or language or ""
        return result, detected

    def transcribe_sync(self, audio_path: Path, language: Optional[str] = None) -> SubtitleTrack:
        result, detected = self._transcribe_raw(audio_path, language)
        segments = [
            SubtitleSegment(start=float(s["start"]), end=float(s["end"]), text=s.get("text", "").strip())
            for s in result.get("segments", [])
            if s.get("text", "").strip()
        ]
        logger.info(f"✓ Transcribed {len(segments)} segments ({detected or 'unknown language'})")
        return SubtitleTrack(language=detected, source="transcription", segments=segments)

    async def transcribe(self, audio_path: Path, language: Optional[str] = None) -> SubtitleTrack:
        return await asyncio.to_thread(self.transcribe_sync, audio_path, language)
