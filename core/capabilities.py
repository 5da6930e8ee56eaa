"""Optional collaborators resolved once per process."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

logger = logging.getLogger(__name__)


@dataclass
class Capabilities:
    """Which optional services a run can use.

    Stages check these fields instead of probing for clients themselves.
    """

    llm: Optional[Any] = None
    transcriber: Optional[Any] = None

    @property
    def has_llm(self) -> bool:
        return self.llm is not None

    @property
    def has_transcriber(self) -> bool:
        return self.transcriber is not None

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "Capabilities":
        from clients.ollama_client import OllamaClient
        from clients.whisper_client import WhisperClient

        llm = None
        lc = config.get("llm", {})
        if lc.get("enabled", True) and lc.get("base_url"):
            llm = OllamaClient(
                model=lc.get("model", "qwen3:8b"),
                base_url=lc["base_url"],
                timeout=lc.get("timeout", 600),
            )

        transcriber = None
        ac = config.get("asr", {})
        if ac.get("enabled", False):
            transcriber = WhisperClient(
                model_name=ac.get("model", "large-v3"),
                device=ac.get("device", "auto"),
            )

        caps = cls(llm=llm, transcriber=transcriber)
        logger.info(
            f"Capabilities: llm={'✓' if caps.has_llm else '✗'} "
            f"transcriber={'✓' if caps.has_transcriber else '✗'}"
        )
        return caps
