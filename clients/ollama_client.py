"""Ollama chat client used for enhancement, summaries and translation."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import Optional

import requests

from core.errors import ConversionError, ErrorKind

logger = logging.getLogger(__name__)


@dataclass
class ChatResponse:
    text: str
    tokens_used: int = 0


class OllamaClient:
    """Client for the Ollama ``/api/chat`` endpoint.

    The client performs exactly one HTTP request per ``chat`` call. Retries
    belong to the caller. Transport failures are raised as ``ConversionError``
    tagged with the matching ``ErrorKind``.
    """

    def __init__(
        self,
        model: str = "qwen3:8b",
        base_url: str = "http://localhost:11434",
        timeout: float = 600,
        session: Optional[requests.Session] = None,
    ):
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def ping(self) -> bool:
        """Check that the server answers and the model is pulled."""
        try:
            resp = self.session.get(f"{self.base_url}/api/tags", timeout=5)
            resp.raise_for_status()
            models = [m["name"] for m in resp.json().get("models", [])]
            if self.model not in models:
                logger.warning(f"Model '{self.model}' not found. Available: {models}")
            return True
        except requests.RequestException as e:
            logger.warning(f"⚠ Cannot connect to Ollama at {self.base_url}: {e}")
            return False

    def _clean_response(self, response: str) -> str:
        """Remove <think> blocks from response."""
        response = re.sub(r'<think>[\s\S]*?</think>', '', response)
        # Unclosed block
        response = re.sub(r'<think>[\s\S]*', '', response)
        return response.strip()

    def chat_sync(
        self,
        system: str,
        user: str,
        json_mode: bool = False,
        temperature: float = 0.3,
        max_tokens: int = 4096,
    ) -> ChatResponse:
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "stream": False,
            "options": {
                "temperature": temperature,
                "num_predict": max_tokens,
            },
        }
        if json_mode:
            payload["format"] = "json"

        try:
            resp = self.session.post(
                f"{self.base_url}/api/chat",
                json=payload,
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            raise ConversionError(ErrorKind.TIMEOUT, f"Language model timed out: {e}")
        except requests.ConnectionError as e:
            raise ConversionError(ErrorKind.NETWORK, f"Cannot reach language model: {e}")
        except requests.RequestException as e:
            raise ConversionError(ErrorKind.NETWORK, f"Language model request failed: {e}")

        if resp.status_code == 429:
            raise ConversionError(ErrorKind.RATE_LIMITED, "Language model rate limit exceeded")
        if resp.status_code in (401, 403):
            raise ConversionError(ErrorKind.CONFIGURATION, f"Language model rejected credentials ({resp.status_code})")
        if resp.status_code == 404:
            raise ConversionError(ErrorKind.CONFIGURATION, f"Model '{self.model}' not available")
        if resp.status_code >= 500:
            raise ConversionError(ErrorKind.NETWORK, f"Language model server error ({resp.status_code})")
        if resp.status_code >= 400:
            raise ConversionError(ErrorKind.UNKNOWN, f"Language model request rejected ({resp.status_code})")

        # Decode explicitly as UTF-8 to avoid platform-specific encoding issues
        try:
            data = json.loads(resp.content.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ConversionError(ErrorKind.NETWORK, f"Malformed language model reply: {e}")

        text = (data.get("message") or {}).get("content", "")
        tokens = int(data.get("prompt_eval_count", 0) or 0) + int(data.get("eval_count", 0) or 0)
        return ChatResponse(text=self._clean_response(text), tokens_used=tokens)

    async def chat(
        self,
        system: str,
        user: str,
        json_mode: bool = False,
        temperature: float = 0.3,
        max_tokens: int = 4096,
    ) -> ChatResponse:
        return await asyncio.to_thread(
            self.chat_sync, system, user, json_mode, temperature, max_tokens
        )
