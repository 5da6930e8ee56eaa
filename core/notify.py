"""Webhook delivery for finished jobs."""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
from typing import Any, Callable, Optional

import requests

from .models import Job
from .state import now_iso
from utils import get_logger

logger = get_logger("notify")

SIGNATURE_HEADER = "X-V2doc-Signature"


def sign(payload: bytes, secret: str) -> str:
    """HMAC-SHA256 of the raw body, hex encoded."""
    return "sha256=" + hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def build_payload(job: Job, event: str) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "event": f"job.{event}",
        "jobId": job.id,
        "status": job.status.value,
        "timestamp": now_iso(),
    }
    if job.result is not None:
        payload["result"] = job.result.to_dict()
    if job.error is not None:
        payload["error"] = job.error.to_dict()
    return payload


class WebhookNotifier:
    """POSTs job events to the job's webhook URL.

    Delivery failures are logged and never raised: a broken webhook must
    not change the job outcome.
    """

    def __init__(
        self,
        secret: str = "",
        timeout: float = 10,
        max_attempts: int = 3,
        retry_base_delay: float = 1.0,
        session: Optional[requests.Session] = None,
        sleep: Callable = asyncio.sleep,
    ):
        self.secret = secret
        self.timeout = timeout
        self.max_attempts = max(1, max_attempts)
        self.retry_base_delay = retry_base_delay
        self.session = session or requests.Session()
        self._sleep = sleep

    @classmethod
    def from_config(cls, config: dict) -> "WebhookNotifier":
        wc = config.get("webhook", {})
        return cls(
            secret=wc.get("secret", ""),
            timeout=wc.get("timeout", 10),
            max_attempts=wc.get("max_attempts", 3),
        )

    def _post(self, url: str, body: bytes) -> int:
        headers = {"Content-Type": "application/json"}
        if self.secret:
            headers[SIGNATURE_HEADER] = sign(body, self.secret)
        response = self.session.post(url, data=body, headers=headers, timeout=self.timeout)
        return response.status_code

    async def notify(self, job: Job, event: str) -> bool:
        """Deliver ``event`` for ``job``. Returns True on a 2xx reply."""
        if not job.webhook_url:
            return False
        body = json.dumps(build_payload(job, event), ensure_ascii=False).encode("utf-8")

        for attempt in range(self.max_attempts):
            try:
                status = await asyncio.to_thread(self._post, job.webhook_url, body)
                if 200 <= status < 300:
                    logger.info(f"✓ Webhook {event} delivered for job {job.id}")
                    return True
                logger.warning(f"⚠ Webhook returned HTTP {status} (attempt {attempt + 1}/{self.max_attempts})")
                if 400 <= status < 500 and status != 429:
                    break
            except requests.RequestException as e:
                logger.warning(f"⚠ Webhook error (attempt {attempt + 1}/{self.max_attempts}): {e}")
            if attempt < self.max_attempts - 1:
                await self._sleep(self.retry_base_delay * 2 ** attempt)

        logger.error(f"✗ Webhook {event} not delivered for job {job.id}")
        return False
