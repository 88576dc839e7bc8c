"""Webhook notification adapter — implements NotificationPort over HTTP.

POSTs {"recipient": ..., "text": ...} as JSON to a configured URL. HTTP
errors propagate to the caller; the event bus logs them.
"""

from __future__ import annotations

import logging

import httpx

logger = logging.getLogger(__name__)

_TIMEOUT_SECONDS = 5


class WebhookNotifier:
    """HTTP webhook implementation of NotificationPort."""

    def __init__(self, url: str, timeout: float = _TIMEOUT_SECONDS) -> None:
        if not url:
            raise ValueError("Webhook URL is required")
        self._url = url
        self._timeout = timeout

    async def send_message(self, recipient_id: str, text: str) -> None:
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            resp = await client.post(
                self._url,
                json={"recipient": recipient_id, "text": text},
            )
            resp.raise_for_status()
        logger.debug("Webhook delivered to %s (HTTP %d)", recipient_id, resp.status_code)
