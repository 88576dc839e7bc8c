"""Log notification adapter — implements NotificationPort by logging."""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class LogNotifier:
    """NotificationPort that writes every message to the log."""

    async def send_message(self, recipient_id: str, text: str) -> None:
        logger.info("Notify %s: %s", recipient_id, text)
