"""Telegram notification adapter — implements NotificationPort.

Wraps a telegram.Bot instance. Users with a known private chat get their
messages there; everyone else is addressed by id in the team chat.
"""

from __future__ import annotations

import logging

from telegram import Bot

logger = logging.getLogger(__name__)


class TelegramNotifier:
    """Telegram implementation of NotificationPort."""

    def __init__(self, bot: Bot, chat_ids: dict[str, int] | None = None, team_chat_id: int = 0) -> None:
        self._bot = bot
        self._chat_ids = dict(chat_ids or {})
        self._team_chat_id = team_chat_id

    async def send_message(self, recipient_id: str, text: str) -> None:
        chat_id = self._chat_ids.get(recipient_id)
        if chat_id is not None:
            await self._bot.send_message(chat_id=chat_id, text=text)
        elif self._team_chat_id:
            await self._bot.send_message(chat_id=self._team_chat_id, text=f"{recipient_id}: {text}")
        else:
            logger.warning("No Telegram chat for %s, message dropped", recipient_id)
