"""Notifier adapter factory — creates the right adapter based on config."""

from __future__ import annotations

from workboard.config import settings
from workboard.ports.notification_port import NotificationPort


def create_notifier() -> NotificationPort:
    """Return the notifier matching the NOTIFIER_PROVIDER setting."""
    provider = settings.NOTIFIER_PROVIDER.lower()

    if provider == "log":
        from workboard.adapters.log_notifier import LogNotifier

        return LogNotifier()

    if provider == "telegram":
        from telegram import Bot

        from workboard.adapters.telegram_notifier import TelegramNotifier

        if not settings.TELEGRAM_BOT_TOKEN:
            raise ValueError("TELEGRAM_BOT_TOKEN is required for telegram")
        if not settings.TELEGRAM_CHAT_IDS and not settings.TELEGRAM_CHAT_ID:
            raise ValueError("Set TELEGRAM_CHAT_IDS and/or TELEGRAM_CHAT_ID for telegram")
        return TelegramNotifier(
            Bot(token=settings.TELEGRAM_BOT_TOKEN),
            chat_ids=settings.TELEGRAM_CHAT_IDS,
            team_chat_id=settings.TELEGRAM_CHAT_ID,
        )

    if provider == "webhook":
        from workboard.adapters.webhook_notifier import WebhookNotifier

        return WebhookNotifier(settings.NOTIFY_WEBHOOK_URL)

    raise ValueError(f"Unknown NOTIFIER_PROVIDER: {provider!r}")
