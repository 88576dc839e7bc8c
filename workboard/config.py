"""
Workboard Core — Centralized configuration.

Loads all settings from .env and validates them.
This module is the foundation for every other module in the project.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv
from pydantic import BaseModel, ValidationError, field_validator, model_validator

# Load .env from project root (two levels up from workboard/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # SQLite
    DATABASE_PATH: str = "data/workboard.db"
    # How long one SQLite call waits for a lock; below the persistence timeout
    DATABASE_BUSY_TIMEOUT_SECONDS: float = 2.0

    # Month boundaries and calendar days are evaluated in this zone
    TIMEZONE: str = "UTC"

    # How long before its due date a task becomes startable
    TASK_LOOKAHEAD_MINUTES: int = 0

    # Persistence retry budget
    PERSISTENCE_RETRY_ATTEMPTS: int = 3
    PERSISTENCE_RETRY_BASE_DELAY: float = 0.1
    PERSISTENCE_RETRY_MAX_DELAY: float = 2.0
    PERSISTENCE_TIMEOUT_SECONDS: float = 5.0

    # Rewards
    DEFAULT_MONTHLY_TARGET: int = 500

    # Notifications: "log" | "telegram" | "webhook"
    NOTIFIER_PROVIDER: str = "log"
    TELEGRAM_BOT_TOKEN: str = ""
    TELEGRAM_CHAT_ID: int = 0                       # team chat for users without their own
    TELEGRAM_CHAT_IDS: dict[str, int] = {}          # user id -> private chat id
    NOTIFY_WEBHOOK_URL: str = ""

    @field_validator("TIMEZONE")
    @classmethod
    def check_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone {v!r}") from exc
        return v

    @field_validator("TASK_LOOKAHEAD_MINUTES", "PERSISTENCE_RETRY_ATTEMPTS", mode="before")
    @classmethod
    def parse_int(cls, v: str | int) -> int:
        return int(v)

    @field_validator("PERSISTENCE_RETRY_ATTEMPTS", "DEFAULT_MONTHLY_TARGET")
    @classmethod
    def check_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @field_validator("TELEGRAM_CHAT_ID", mode="before")
    @classmethod
    def parse_chat_id(cls, v: str | int) -> int:
        if isinstance(v, str) and not v.strip():
            return 0
        return int(v)

    @field_validator("TELEGRAM_CHAT_IDS", mode="before")
    @classmethod
    def parse_chat_ids(cls, v: str | dict) -> dict:
        # "alice=123456,bob=-100789"
        if isinstance(v, dict):
            return v
        chat_ids = {}
        for pair in v.split(","):
            if not pair.strip():
                continue
            user_id, sep, chat_id = pair.partition("=")
            if not sep or not user_id.strip():
                raise ValueError(f"expected user=chat_id, got {pair.strip()!r}")
            chat_ids[user_id.strip()] = int(chat_id)
        return chat_ids

    @field_validator("NOTIFIER_PROVIDER")
    @classmethod
    def normalize_provider(cls, v: str) -> str:
        return v.strip().lower() or "log"

    @model_validator(mode="after")
    def check_busy_timeout(self) -> Settings:
        if not 0 < self.DATABASE_BUSY_TIMEOUT_SECONDS < self.PERSISTENCE_TIMEOUT_SECONDS:
            raise ValueError(
                "DATABASE_BUSY_TIMEOUT_SECONDS must be positive and below PERSISTENCE_TIMEOUT_SECONDS"
            )
        return self

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.TIMEZONE)


def _load_settings() -> Settings:
    """Load settings from environment, exiting on invalid values."""
    try:
        return Settings(
            DATABASE_PATH=os.getenv("DATABASE_PATH", "data/workboard.db"),
            DATABASE_BUSY_TIMEOUT_SECONDS=os.getenv("DATABASE_BUSY_TIMEOUT_SECONDS", "2.0"),
            TIMEZONE=os.getenv("TIMEZONE", "UTC"),
            TASK_LOOKAHEAD_MINUTES=os.getenv("TASK_LOOKAHEAD_MINUTES", "0"),
            PERSISTENCE_RETRY_ATTEMPTS=os.getenv("PERSISTENCE_RETRY_ATTEMPTS", "3"),
            PERSISTENCE_RETRY_BASE_DELAY=os.getenv("PERSISTENCE_RETRY_BASE_DELAY", "0.1"),
            PERSISTENCE_RETRY_MAX_DELAY=os.getenv("PERSISTENCE_RETRY_MAX_DELAY", "2.0"),
            PERSISTENCE_TIMEOUT_SECONDS=os.getenv("PERSISTENCE_TIMEOUT_SECONDS", "5.0"),
            DEFAULT_MONTHLY_TARGET=os.getenv("DEFAULT_MONTHLY_TARGET", "500"),
            NOTIFIER_PROVIDER=os.getenv("NOTIFIER_PROVIDER", "log"),
            TELEGRAM_BOT_TOKEN=os.getenv("TELEGRAM_BOT_TOKEN", ""),
            TELEGRAM_CHAT_ID=os.getenv("TELEGRAM_CHAT_ID", ""),
            TELEGRAM_CHAT_IDS=os.getenv("TELEGRAM_CHAT_IDS", ""),
            NOTIFY_WEBHOOK_URL=os.getenv("NOTIFY_WEBHOOK_URL", ""),
        )
    except ValidationError as exc:
        print(f"ERROR: invalid configuration in .env:\n{exc}", file=sys.stderr)
        sys.exit(1)


# Singleton — imported by all other modules as:
#   from workboard.config import settings
settings = _load_settings()
