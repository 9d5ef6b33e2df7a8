"""
Taskbot — Centralized configuration.

Loads all settings from .env and validates required keys.
Every other module reads its defaults from the `settings` singleton.
"""

from __future__ import annotations

import os
import sys
from datetime import timedelta
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from taskbot/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Telegram
    TELEGRAM_BOT_TOKEN: str

    # SQLite
    DATABASE_PATH: str = "data/taskbot.db"

    # Security — who may manage recurring tasks
    ALLOWED_USER_IDS: list[int] = []

    # Operational timezone: a single fixed UTC offset for all recurrence math
    OPERATIONAL_UTC_OFFSET_HOURS: int = 8

    # Dispatch loop
    POLL_INTERVAL_SECONDS: int = 30
    DISPATCH_CONCURRENCY: int = 5

    # Reporting
    RECENT_COMPLETIONS_LIMIT: int = 100

    LOG_LEVEL: str = "INFO"

    @field_validator("ALLOWED_USER_IDS", mode="before")
    @classmethod
    def parse_user_ids(cls, v: str | list[int]) -> list[int]:
        if isinstance(v, list):
            return v
        if isinstance(v, str) and v.strip():
            return [int(uid.strip()) for uid in v.split(",") if uid.strip()]
        return []

    @field_validator(
        "OPERATIONAL_UTC_OFFSET_HOURS",
        "POLL_INTERVAL_SECONDS",
        "DISPATCH_CONCURRENCY",
        "RECENT_COMPLETIONS_LIMIT",
        mode="before",
    )
    @classmethod
    def parse_int(cls, v: str | int) -> int:
        return int(v)

    @field_validator("OPERATIONAL_UTC_OFFSET_HOURS")
    @classmethod
    def check_offset(cls, v: int) -> int:
        if not -12 <= v <= 14:
            raise ValueError(f"UTC offset out of range: {v}")
        return v

    @field_validator("POLL_INTERVAL_SECONDS", "DISPATCH_CONCURRENCY", "RECENT_COMPLETIONS_LIMIT")
    @classmethod
    def check_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"Must be a positive integer, got {v}")
        return v

    @property
    def operational_offset(self) -> timedelta:
        return timedelta(hours=self.OPERATIONAL_UTC_OFFSET_HOURS)


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    token = os.getenv("TELEGRAM_BOT_TOKEN", "")

    if not token or token.startswith("your-"):
        print("ERROR: TELEGRAM_BOT_TOKEN is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    return Settings(
        TELEGRAM_BOT_TOKEN=token,
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/taskbot.db"),
        ALLOWED_USER_IDS=os.getenv("ALLOWED_USER_IDS", ""),
        OPERATIONAL_UTC_OFFSET_HOURS=os.getenv("OPERATIONAL_UTC_OFFSET_HOURS", "8"),
        POLL_INTERVAL_SECONDS=os.getenv("POLL_INTERVAL_SECONDS", "30"),
        DISPATCH_CONCURRENCY=os.getenv("DISPATCH_CONCURRENCY", "5"),
        RECENT_COMPLETIONS_LIMIT=os.getenv("RECENT_COMPLETIONS_LIMIT", "100"),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
    )


# Singleton — imported by all other modules as:
#   from taskbot.config import settings
settings = _load_settings()
