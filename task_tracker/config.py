"""
Task Tracker — Centralized configuration.

Loads all settings from .env and validates them.
This module is the foundation for every other module in the project.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (one level up from task_tracker/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Telegram (only needed to run the bot; checked in main())
    TELEGRAM_BOT_TOKEN: str = ""

    # Security
    ALLOWED_USER_IDS: list[int] = []

    # SQLite
    DATABASE_PATH: str = "data/tracker.db"

    # Daily reset boundary, used until the user saves their own
    TIMEZONE: str = "UTC"
    RESET_HOUR: int = 0
    RESET_MINUTE: int = 0

    # Countdown / boundary re-evaluation interval
    TICK_SECONDS: float = 1.0

    LOG_LEVEL: str = "INFO"

    @field_validator("ALLOWED_USER_IDS", mode="before")
    @classmethod
    def parse_user_ids(cls, v: str | list[int]) -> list[int]:
        if isinstance(v, list):
            return v
        if isinstance(v, str) and v.strip():
            return [int(uid.strip()) for uid in v.split(",") if uid.strip()]
        return []

    @field_validator("RESET_HOUR", mode="before")
    @classmethod
    def parse_hour(cls, v: str | int) -> int:
        hour = int(v)
        if not 0 <= hour <= 23:
            raise ValueError(f"RESET_HOUR must be within 0-23, got {hour}")
        return hour

    @field_validator("RESET_MINUTE", mode="before")
    @classmethod
    def parse_minute(cls, v: str | int) -> int:
        minute = int(v)
        if not 0 <= minute <= 59:
            raise ValueError(f"RESET_MINUTE must be within 0-59, got {minute}")
        return minute


def _load_settings() -> Settings:
    """Load settings from environment."""
    return Settings(
        TELEGRAM_BOT_TOKEN=os.getenv("TELEGRAM_BOT_TOKEN", ""),
        ALLOWED_USER_IDS=os.getenv("ALLOWED_USER_IDS", ""),
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/tracker.db"),
        TIMEZONE=os.getenv("TIMEZONE", "UTC"),
        RESET_HOUR=os.getenv("RESET_HOUR", "0"),
        RESET_MINUTE=os.getenv("RESET_MINUTE", "0"),
        TICK_SECONDS=os.getenv("TICK_SECONDS", "1.0"),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
    )


# Singleton — imported by all other modules as:
#   from task_tracker.config import settings
settings = _load_settings()
