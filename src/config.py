"""
HomeBase — Centralized configuration.

Loads all settings from .env and validates secret placeholders.
This module is the foundation for every other module in the project.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from src/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # SQLite
    DATABASE_PATH: str = "data/homebase.db"

    # Token vault: process-wide secret, checked at call time
    ENCRYPTION_KEY: str = ""

    # Google OAuth (web-server flow)
    GOOGLE_CLIENT_ID: str = ""
    GOOGLE_CLIENT_SECRET: str = ""
    GOOGLE_REDIRECT_URI: str = ""

    # Cron endpoints: Authorization: Bearer <CRON_SECRET>
    CRON_SECRET: str = ""

    # Public base URL, used to build the push-notification callback
    APP_BASE_URL: str = ""

    # Header the upstream auth proxy fills with the signed-in user id
    AUTH_USER_HEADER: str = "X-User-Id"

    # Sync scheduling
    STALE_THRESHOLD_MINUTES: int = 5
    SYNC_RATE_LIMIT_MAX_REQUESTS: int = 5
    SYNC_RATE_LIMIT_WINDOW_SECONDS: int = 60
    WEBHOOK_RENEWAL_HORIZON_HOURS: int = 24

    # HTTP server
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    @field_validator(
        "STALE_THRESHOLD_MINUTES",
        "SYNC_RATE_LIMIT_MAX_REQUESTS",
        "SYNC_RATE_LIMIT_WINDOW_SECONDS",
        "WEBHOOK_RENEWAL_HORIZON_HOURS",
        "PORT",
        mode="before",
    )
    @classmethod
    def parse_int(cls, v: str | int) -> int:
        return int(v)

    @property
    def webhook_url(self) -> str:
        """Absolute URL of the Google push-notification receiver."""
        base = self.APP_BASE_URL.rstrip("/")
        if base and not base.startswith("http"):
            base = f"https://{base}"
        return f"{base}/api/webhooks/google" if base else ""


_SECRET_KEYS = ("ENCRYPTION_KEY", "GOOGLE_CLIENT_SECRET", "CRON_SECRET")


def _load_settings() -> Settings:
    """Load settings from environment, rejecting copied placeholder secrets."""
    for key in _SECRET_KEYS:
        value = os.getenv(key, "")
        if value.startswith("your-"):
            print(f"ERROR: {key} still holds a placeholder value in .env", file=sys.stderr)
            sys.exit(1)

    return Settings(
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/homebase.db"),
        ENCRYPTION_KEY=os.getenv("ENCRYPTION_KEY", ""),
        GOOGLE_CLIENT_ID=os.getenv("GOOGLE_CLIENT_ID", ""),
        GOOGLE_CLIENT_SECRET=os.getenv("GOOGLE_CLIENT_SECRET", ""),
        GOOGLE_REDIRECT_URI=os.getenv("GOOGLE_REDIRECT_URI", ""),
        CRON_SECRET=os.getenv("CRON_SECRET", ""),
        APP_BASE_URL=os.getenv("APP_BASE_URL", ""),
        AUTH_USER_HEADER=os.getenv("AUTH_USER_HEADER", "X-User-Id"),
        STALE_THRESHOLD_MINUTES=os.getenv("STALE_THRESHOLD_MINUTES", "5"),
        SYNC_RATE_LIMIT_MAX_REQUESTS=os.getenv("SYNC_RATE_LIMIT_MAX_REQUESTS", "5"),
        SYNC_RATE_LIMIT_WINDOW_SECONDS=os.getenv("SYNC_RATE_LIMIT_WINDOW_SECONDS", "60"),
        WEBHOOK_RENEWAL_HORIZON_HOURS=os.getenv("WEBHOOK_RENEWAL_HORIZON_HOURS", "24"),
        HOST=os.getenv("HOST", "0.0.0.0"),
        PORT=os.getenv("PORT", "8000"),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
    )


# Singleton — imported by all other modules as:
#   from src.config import settings
settings = _load_settings()
