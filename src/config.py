"""
MindArsenal Coach — Centralized configuration.

Loads all settings from .env and validates required keys.
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

    # Telegram
    TELEGRAM_BOT_TOKEN: str

    # LLM provider: openai, anthropic, gemini or cohere
    LLM_PROVIDER: str = "openai"
    LLM_MODEL: str = ""          # empty → smart default per provider
    LLM_API_KEY: str = ""        # empty → coach runs offline (templated replies)
    LLM_TIMEOUT_SECONDS: float = 20.0

    # SQLite snapshot store
    DATABASE_PATH: str = "data/mindarsenal.db"

    # Scheduler
    TICK_INTERVAL_SECONDS: int = 60
    WATCHDOG_INTERVAL_SECONDS: int = 300
    WATCHDOG_MAX_AGE_SECONDS: int = 360
    WEEKLY_REPORT_WEEKDAY: int = 0   # 0 = Sunday (telegram.ext day numbering)
    WEEKLY_REPORT_HOUR: int = 18

    # Outbound delivery
    SEND_TIMEOUT_SECONDS: float = 10.0
    STARTUP_PING: bool = False

    # WhatsApp via Twilio (only needed when all three are set)
    TWILIO_ACCOUNT_SID: str = ""
    TWILIO_AUTH_TOKEN: str = ""
    TWILIO_WHATSAPP_NUMBER: str = ""   # e.g. "whatsapp:+14155238886"
    WHATSAPP_WEBHOOK_HOST: str = "0.0.0.0"
    WHATSAPP_WEBHOOK_PORT: int = 8080
    WHATSAPP_VALIDATE_SIGNATURE: bool = True
    WHATSAPP_COACH_TIMEOUT_SECONDS: float = 10.0   # under Twilio's 15 s webhook timeout

    LOG_LEVEL: str = "INFO"

    @field_validator("STARTUP_PING", "WHATSAPP_VALIDATE_SIGNATURE", mode="before")
    @classmethod
    def parse_flag(cls, v: str | bool) -> bool:
        if isinstance(v, bool):
            return v
        return str(v).strip().lower() in ("1", "true", "yes", "on")

    @field_validator("WEEKLY_REPORT_WEEKDAY", mode="before")
    @classmethod
    def parse_weekday(cls, v: str | int) -> int:
        day = int(v)
        if not 0 <= day <= 6:
            raise ValueError("WEEKLY_REPORT_WEEKDAY must be 0-6 (0 = Sunday)")
        return day

    @field_validator("WEEKLY_REPORT_HOUR", mode="before")
    @classmethod
    def parse_hour(cls, v: str | int) -> int:
        hour = int(v)
        if not 0 <= hour <= 23:
            raise ValueError("WEEKLY_REPORT_HOUR must be 0-23")
        return hour

    @property
    def llm_enabled(self) -> bool:
        return bool(self.LLM_API_KEY) and not self.LLM_API_KEY.startswith("your-")

    @property
    def whatsapp_enabled(self) -> bool:
        return bool(
            self.TWILIO_ACCOUNT_SID and self.TWILIO_AUTH_TOKEN and self.TWILIO_WHATSAPP_NUMBER
        )


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    token = os.getenv("TELEGRAM_BOT_TOKEN", "")

    if not token or token.startswith("your-"):
        print("ERROR: TELEGRAM_BOT_TOKEN is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    return Settings(
        TELEGRAM_BOT_TOKEN=token,
        LLM_PROVIDER=os.getenv("LLM_PROVIDER", "openai"),
        LLM_MODEL=os.getenv("LLM_MODEL", ""),
        LLM_API_KEY=os.getenv("LLM_API_KEY", "") or os.getenv("OPENAI_API_KEY", ""),
        LLM_TIMEOUT_SECONDS=os.getenv("LLM_TIMEOUT_SECONDS", "20"),
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/mindarsenal.db"),
        TICK_INTERVAL_SECONDS=os.getenv("TICK_INTERVAL_SECONDS", "60"),
        WATCHDOG_INTERVAL_SECONDS=os.getenv("WATCHDOG_INTERVAL_SECONDS", "300"),
        WATCHDOG_MAX_AGE_SECONDS=os.getenv("WATCHDOG_MAX_AGE_SECONDS", "360"),
        WEEKLY_REPORT_WEEKDAY=os.getenv("WEEKLY_REPORT_WEEKDAY", "0"),
        WEEKLY_REPORT_HOUR=os.getenv("WEEKLY_REPORT_HOUR", "18"),
        SEND_TIMEOUT_SECONDS=os.getenv("SEND_TIMEOUT_SECONDS", "10"),
        STARTUP_PING=os.getenv("STARTUP_PING", "false"),
        TWILIO_ACCOUNT_SID=os.getenv("TWILIO_ACCOUNT_SID", ""),
        TWILIO_AUTH_TOKEN=os.getenv("TWILIO_AUTH_TOKEN", ""),
        TWILIO_WHATSAPP_NUMBER=os.getenv("TWILIO_WHATSAPP_NUMBER", ""),
        WHATSAPP_WEBHOOK_HOST=os.getenv("WHATSAPP_WEBHOOK_HOST", "0.0.0.0"),
        WHATSAPP_WEBHOOK_PORT=os.getenv("WHATSAPP_WEBHOOK_PORT", "8080"),
        WHATSAPP_VALIDATE_SIGNATURE=os.getenv("WHATSAPP_VALIDATE_SIGNATURE", "true"),
        WHATSAPP_COACH_TIMEOUT_SECONDS=os.getenv("WHATSAPP_COACH_TIMEOUT_SECONDS", "10"),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
    )


# Singleton, imported by all other modules as:
#   from src.config import settings
settings = _load_settings()
