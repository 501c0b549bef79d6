"""
Application configuration — environment-aware settings.

All environment variables are documented here. See .env.example for a template.
"""

from __future__ import annotations

import os
import warnings
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).parent

# .env.local wins over .env (load_dotenv never overrides an already-set var)
load_dotenv(BASE_DIR / ".env.local")
load_dotenv(BASE_DIR / ".env")


def _env_bool(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


class BaseConfig:
    # Database: SQLite (default) or PostgreSQL (set DATABASE_URL=postgresql://...)
    DATABASE = os.environ.get("DATABASE_URL") or str(BASE_DIR / "prepmate.db")

    # AI provider
    AI_PROVIDER = os.environ.get("AI_PROVIDER", "openai")  # openai | claude | gemini
    AI_MODEL = os.environ.get("AI_MODEL", "")  # empty = provider default
    OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY", "")
    ANTHROPIC_API_KEY = os.environ.get("ANTHROPIC_API_KEY", "")
    GOOGLE_API_KEY = os.environ.get("GOOGLE_API_KEY", "")
    AI_TIMEOUT_SECONDS = float(os.environ.get("AI_TIMEOUT_SECONDS", "60"))

    # Messaging gateway (Twilio WhatsApp)
    TWILIO_ACCOUNT_SID = os.environ.get("TWILIO_ACCOUNT_SID", "")
    TWILIO_AUTH_TOKEN = os.environ.get("TWILIO_AUTH_TOKEN", "")
    TWILIO_WHATSAPP_FROM = os.environ.get("TWILIO_WHATSAPP_FROM", "")  # e.g. whatsapp:+14155238886
    GATEWAY_TIMEOUT_SECONDS = float(os.environ.get("GATEWAY_TIMEOUT_SECONDS", "15"))

    # Scheduled test generation
    DUE_THRESHOLD_HOURS = float(os.environ.get("DUE_THRESHOLD_HOURS", "23"))
    QUESTION_COUNT = int(os.environ.get("QUESTION_COUNT", "5"))
    QUESTION_TYPE = os.environ.get("QUESTION_TYPE", "MCQ")  # MCQ | short-answer
    MATERIAL_DIGEST_LIMIT = int(os.environ.get("MATERIAL_DIGEST_LIMIT", "5"))

    # Triggers
    CRON_SECRET = os.environ.get("CRON_SECRET", "")
    SCHEDULER_ENABLED = _env_bool("SCHEDULER_ENABLED")
    SCHEDULER_INTERVAL_HOURS = float(os.environ.get("SCHEDULER_INTERVAL_HOURS", "1"))

    # Logging
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "text")  # "json" or "text"
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "text")


class ProductionConfig(BaseConfig):
    DEBUG = False
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "json")

    @classmethod
    def validate(cls):
        """Warn about incomplete production configuration.

        Nothing here stops startup: every trigger must still reach discovery.
        """
        if not cls.CRON_SECRET:
            warnings.warn("CRON_SECRET is not set — the cron endpoint will refuse every request.")
        if not (cls.OPENAI_API_KEY or cls.ANTHROPIC_API_KEY or cls.GOOGLE_API_KEY):
            warnings.warn("No AI provider key is set — every scheduled synthesis will fail.")
        if not (cls.TWILIO_ACCOUNT_SID and cls.TWILIO_AUTH_TOKEN and cls.TWILIO_WHATSAPP_FROM):
            warnings.warn("Twilio is not configured — reminders run in degraded mode.")


class TestingConfig(BaseConfig):
    TESTING = True
    SCHEDULER_ENABLED = False
    CRON_SECRET = "test-cron-secret"


config_by_name = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
}
