"""Pydantic settings loaded from .env."""

from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv
from pydantic import ConfigDict
from pydantic_settings import BaseSettings

BASE_DIR = Path(__file__).resolve().parent

_env_file = BASE_DIR.parent / ".env"
load_dotenv(_env_file)


class Settings(BaseSettings):
    DATABASE_URL: str = f"sqlite:///{BASE_DIR / 'db.sqlite3'}"

    CORS_ALLOW_ALL_ORIGINS: bool = True

    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""
    LOG_MAX_BYTES: int = 10_485_760
    LOG_BACKUP_COUNT: int = 5

    # Server-side sessions, absolute lifetime
    SESSION_COOKIE_NAME: str = "ruby_session"
    SESSION_MAX_AGE_DAYS: int = 30
    SESSION_COOKIE_SECURE: bool = False

    # Fast text-only provider (Groq by default)
    TEXT_PROVIDER_BASE_URL: str = "https://api.groq.com/openai/v1"
    TEXT_PROVIDER_API_KEY: str = ""
    TEXT_MODEL: str = "llama-3.3-70b-versatile"

    # Vision-capable provider (OpenRouter by default)
    VISION_PROVIDER_BASE_URL: str = "https://openrouter.ai/api/v1"
    VISION_PROVIDER_API_KEY: str = ""
    VISION_MODEL: str = "google/gemini-2.0-flash-001"

    LLM_MAX_TOKENS: int = 4096
    LLM_TIMEOUT_SECONDS: int = 120
    LLM_MAX_RETRIES: int = 2

    model_config = ConfigDict(
        env_file=str(_env_file),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def session_max_age_seconds(self) -> int:
        return self.SESSION_MAX_AGE_DAYS * 24 * 60 * 60


settings = Settings()
