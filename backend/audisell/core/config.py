from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

log = logging.getLogger("audisell.core.config")

_BACKEND_DIR = Path(__file__).resolve().parents[2]
_DOTENV_FILES = (_BACKEND_DIR / ".env.local", _BACKEND_DIR / ".env")

# Real environment variables win over both files
for _dotenv in _DOTENV_FILES:
    if _dotenv.exists():
        load_dotenv(_dotenv, override=False)
        log.info("[config] Loaded %s", _dotenv.name)

PROD_ENVS = frozenset({"prod", "production", "stage", "staging"})
DEV_ENVS = frozenset({"dev", "development", "local", "test", "testing"})

_PLACEHOLDER_PREFIX = "dev-"

# Features degrade (stub AI, no billing, no captcha) when these are blank
VENDOR_SECRETS = (
    "OPENAI_API_KEY",
    "GEMINI_API_KEY",
    "STRIPE_SECRET_KEY",
    "STRIPE_WEBHOOK_SECRET",
    "RECAPTCHA_SECRET_KEY",
)

FIRST_PARTY_ORIGINS = (
    "https://audisell.com",
    "https://www.audisell.com",
    "https://app.audisell.com",
)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=tuple(str(p) for p in _DOTENV_FILES), extra="ignore")

    APP_ENV: str = Field(default="dev", validation_alias=AliasChoices("APP_ENV", "ENV", "PYTHON_ENV"))
    DATABASE_URL: str = "sqlite:///./audisell.db"

    # Tokens and cookies
    SECRET_KEY: str = "dev-secret-key-change-me"
    SESSION_SECRET_KEY: str = Field(
        default="dev-session-secret-change-me",
        validation_alias=AliasChoices("SESSION_SECRET_KEY", "SESSION_SECRET"),
    )
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 7
    PASSWORD_RESET_EXPIRE_MINUTES: int = 60
    EMAIL_VERIFICATION_EXPIRE_HOURS: int = 48

    # Transcription (Whisper) and script writing (Gemini)
    OPENAI_API_KEY: str = ""
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"
    WHISPER_MODEL: str = "whisper-1"
    GEMINI_API_KEY: str = ""
    GEMINI_MODEL: str = "gemini-2.5-flash"
    MAX_AUDIO_BYTES: int = 25 * 1024 * 1024

    STRIPE_SECRET_KEY: str = ""
    STRIPE_PUBLISHABLE_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""

    RECAPTCHA_SECRET_KEY: str = ""
    RECAPTCHA_MIN_SCORE: float = 0.5

    # Unset host means the limiter and user cache run without Redis
    REDIS_HOST: Optional[str] = None
    REDIS_PORT: Optional[int] = None

    SENTRY_DSN: str = ""
    SENTRY_TRACES_SAMPLE_RATE: float = 0.1

    ADMIN_EMAIL: str = ""
    SERVICE_TOKEN: str = ""
    SITE_NAME: str = "audisell.com"
    APP_BASE_URL: str = "http://localhost:5173"
    CORS_ALLOWED_ORIGINS: str = "http://127.0.0.1:5173,http://localhost:5173"

    # Rendered slides
    MEDIA_ROOT: str = "/tmp/audisell-media"
    MEDIA_URL_PREFIX: str = "/media"
    IMAGE_RETENTION_DAYS: int = 30

    @property
    def env_name(self) -> str:
        return (self.APP_ENV or "dev").strip().lower()

    @property
    def is_dev_mode(self) -> bool:
        return self.env_name in DEV_ENVS

    @property
    def is_prod_mode(self) -> bool:
        return self.env_name in PROD_ENVS

    @property
    def cors_allowed_origin_list(self) -> list[str]:
        """Configured origins first, then the first-party hosts, without duplicates."""
        configured = (o.strip().rstrip("/") for o in self.CORS_ALLOWED_ORIGINS.replace(";", ",").split(","))
        return list(dict.fromkeys(o for o in (*configured, *FIRST_PARTY_ORIGINS) if o))

    @model_validator(mode="after")
    def _check_deployment_secrets(self):
        blank = sorted(key for key in VENDOR_SECRETS if not getattr(self, key).strip())
        if blank:
            log.warning("[config] Unset vendor keys (%s): %s", self.env_name, ", ".join(blank))

        if not self.is_prod_mode:
            return self
        for key in ("SECRET_KEY", "SESSION_SECRET_KEY"):
            value = getattr(self, key)
            if not value or value.startswith(_PLACEHOLDER_PREFIX):
                raise ValueError(f"{key} must be configured for production deployments")
        if self.DATABASE_URL.startswith("sqlite"):
            log.warning("[config] SQLite DATABASE_URL in %s; use PostgreSQL for deployments", self.env_name)
        return self


settings = Settings()
