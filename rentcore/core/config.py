"""Configuration module for the rentcore billing engine."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from urllib.parse import urlparse
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

from rentcore.core.exceptions import ConfigurationError

load_dotenv()


def _as_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Config:
    """Process-level configuration with validation.

    Tunables that operators change at runtime (grace days, prorata policy,
    handover switches, poll rate limits) live in the ``app_settings`` table
    and are read through :class:`rentcore.services.settings_service.SettingsService`.
    """

    APP_NAME: str
    APP_VERSION: str
    ENV: str
    DEBUG: bool
    DATABASE_URL: str
    DB_CONNECTIVITY_REQUIRED: bool
    REDIS_URL: str
    CELERY_BROKER_URL: str
    CELERY_RESULT_BACKEND: str
    MIDTRANS_SERVER_KEY: str | None
    MIDTRANS_IS_PRODUCTION: bool
    MIDTRANS_TIMEOUT_SECONDS: int
    APP_BASE_URL: str
    TIMEZONE: str
    LOG_LEVEL: str
    LOG_FILE: str

    @property
    def is_production(self) -> bool:
        return self.ENV == "production"


def _build_config(env: str | None = None) -> Config:
    resolved_env = (env or os.getenv("ENV", "development")).strip().lower()
    debug = _as_bool(os.getenv("DEBUG"), default=(resolved_env != "production"))
    redis_url = os.getenv("REDIS_URL", "redis://localhost:6379/0")

    config = Config(
        APP_NAME="rentcore",
        APP_VERSION=os.getenv("APP_VERSION", "1.0.0"),
        ENV=resolved_env,
        DEBUG=debug if resolved_env != "production" else False,
        DATABASE_URL=os.getenv("DATABASE_URL", "sqlite:///./rentcore.db"),
        DB_CONNECTIVITY_REQUIRED=_as_bool(
            os.getenv("DB_CONNECTIVITY_REQUIRED"), default=(resolved_env == "production")
        ),
        REDIS_URL=redis_url,
        CELERY_BROKER_URL=os.getenv("CELERY_BROKER_URL", redis_url),
        CELERY_RESULT_BACKEND=os.getenv("CELERY_RESULT_BACKEND", redis_url),
        MIDTRANS_SERVER_KEY=os.getenv("MIDTRANS_SERVER_KEY"),
        MIDTRANS_IS_PRODUCTION=_as_bool(os.getenv("MIDTRANS_IS_PRODUCTION"), default=False),
        MIDTRANS_TIMEOUT_SECONDS=int(os.getenv("MIDTRANS_TIMEOUT_SECONDS", "15")),
        APP_BASE_URL=os.getenv("APP_BASE_URL", "http://localhost:8000").rstrip("/"),
        TIMEZONE=os.getenv("TIMEZONE", "Asia/Jakarta"),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO").upper(),
        LOG_FILE=os.getenv("LOG_FILE", ""),
    )
    _validate_config(config)
    return config


def _validate_database_url(database_url: str) -> None:
    parsed = urlparse(database_url)
    if parsed.scheme not in {"sqlite", "postgresql", "postgresql+psycopg2", "mysql+pymysql"}:
        raise ConfigurationError(
            "DATABASE_URL must use sqlite://, postgresql:// or mysql+pymysql:// style URL."
        )
    if not parsed.scheme.startswith("sqlite") and not parsed.hostname:
        raise ConfigurationError("DATABASE_URL is missing hostname.")


def _validate_config(config: Config) -> None:
    _validate_database_url(config.DATABASE_URL)

    if urlparse(config.REDIS_URL).scheme not in {"redis", "rediss"}:
        raise ConfigurationError("REDIS_URL must use redis:// or rediss://.")
    if config.MIDTRANS_TIMEOUT_SECONDS < 1:
        raise ConfigurationError("MIDTRANS_TIMEOUT_SECONDS must be >= 1.")
    if config.LOG_LEVEL not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
        raise ConfigurationError("LOG_LEVEL must be one of DEBUG/INFO/WARNING/ERROR/CRITICAL.")
    try:
        ZoneInfo(config.TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigurationError(f"TIMEZONE is not a known IANA zone: {config.TIMEZONE}") from exc
    if config.is_production and not config.MIDTRANS_SERVER_KEY:
        raise ConfigurationError("MIDTRANS_SERVER_KEY is required in production.")


@lru_cache(maxsize=8)
def get_config(env: str | None = None) -> Config:
    """Get validated configuration for the requested environment."""
    return _build_config(env)
