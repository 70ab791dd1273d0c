"""Configuration module for the ContractFlow application."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from urllib.parse import urlparse

from dotenv import load_dotenv

from contractflow.core.exceptions import ConfigurationError

load_dotenv()

PLACEHOLDER_SECRETS = {
    "change_me_jwt_secret",
    "change_me_signing_token_secret",
}


def _as_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Config:
    """Runtime configuration with validation."""

    APP_NAME: str
    APP_VERSION: str
    ENV: str
    DEBUG: bool
    DATABASE_URL: str
    SERVICE_DATABASE_URL: str
    DB_CONNECTIVITY_REQUIRED: bool
    APP_BASE_URL: str
    CURRENCY: str
    SIGNING_TOKEN_SECRET: str
    SIGNING_TOKEN_TTL_DAYS: int
    SIGNING_TOKEN_ONE_TIME: bool
    SIGNING_RATE_LIMIT_WINDOW_MINUTES: int
    SIGNING_RATE_LIMIT_MAX_ATTEMPTS: int
    PAYMENT_AMOUNT_TOLERANCE_CENTS: int
    STRIPE_SECRET_KEY: str | None
    STRIPE_WEBHOOK_SECRET: str | None
    STORAGE_BUCKET: str
    STORAGE_ENDPOINT_URL: str | None
    STORAGE_REGION: str
    STORAGE_ACCESS_KEY_ID: str | None
    STORAGE_SECRET_ACCESS_KEY: str | None
    STORAGE_PUBLIC_BASE_URL: str | None
    STORAGE_URL_TTL_SECONDS: int
    SMTP_SERVER: str | None
    SMTP_PORT: int
    SMTP_USERNAME: str | None
    SMTP_PASSWORD: str | None
    EMAIL_FROM: str
    EMAIL_SANDBOX_MODE: bool
    JWT_SECRET: str
    JWT_ACCESS_TTL_MINUTES: int
    API_PREFIX: str
    LOG_LEVEL: str
    LOG_FILE: str

    @property
    def is_production(self) -> bool:
        return self.ENV == "production"


def _build_config(env: str | None = None) -> Config:
    resolved_env = (env or os.getenv("ENV", "development")).strip().lower()
    debug = _as_bool(os.getenv("DEBUG"), default=(resolved_env != "production"))
    database_url = os.getenv("DATABASE_URL", "sqlite:///./contractflow.db")

    config = Config(
        APP_NAME="ContractFlow",
        APP_VERSION=os.getenv("APP_VERSION", "1.0.0"),
        ENV=resolved_env,
        DEBUG=debug if resolved_env != "production" else False,
        DATABASE_URL=database_url,
        SERVICE_DATABASE_URL=os.getenv("SERVICE_DATABASE_URL", database_url),
        DB_CONNECTIVITY_REQUIRED=_as_bool(
            os.getenv("DB_CONNECTIVITY_REQUIRED"), default=(resolved_env == "production")
        ),
        APP_BASE_URL=os.getenv("APP_BASE_URL", "http://localhost:8000").rstrip("/"),
        CURRENCY=os.getenv("CURRENCY", "usd").lower(),
        SIGNING_TOKEN_SECRET=os.getenv("SIGNING_TOKEN_SECRET", "change_me_signing_token_secret"),
        SIGNING_TOKEN_TTL_DAYS=int(os.getenv("SIGNING_TOKEN_TTL_DAYS", "7")),
        SIGNING_TOKEN_ONE_TIME=_as_bool(os.getenv("SIGNING_TOKEN_ONE_TIME"), default=True),
        SIGNING_RATE_LIMIT_WINDOW_MINUTES=int(os.getenv("SIGNING_RATE_LIMIT_WINDOW_MINUTES", "15")),
        SIGNING_RATE_LIMIT_MAX_ATTEMPTS=int(os.getenv("SIGNING_RATE_LIMIT_MAX_ATTEMPTS", "5")),
        PAYMENT_AMOUNT_TOLERANCE_CENTS=int(os.getenv("PAYMENT_AMOUNT_TOLERANCE_CENTS", "0")),
        STRIPE_SECRET_KEY=os.getenv("STRIPE_SECRET_KEY"),
        STRIPE_WEBHOOK_SECRET=os.getenv("STRIPE_WEBHOOK_SECRET"),
        STORAGE_BUCKET=os.getenv("STORAGE_BUCKET", "contracts"),
        STORAGE_ENDPOINT_URL=os.getenv("STORAGE_ENDPOINT_URL"),
        STORAGE_REGION=os.getenv("STORAGE_REGION", "us-east-1"),
        STORAGE_ACCESS_KEY_ID=os.getenv("STORAGE_ACCESS_KEY_ID"),
        STORAGE_SECRET_ACCESS_KEY=os.getenv("STORAGE_SECRET_ACCESS_KEY"),
        STORAGE_PUBLIC_BASE_URL=os.getenv("STORAGE_PUBLIC_BASE_URL"),
        STORAGE_URL_TTL_SECONDS=int(os.getenv("STORAGE_URL_TTL_SECONDS", "604800")),
        SMTP_SERVER=os.getenv("SMTP_SERVER"),
        SMTP_PORT=int(os.getenv("SMTP_PORT", "587")),
        SMTP_USERNAME=os.getenv("SMTP_USERNAME"),
        SMTP_PASSWORD=os.getenv("SMTP_PASSWORD"),
        EMAIL_FROM=os.getenv("EMAIL_FROM", "noreply@contractflow.app"),
        EMAIL_SANDBOX_MODE=_as_bool(os.getenv("EMAIL_SANDBOX_MODE"), default=(resolved_env != "production")),
        JWT_SECRET=os.getenv("JWT_SECRET", "change_me_jwt_secret"),
        JWT_ACCESS_TTL_MINUTES=int(os.getenv("JWT_ACCESS_TTL_MINUTES", "60")),
        API_PREFIX=os.getenv("API_PREFIX", "/api/v1"),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO").upper(),
        LOG_FILE=os.getenv("LOG_FILE", ""),
    )
    _validate_config(config)
    return config


def _validate_database_url(name: str, database_url: str) -> None:
    parsed = urlparse(database_url)
    if parsed.scheme not in {"sqlite", "postgresql", "postgresql+psycopg2"}:
        raise ConfigurationError(f"{name} must use sqlite:// or postgresql:// style URL.")
    if parsed.scheme.startswith("postgresql") and not parsed.hostname:
        raise ConfigurationError(f"PostgreSQL {name} is missing hostname.")


def _validate_config(config: Config) -> None:
    _validate_database_url("DATABASE_URL", config.DATABASE_URL)
    _validate_database_url("SERVICE_DATABASE_URL", config.SERVICE_DATABASE_URL)

    if config.SIGNING_TOKEN_TTL_DAYS < 1:
        raise ConfigurationError("SIGNING_TOKEN_TTL_DAYS must be >= 1.")
    if config.SIGNING_RATE_LIMIT_WINDOW_MINUTES < 1:
        raise ConfigurationError("SIGNING_RATE_LIMIT_WINDOW_MINUTES must be >= 1.")
    if config.SIGNING_RATE_LIMIT_MAX_ATTEMPTS < 1:
        raise ConfigurationError("SIGNING_RATE_LIMIT_MAX_ATTEMPTS must be >= 1.")
    if config.PAYMENT_AMOUNT_TOLERANCE_CENTS < 0:
        raise ConfigurationError("PAYMENT_AMOUNT_TOLERANCE_CENTS must be >= 0.")
    if config.STORAGE_URL_TTL_SECONDS < 1:
        raise ConfigurationError("STORAGE_URL_TTL_SECONDS must be >= 1.")
    if config.JWT_ACCESS_TTL_MINUTES < 1:
        raise ConfigurationError("JWT_ACCESS_TTL_MINUTES must be >= 1.")
    if len(config.CURRENCY) != 3:
        raise ConfigurationError("CURRENCY must be a three-letter ISO code.")
    if config.LOG_LEVEL not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
        raise ConfigurationError("LOG_LEVEL must be one of DEBUG/INFO/WARNING/ERROR/CRITICAL.")

    if config.is_production:
        if config.SIGNING_TOKEN_SECRET in PLACEHOLDER_SECRETS or len(config.SIGNING_TOKEN_SECRET) < 32:
            raise ConfigurationError("Production SIGNING_TOKEN_SECRET must be set to at least 32 characters.")
        if config.JWT_SECRET in PLACEHOLDER_SECRETS:
            raise ConfigurationError("Production JWT_SECRET uses a placeholder value.")
        if not config.STRIPE_WEBHOOK_SECRET:
            raise ConfigurationError("Production STRIPE_WEBHOOK_SECRET is required.")
        if "change_me" in config.DATABASE_URL.lower():
            raise ConfigurationError("Production DATABASE_URL uses placeholder credentials.")


@lru_cache(maxsize=8)
def get_config(env: str | None = None) -> Config:
    """Get validated configuration for the requested environment."""
    return _build_config(env)
