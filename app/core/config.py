# app/core/config.py
from __future__ import annotations

"""
# StreamVault — Centralized Configuration (Pydantic v2)

Single `settings` object with strongly-typed, environment-driven config.

## Goals
- Safe defaults for local/dev; explicit where prod needs secrets.
- Robust URL normalization and CSV → list helpers.
- Optional external systems (Stripe/S3) so imports never crash in dev.
- Streaming policy knobs (signed-URL TTL, strike threshold, purchase window)
  live here so every service reads the same numbers.

## Usage
    from app.core.config import settings
"""

import logging
from typing import List, Optional, Literal

from dotenv import load_dotenv
from pydantic import Field, SecretStr, AnyHttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

log = logging.getLogger(__name__)
load_dotenv()  # harmless in prod; convenient in dev


# ─────────────────────────────────────────────────────────────
# Small helpers
# ─────────────────────────────────────────────────────────────
def _split_csv(v: str | None) -> list[str]:
    """Split a comma-separated string into a trimmed list (empty-safe)."""
    if not v:
        return []
    return [s.strip() for s in str(v).split(",") if s and s.strip()]


def _normalize_url_like(v: str | None, *, require_scheme: bool = True) -> str:
    """Normalize to a string URL without trailing slash."""
    s = (v or "").strip()
    if not s:
        return ""
    if require_scheme and not (s.startswith("http://") or s.startswith("https://")):
        s = "https://" + s
    return s.rstrip("/")


# ─────────────────────────────────────────────────────────────
# Settings
# ─────────────────────────────────────────────────────────────
class Settings(BaseSettings):
    """
    Global application settings sourced from environment.

    Security:
        - Explicit secrets for JWT and payment webhooks.
        - Signed media URLs are short-lived; TTLs are bounded here.

    Notes:
        - `DATABASE_URL_OVERRIDE` wins over the composed Postgres DSN
          (handy for sqlite in local tooling).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # don't crash on unknown keys
    )

    # ── App meta ──────────────────────────────────────────────
    PROJECT_NAME: str = "StreamVault API"
    VERSION: str = "1.0.0"
    API_V1_STR: str = "/api/v1"
    ENV: Literal["development", "staging", "production"] = "development"
    ENABLE_DOCS: bool = True

    # ── Security / JWT ────────────────────────────────────────
    JWT_SECRET_KEY: SecretStr = Field(...)
    JWT_ALGORITHM: Literal["HS256", "HS384", "HS512"] = "HS256"
    JWT_ISSUER: Optional[str] = None
    JWT_AUDIENCE: Optional[str] = None
    ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(60, ge=5, le=24 * 60)

    # Admin operations (X-Admin-Key); unset → role-based only
    ADMIN_API_KEY: Optional[SecretStr] = None

    # ── Redis / Rate limiting ─────────────────────────────────
    REDIS_URL: Optional[str] = None
    DEFAULT_RATE_LIMIT: Optional[str] = None  # e.g., "200/minute"
    RATELIMIT_STORAGE_URI: Optional[str] = None  # fallback to REDIS_URL if unset

    # ── Database (PostgreSQL) ─────────────────────────────────
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: SecretStr = Field(...)
    POSTGRES_DB: str = "streamvault"
    DATABASE_URL_OVERRIDE: Optional[str] = None

    # ── CORS ─────────────────────────────────────────────────
    BACKEND_CORS_ORIGINS: List[AnyHttpUrl] = Field(
        default_factory=lambda: ["http://localhost:3000", "http://localhost:5173"]
    )
    FRONTEND_ORIGINS: Optional[str] = None  # CSV

    # ── Payments (Stripe) ─────────────────────────────────────
    STRIPE_SECRET_KEY: Optional[SecretStr] = None
    STRIPE_WEBHOOK_SECRET: Optional[SecretStr] = None
    PAYMENT_PROVIDER_TIMEOUT_SECONDS: int = Field(10, ge=1, le=60)
    PAYMENT_PROVIDER_MAX_RETRIES: int = Field(2, ge=0, le=5)
    DEFAULT_CURRENCY: str = "usd"

    # ── Storage / signing ─────────────────────────────────────
    STORAGE_SIGNER: Literal["s3", "hmac"] = "s3"
    AWS_ACCESS_KEY_ID: Optional[str] = None
    AWS_SECRET_ACCESS_KEY: Optional[SecretStr] = None
    AWS_REGION: str = "us-east-1"
    AWS_BUCKET_NAME: Optional[str] = None
    AWS_S3_ENDPOINT_URL: Optional[str] = None
    STREAM_URL_SIGNING_SECRET: Optional[SecretStr] = None
    STREAM_BASE_URL: str = "/media"

    # ── Streaming access policy ───────────────────────────────
    SIGNED_URL_TTL_SECONDS: int = Field(60, ge=10, le=15 * 60)
    SIGNED_URL_REFRESH_RATIO: float = Field(0.75, gt=0.0, lt=1.0)
    ACCESS_TOKEN_TTL_MINUTES: int = Field(30, ge=1, le=24 * 60)
    RECENT_PURCHASE_WINDOW_MINUTES: int = Field(30, ge=0, le=24 * 60)
    STRIKE_THRESHOLD: int = Field(3, ge=2, le=10)

    # ── Validators / normalizers ──────────────────────────────
    @field_validator("BACKEND_CORS_ORIGINS", mode="before")
    @classmethod
    def _assemble_cors_origins(cls, v: str | List[str]):
        if isinstance(v, str):
            return _split_csv(v)
        return v

    @field_validator("FRONTEND_ORIGINS", mode="before")
    @classmethod
    def _normalize_frontend_csv(cls, v):
        return None if v is None else ",".join(_split_csv(str(v)))

    @field_validator("STREAM_BASE_URL", mode="before")
    @classmethod
    def _normalize_stream_base(cls, v: str | None) -> str:
        """Relative bases ('/media') stay relative; hosts get a scheme."""
        s = (v or "/media").strip()
        if s.startswith("/"):
            return s.rstrip("/") or "/"
        return _normalize_url_like(s)

    @field_validator("DEFAULT_CURRENCY", mode="before")
    @classmethod
    def _lower_currency(cls, v: str | None) -> str:
        return (v or "usd").strip().lower()

    # ── Derived / convenience properties ─────────────────────
    @property
    def is_production(self) -> bool:
        return self.ENV.lower() == "production"

    # Database DSNs (stringified for simplicity)
    @property
    def DATABASE_URL(self) -> str:
        """Sync DSN."""
        return (
            f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD.get_secret_value()}"
            f"@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def ASYNC_DATABASE_URL(self) -> str:
        """Async SQLAlchemy DSN."""
        if self.DATABASE_URL_OVERRIDE:
            return self.DATABASE_URL_OVERRIDE
        return self.DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://")

    @property
    def frontend_origins_list(self) -> List[str]:
        """
        Preferred CORS allowlist:
        Priority → FRONTEND_ORIGINS (CSV) → BACKEND_CORS_ORIGINS (typed list).
        """
        if self.FRONTEND_ORIGINS:
            return _split_csv(self.FRONTEND_ORIGINS)
        return [str(u).rstrip("/") for u in (self.BACKEND_CORS_ORIGINS or [])]


# Singleton instance
settings = Settings()
