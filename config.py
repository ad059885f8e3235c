"""
=============================================================================
CONFIG.PY — Application Settings
=============================================================================
Every tunable value of the API lives here and is read ONCE from the
environment into a Settings object.

Nothing in the project reads os.environ directly: create_app() receives a
Settings instance (or builds one with Settings.from_env()) and hands the
relevant values to the database, the AI client and the weather service.

In DEVELOPMENT: no variables needed, SQLite file + AI/weather disabled.
In PRODUCTION: DATABASE_URL, SECRET_KEY, OPENAI_API_KEY, WEATHER_API_KEY.
"""

import os
from typing import Optional

from pydantic import BaseModel, Field


DEFAULT_DATABASE_URL = "sqlite:///./liferpg.db"
DEV_SECRET_KEY = "liferpg-dev-secret-key-change-in-production"


def normalize_database_url(url: str) -> str:
    """
    Hosting providers hand out "postgres://" URLs, SQLAlchemy wants
    "postgresql://", and we drive PostgreSQL with psycopg (v3).
    """
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


class Settings(BaseModel):
    """Runtime configuration, built from the environment or passed in by tests"""

    # ── Database ──
    database_url: str = DEFAULT_DATABASE_URL

    # ── Auth ──
    secret_key: str = DEV_SECRET_KEY
    access_token_expire_days: int = Field(default=30, ge=1)

    # ── AI (OpenAI) ──
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    ai_timeout_seconds: float = Field(default=30.0, gt=0)

    # ── Weather (OpenWeatherMap) ──
    weather_api_key: Optional[str] = None
    weather_cache_ttl_seconds: int = Field(default=300, ge=0)
    weather_timeout_seconds: float = Field(default=10.0, gt=0)

    # ── HTTP ──
    cors_origins: list[str] = ["*"]
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """Reads the environment. Empty variables count as unset."""
        env = {k: v for k, v in os.environ.items() if v != ""}

        values = {}
        if "DATABASE_URL" in env:
            values["database_url"] = normalize_database_url(env["DATABASE_URL"])
        if "SECRET_KEY" in env:
            values["secret_key"] = env["SECRET_KEY"]
        if "ACCESS_TOKEN_EXPIRE_DAYS" in env:
            values["access_token_expire_days"] = int(env["ACCESS_TOKEN_EXPIRE_DAYS"])
        if "OPENAI_API_KEY" in env:
            values["openai_api_key"] = env["OPENAI_API_KEY"]
        if "OPENAI_MODEL" in env:
            values["openai_model"] = env["OPENAI_MODEL"]
        if "AI_TIMEOUT_SECONDS" in env:
            values["ai_timeout_seconds"] = float(env["AI_TIMEOUT_SECONDS"])
        if "WEATHER_API_KEY" in env:
            values["weather_api_key"] = env["WEATHER_API_KEY"]
        if "WEATHER_CACHE_TTL_SECONDS" in env:
            values["weather_cache_ttl_seconds"] = int(env["WEATHER_CACHE_TTL_SECONDS"])
        if "WEATHER_TIMEOUT_SECONDS" in env:
            values["weather_timeout_seconds"] = float(env["WEATHER_TIMEOUT_SECONDS"])
        if "CORS_ORIGINS" in env:
            values["cors_origins"] = [o.strip() for o in env["CORS_ORIGINS"].split(",") if o.strip()]
        if "LOG_LEVEL" in env:
            values["log_level"] = env["LOG_LEVEL"].upper()

        return cls(**values)
