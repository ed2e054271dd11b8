"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="Stremboxd", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3001, alias="PORT")
    public_url: HttpUrl = Field(
        default="http://localhost:3001", alias="PUBLIC_URL"
    )

    letterboxd_api_url: HttpUrl = Field(
        default="https://api.letterboxd.com/api/v0", alias="LETTERBOXD_API_URL"
    )
    letterboxd_client_id: str | None = Field(
        default=None, alias="LETTERBOXD_CLIENT_ID"
    )
    letterboxd_client_secret: str | None = Field(
        default=None, alias="LETTERBOXD_CLIENT_SECRET"
    )
    letterboxd_user_agent: str = Field(
        default="StremioLetterboxdAddon/1.0.0", alias="LETTERBOXD_USER_AGENT"
    )
    top_rated_list_id: str | None = Field(default=None, alias="TOP_RATED_LIST_ID")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/stremboxd.db", alias="DATABASE_URL"
    )

    cache_max_size: int = Field(default=1_000, alias="CACHE_MAX_SIZE", ge=1)
    cache_film_ttl: int = Field(default=3_600, alias="CACHE_FILM_TTL", ge=1)
    cache_watchlist_ttl: int = Field(default=300, alias="CACHE_WATCHLIST_TTL", ge=1)
    session_refresh_margin: int = Field(
        default=60, alias="SESSION_REFRESH_MARGIN", ge=0
    )
    catalog_page_size: int = Field(
        default=100, alias="CATALOG_PAGE_SIZE", ge=1, le=1_000
    )

    cors_origin: str = Field(default="*", alias="CORS_ORIGIN")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", alias="LOG_LEVEL"
    )
    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalise_log_level(cls, value: object) -> object:
        """Accept lower-case level names from the environment."""

        if isinstance(value, str):
            upper = value.strip().upper()
            if upper == "WARN":
                return "WARNING"
            if upper == "FATAL":
                return "CRITICAL"
            return upper
        return value

    @field_validator("top_rated_list_id", mode="before")
    @classmethod
    def _strip_blank(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def public_base_url(self) -> str:
        """Return the public URL without a trailing slash."""

        return str(self.public_url).rstrip("/")

    @property
    def cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origin.split(",") if origin.strip()]

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
