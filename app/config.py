"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated, Iterable, Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .buckets import BUCKETS, BUCKET_KEYS, BucketDefinition
from .utils import slugify


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="ReelDuel", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    tmdb_api_key: str | None = Field(default=None, alias="TMDB_API_KEY")
    tmdb_api_url: HttpUrl = Field(
        default="https://api.themoviedb.org/3", alias="TMDB_API_URL"
    )

    openai_api_key: str | None = Field(default=None, alias="OPENAI_API_KEY")
    openai_api_url: HttpUrl = Field(
        default="https://api.openai.com/v1", alias="OPENAI_API_URL"
    )
    openai_model: str = Field(default="gpt-4o-mini", alias="OPENAI_MODEL")

    catalogue_ttl_hours: int = Field(
        default=24, alias="CATALOGUE_TTL_HOURS", ge=1, le=24 * 30
    )
    catalogue_buckets: Annotated[tuple[str, ...], NoDecode] = Field(
        default=BUCKET_KEYS, alias="CATALOGUE_BUCKETS"
    )
    catalogue_movies_per_bucket: int = Field(
        default=50, alias="CATALOGUE_MOVIES_PER_BUCKET", ge=2, le=500
    )
    display_per_bucket: int = Field(
        default=15, alias="DISPLAY_PER_BUCKET", ge=1, le=100
    )
    display_total: int = Field(default=75, alias="DISPLAY_TOTAL", ge=1, le=500)
    bucket_timeout_seconds: float = Field(
        default=300.0, alias="BUCKET_TIMEOUT_SECONDS", gt=0
    )
    scrape_delay_seconds: float = Field(
        default=0.5, alias="SCRAPE_DELAY_SECONDS", ge=0
    )

    session_ttl_seconds: int = Field(
        default=3_600, alias="SESSION_TTL_SECONDS", ge=60
    )
    session_sweep_interval: int = Field(
        default=300, alias="SESSION_SWEEP_INTERVAL", ge=1
    )
    default_total_rounds: int = Field(
        default=7, alias="DEFAULT_TOTAL_ROUNDS", ge=1, le=20
    )
    late_round_weight: float = Field(
        default=1.5, alias="LATE_ROUND_WEIGHT", ge=1.0, le=10.0
    )
    recommendation_count: int = Field(
        default=5, alias="RECOMMENDATION_COUNT", ge=1, le=20
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./reelduel.db", alias="DATABASE_URL"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("catalogue_buckets", mode="before")
    @classmethod
    def _parse_catalogue_buckets(cls, value: object) -> tuple[str, ...]:
        """Normalise bucket key selections from environment values."""

        if value is None:
            return BUCKET_KEYS
        if isinstance(value, str):
            raw_values = [part.strip() for part in value.split(",")]
        elif isinstance(value, Iterable):
            raw_values = [str(part).strip() for part in value]
        else:
            raise TypeError("CATALOGUE_BUCKETS must be a string or iterable of strings")

        cleaned: list[str] = []
        for entry in raw_values:
            if not entry:
                continue
            slug = slugify(entry)
            if not slug:
                continue
            if slug not in BUCKET_KEYS:
                raise ValueError("Unknown catalogue buckets configured")
            if slug not in cleaned:
                cleaned.append(slug)
        if not cleaned:
            return BUCKET_KEYS
        return tuple(cleaned)

    @property
    def bucket_definitions(self) -> tuple[BucketDefinition, ...]:
        """Return ordered bucket definitions for the selected keys."""

        definition_map = {definition.key: definition for definition in BUCKETS}
        return tuple(definition_map[key] for key in self.catalogue_buckets)

    @property
    def catalogue_ttl_seconds(self) -> int:
        return self.catalogue_ttl_hours * 3_600

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
