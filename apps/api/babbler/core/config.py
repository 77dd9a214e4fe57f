"""Application configuration for the translation relay."""
from __future__ import annotations

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    app_env: str = Field(default="development")
    log_level: str = Field(default="INFO")
    cors_allow_origins: list[str] = Field(default_factory=list)

    speech_key: str = Field(default="")
    speech_region: str = Field(default="")

    free_minutes_limit: float = Field(default=15.0)
    monitor_tick_seconds: float = Field(default=1.0, gt=0)
    usage_persist_seconds: float = Field(default=60.0, gt=0)

    usage_store: str = Field(default="memory", description="memory, bitstore or database")
    bitstore_enabled: bool = Field(default=False)
    bitstore_base_url: str = Field(default="https://bitstorehome.azurewebsites.net")
    bitstore_bucket_slug: str = Field(default="")
    bitstore_write_key: str = Field(default="")
    database_url: str = Field(default="sqlite+aiosqlite:///./babbler.db")

    static_dir: str = Field(default="wwwroot")

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: object) -> object:
        """Allow comma-separated env values for CORS origins."""

        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @field_validator("free_minutes_limit")
    @classmethod
    def _clamp_limit(cls, value: float) -> float:
        return max(0.0, value)


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""

    return Settings()


settings = get_settings()
