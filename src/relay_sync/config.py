"""Configuration settings for relay-sync."""
from functools import lru_cache
from typing import Optional, Tuple

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from relay_sync.models import ConfigurationError


class Settings(BaseSettings):
    """Engine settings loaded from the environment (and ``.env``)."""

    model_config = SettingsConfigDict(
        env_prefix="RELAY_SYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Relay
    relay_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("relay_url", "RELAY_URL", "RELAY_SYNC_RELAY_URL"),
    )
    request_timeout: float = Field(default=10.0, gt=0)

    # Sync
    page_size: int = Field(default=20, ge=1)
    comment_limit: int = Field(default=100, ge=1)
    post_scan_limits: Tuple[int, ...] = (1000, 5000)

    # Errors
    error_retention: int = Field(default=100, ge=1)

    # Client identification tags
    client_name: str = "relay-sync"
    client_version: str = "0.1.0"

    @field_validator("relay_url", mode="before")
    @classmethod
    def _blank_is_missing(cls, v: object) -> object:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    def require_relay_url(self) -> str:
        """Return the relay endpoint or raise :class:`ConfigurationError`."""
        if not self.relay_url:
            raise ConfigurationError("RELAY_URL environment variable is not set")
        return self.relay_url


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
