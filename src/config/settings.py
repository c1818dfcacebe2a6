# src/config/settings.py — v1
"""Typed configuration loaded from .env via pydantic-settings.

Single source of truth for collection names, cache locations, chat channel
naming, TTLs and logging. Every component receives a Settings instance
explicitly; nothing reads environment variables on its own.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when configuration is internally inconsistent."""


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === Application ===
    app_version: str = "1.0.0"

    # === Document database ===
    active_subscriptions_collection: str = "active_subscriptions"
    cancelled_subscriptions_collection: str = "cancelled_subscriptions"
    profile_collection: str = "profiles"
    posts_collection: str = "posts"
    creator_collection: str = "creators"
    daily_limits_collection: str = "daily_message_limits"
    chat_subscriptions_collection: str = "chat_subscriptions"
    purchases_collection: str = "paid_content_purchases"

    # === Image cache ===
    cache_root: Path = Path("~/.fansync/cache")
    image_cache_dir_name: str = "images"
    manifest_file_name: str = "imageCache.json"
    image_cache_max_age_days: int = 7
    # Oldest entries are evicted down to 80% once exceeded. 0 = unbounded.
    image_cache_max_bytes: int = 100 * 1024 * 1024
    download_timeout_s: float = 30.0
    preload_recent_posts: int = 10

    # === Chat ===
    chat_channel_type: str = "messaging"
    dm_channel_prefix: str = "dm"
    group_channel_prefix: str = "creator"
    chat_connect_retries: int = 0

    # === Messaging quota ===
    daily_free_messages: int = 5

    # === Data cache TTLs (seconds) ===
    data_cache_default_ttl_s: float = 300.0
    creator_profile_ttl_s: float = 600.0
    purchase_status_ttl_s: float = 120.0
    follower_count_ttl_s: float = 300.0

    # === Payments ===
    default_currency: str = "usd"

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "text"
    log_file: Path | None = None
    log_rotation: str = "10MB"
    log_retention: int = 5

    # --- Validators ---

    @field_validator(
        "image_cache_max_age_days",
        "image_cache_max_bytes",
        "chat_connect_retries",
        "daily_free_messages",
        "preload_recent_posts",
    )
    @classmethod
    def validate_non_negative_int(cls, v: int) -> int:  # noqa: N805
        if v < 0:
            raise ValueError("value must be >= 0")
        return v

    @field_validator(
        "data_cache_default_ttl_s",
        "creator_profile_ttl_s",
        "purchase_status_ttl_s",
        "follower_count_ttl_s",
        "download_timeout_s",
    )
    @classmethod
    def validate_non_negative_float(cls, v: float) -> float:  # noqa: N805
        if v < 0:
            raise ValueError("value must be >= 0")
        return v

    @model_validator(mode="after")
    def validate_config_consistency(self) -> Settings:
        """Validate cross-field consistency rules."""
        errors: list[str] = []

        if self.dm_channel_prefix == self.group_channel_prefix:
            errors.append("DM_CHANNEL_PREFIX and GROUP_CHANNEL_PREFIX must differ")

        if self.active_subscriptions_collection == self.cancelled_subscriptions_collection:
            errors.append(
                "ACTIVE_SUBSCRIPTIONS_COLLECTION and CANCELLED_SUBSCRIPTIONS_COLLECTION must differ"
            )

        if not self.image_cache_dir_name.strip():
            errors.append("IMAGE_CACHE_DIR_NAME must not be empty")

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self

    # --- Helpers ---

    @property
    def image_cache_dir(self) -> Path:
        """Directory holding downloaded image files."""
        return Path(self.cache_root).expanduser() / self.image_cache_dir_name

    @property
    def manifest_path(self) -> Path:
        """Location of the persisted cache manifest."""
        return Path(self.cache_root).expanduser() / self.manifest_file_name

    @property
    def image_cache_max_age_s(self) -> float:
        return self.image_cache_max_age_days * 24 * 60 * 60


def load_settings(**overrides: object) -> Settings:
    """Load settings from .env with optional overrides.

    Args:
        **overrides: Field-level overrides (for testing or embedding apps).

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If configuration is internally inconsistent.
    """
    return Settings(**overrides)  # type: ignore[arg-type]
