"""
Centralized settings for tempstash.

All fields can be set via ``TEMPSTASH_*`` environment variables (e.g.
``TEMPSTASH_URL=sqlite:///stash.db``) or a ``.env`` file. Explicit keyword
arguments always win over the environment.

Examples:
    >>> from tempstash.core.settings import StashSettings
    >>> settings = StashSettings(url="sqlite:///stash.db", workers=2)
    >>> settings.pool_size
    2

Tags:
    settings, configuration, pydantic, environment, tempstash
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StashSettings(BaseSettings):
    """Connection, retry and dispatcher configuration."""

    model_config = SettingsConfigDict(
        env_prefix="TEMPSTASH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Backend ──────────────────────────────────────────────────
    url: str = Field(default="", description="SQLAlchemy database URL")
    pool_size: int = Field(default=2, ge=1, description="Idle connections kept in the pool")
    max_overflow: int = Field(default=3, ge=0, description="Connections opened beyond pool_size")
    pool_recycle: int = Field(default=300, ge=1, description="Connection lifetime ceiling (seconds)")
    connect_timeout: float = Field(default=5.0, gt=0, description="Liveness ping timeout (seconds)")
    schema_timeout: float = Field(default=10.0, gt=0, description="Schema setup timeout (seconds)")

    # ── Retry ────────────────────────────────────────────────────
    retry_attempts: int = Field(default=3, ge=1)
    retry_base_delay: float = Field(default=0.5, ge=0)

    # ── Async dispatcher ─────────────────────────────────────────
    queue_size: int = Field(default=1024, ge=1, description="Pending async writes before drops")
    workers: int = Field(default=4, ge=1, description="Threads draining the async queue")

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="auto", description="auto | json | console")

    @field_validator("log_level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level {value!r}")
        return level

    @field_validator("log_format")
    @classmethod
    def _check_format(cls, value: str) -> str:
        fmt = value.lower()
        if fmt not in {"auto", "json", "console"}:
            raise ValueError(f"log_format must be auto, json or console, got {value!r}")
        return fmt

    @property
    def json_logs(self) -> bool | None:
        """``configure_logging`` argument derived from ``log_format``."""
        if self.log_format == "auto":
            return None
        return self.log_format == "json"

    @property
    def max_connections(self) -> int:
        return self.pool_size + self.max_overflow


@lru_cache(maxsize=1)
def get_settings() -> StashSettings:
    """Return the cached environment-derived settings."""
    return StashSettings()


def clear_settings_cache() -> None:
    get_settings.cache_clear()


__all__ = ["StashSettings", "get_settings", "clear_settings_cache"]
