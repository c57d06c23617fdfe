"""
Configuration management using pydantic-settings.

Two layers:
- Settings: process-wide defaults loaded from environment variables and .env
- CacheOptions: the immutable, validated configuration of one Cache instance
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from hcache.exceptions import ConfigurationError

# Index location markers
MEMORY_DB = ":memory:"
TEMP_DB = ""

DEFAULT_TTL = 3600.0
DEFAULT_GRACE = 3600.0
DEFAULT_MAX_INLINE_SIZE = 10 * 1024


class CacheOptions(BaseModel):
    """Validated configuration for a single Cache instance.

    Attributes:
        path: Storage root for file-backed values.
        db_path: Index location. A file path, MEMORY_DB for an in-memory
            index, or TEMP_DB for a private temporary database.
        ttl: Default time-to-live in seconds.
        grace: Seconds after expiry before purge may remove an entry.
        max_inline_size: Values larger than this many bytes go to disk.
        max_entries: LRU limit; None or 0 disables eviction.
    """

    model_config = ConfigDict(frozen=True)

    path: Path
    db_path: str
    ttl: float = Field(default=DEFAULT_TTL, ge=0, allow_inf_nan=False)
    grace: float = Field(default=DEFAULT_GRACE, ge=0, allow_inf_nan=False)
    max_inline_size: int = Field(default=DEFAULT_MAX_INLINE_SIZE, ge=0)
    max_entries: int | None = Field(default=None, ge=0)

    @field_validator("db_path", mode="before")
    @classmethod
    def coerce_db_path(cls, v: Any) -> Any:
        """Accept Path objects for the index location."""
        if isinstance(v, Path):
            return str(v)
        return v

    @property
    def has_persistent_db(self) -> bool:
        """Whether the index lives in a real file on disk."""
        return self.db_path not in (MEMORY_DB, TEMP_DB)

    @property
    def lru_enabled(self) -> bool:
        """Whether LRU eviction and read-time access tracking are active."""
        return self.max_entries is not None and self.max_entries > 0


class Settings(BaseSettings):
    """Process-wide cache defaults loaded from environment variables.

    Optional:
        CACHE_DIR: Base directory (blobs in CACHE_DIR/files, index CACHE_DIR/cache.db)
        CACHE_DB_PATH: Explicit index location (path, ":memory:" or empty)
        CACHE_TTL: Default TTL in seconds
        CACHE_GRACE: Grace period in seconds before purge
        CACHE_MAX_INLINE_SIZE: Inline-size threshold in bytes
        CACHE_MAX_ENTRIES: Maximum entry count for LRU eviction
        LOG_LEVEL: Logging level
        CACHE_LOG_FILE: JSON Lines log file for the CLI
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    CACHE_DIR: Path = Field(default=Path(".cache"), description="Cache base directory")
    CACHE_DB_PATH: str | None = Field(
        default=None,
        description="Index location; unset means CACHE_DIR/cache.db",
    )
    CACHE_TTL: float = Field(
        default=DEFAULT_TTL, ge=0, allow_inf_nan=False, description="Default TTL in seconds"
    )
    CACHE_GRACE: float = Field(
        default=DEFAULT_GRACE,
        ge=0,
        allow_inf_nan=False,
        description="Grace period before purge in seconds",
    )
    CACHE_MAX_INLINE_SIZE: int = Field(
        default=DEFAULT_MAX_INLINE_SIZE, ge=0, description="Inline-size threshold in bytes"
    )
    CACHE_MAX_ENTRIES: int | None = Field(
        default=None, ge=0, description="Maximum entries before LRU eviction"
    )

    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    CACHE_LOG_FILE: Path | None = Field(
        default=None, description="JSON Lines log file written by the CLI"
    )

    @property
    def files_dir(self) -> Path:
        """Default storage root for file-backed values."""
        return self.CACHE_DIR / "files"

    @property
    def db_path(self) -> str:
        """Resolved index location."""
        if self.CACHE_DB_PATH is None:
            return str(self.CACHE_DIR / "cache.db")
        return self.CACHE_DB_PATH

    def cache_options(
        self,
        path: str | Path | None = None,
        db_path: str | Path | None = None,
        ttl: float | None = None,
        grace: float | None = None,
        max_inline_size: int | None = None,
        max_entries: int | None = None,
    ) -> CacheOptions:
        """Build CacheOptions, filling unset arguments from these settings.

        Raises:
            ConfigurationError: If the resulting options are invalid.
        """
        values: dict[str, Any] = {
            "path": path if path is not None else self.files_dir,
            "db_path": db_path if db_path is not None else self.db_path,
            "ttl": ttl if ttl is not None else self.CACHE_TTL,
            "grace": grace if grace is not None else self.CACHE_GRACE,
            "max_inline_size": (
                max_inline_size if max_inline_size is not None else self.CACHE_MAX_INLINE_SIZE
            ),
            "max_entries": max_entries if max_entries is not None else self.CACHE_MAX_ENTRIES,
        }
        try:
            return CacheOptions(**values)
        except PydanticValidationError as e:
            raise ConfigurationError(
                "Invalid cache configuration",
                context={"errors": [err["loc"][0] for err in e.errors()]},
            ) from e

    def display(self) -> dict[str, str | int | float | None]:
        """Return settings for display."""
        return {
            "CACHE_DIR": str(self.CACHE_DIR),
            "CACHE_DB_PATH": self.db_path,
            "CACHE_TTL": self.CACHE_TTL,
            "CACHE_GRACE": self.CACHE_GRACE,
            "CACHE_MAX_INLINE_SIZE": self.CACHE_MAX_INLINE_SIZE,
            "CACHE_MAX_ENTRIES": self.CACHE_MAX_ENTRIES,
            "LOG_LEVEL": self.LOG_LEVEL,
            "CACHE_LOG_FILE": str(self.CACHE_LOG_FILE) if self.CACHE_LOG_FILE else None,
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If settings are invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing)."""
    get_settings.cache_clear()
