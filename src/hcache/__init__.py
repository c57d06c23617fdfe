"""Hybrid key-value cache: small values inline in SQLite, large values on disk."""

from hcache.config import MEMORY_DB, TEMP_DB, CacheOptions, Settings, get_settings
from hcache.engine import Cache
from hcache.exceptions import (
    ConfigurationError,
    CorruptEntryError,
    HCacheError,
    InvalidKeyError,
    InvalidTTLError,
    ValidationError,
)
from hcache.types import CacheEntry, CacheStatus, FilePayload, InlinePayload

__version__ = "0.1.0"

__all__ = [
    "Cache",
    "CacheEntry",
    "CacheOptions",
    "CacheStatus",
    "ConfigurationError",
    "CorruptEntryError",
    "FilePayload",
    "HCacheError",
    "InlinePayload",
    "InvalidKeyError",
    "InvalidTTLError",
    "MEMORY_DB",
    "Settings",
    "TEMP_DB",
    "ValidationError",
    "get_settings",
    "__version__",
]
