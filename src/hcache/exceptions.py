"""
Custom exception hierarchy for the hybrid cache.

All exceptions inherit from HCacheError, which provides optional context
for structured error handling and logging.

Errors raised by SQLite itself (sqlite3.Error) are not wrapped: a broken
or unreachable index is surfaced to the caller as-is.
"""

from __future__ import annotations

from typing import Any


class HCacheError(Exception):
    """Base exception for all hybrid cache errors.

    Attributes:
        message: Human-readable error message.
        context: Optional structured context for logging/debugging.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx_str})"
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, context={self.context!r})"


class ConfigurationError(HCacheError):
    """Raised when cache configuration is invalid.

    Examples:
        - Negative or non-finite default TTL or grace period
        - Negative inline-size threshold or max entry count
    """

    pass


class ValidationError(HCacheError):
    """Raised when caller input fails validation.

    Context should include:
        - field: The field that failed validation
        - value: The invalid value
        - expected: Description of what was expected
    """

    pass


class InvalidKeyError(ValidationError):
    """Raised when a cache key is empty or not a string."""

    pass


class InvalidTTLError(ValidationError):
    """Raised when a TTL is negative or non-finite, or yields a non-finite expiry.

    Context should include:
        - ttl: The effective TTL
        - now: The timestamp the expiry was computed from
        - expiry: The computed expiry, when available
    """

    pass


class CorruptEntryError(HCacheError):
    """Raised when an index row holds neither an inline value nor a filename.

    Context should include:
        - key: The key of the corrupt row
    """

    pass
