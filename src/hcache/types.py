"""
Core types for the hybrid cache.

- CacheStatus: result of a freshness check
- InlinePayload / FilePayload: tagged variant for where an entry's bytes live
- CacheEntry: one index row
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Union

from hcache.exceptions import CorruptEntryError


def epoch_now() -> float:
    """Get current time as seconds since the epoch."""
    return time.time()


class CacheStatus(str, Enum):
    """Freshness of a key."""

    HIT = "hit"  # present and not yet expired
    STALE = "stale"  # present, expired, not yet purged
    MISS = "miss"  # absent


@dataclass(frozen=True)
class InlinePayload:
    """Value bytes stored directly in the index row."""

    data: bytes


@dataclass(frozen=True)
class FilePayload:
    """Reference to a blob under the storage root."""

    filename: str


Payload = Union[InlinePayload, FilePayload]


@dataclass(frozen=True)
class CacheEntry:
    """A single cache row.

    Attributes:
        key: Primary key.
        payload: Inline bytes or a blob reference, never both.
        expiry: Absolute epoch seconds after which the entry is stale.
        atime: Epoch seconds of the last read or write.
    """

    key: str
    payload: Payload
    expiry: float
    atime: float

    @property
    def filename(self) -> str | None:
        """Blob filename if file-backed, else None."""
        if isinstance(self.payload, FilePayload):
            return self.payload.filename
        return None

    def to_row(self) -> tuple[str, bytes | None, str | None, float, float]:
        """Convert to (key, value, filename, expiry, atime) column values."""
        if isinstance(self.payload, FilePayload):
            return (self.key, None, self.payload.filename, self.expiry, self.atime)
        return (self.key, self.payload.data, None, self.expiry, self.atime)

    @classmethod
    def from_row(
        cls,
        key: str,
        value: bytes | None,
        filename: str | None,
        expiry: float,
        atime: float,
    ) -> CacheEntry:
        """Build an entry from column values.

        Raises:
            CorruptEntryError: If the row has neither value nor filename.
        """
        payload: Payload
        if filename is not None:
            payload = FilePayload(filename)
        elif value is not None:
            payload = InlinePayload(bytes(value))
        else:
            raise CorruptEntryError("Cache row has no value and no filename", context={"key": key})
        return cls(key=key, payload=payload, expiry=expiry, atime=atime)
