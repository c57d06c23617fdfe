"""
Hybrid cache engine.

Small values are stored inline in the SQLite index; values larger than
``max_inline_size`` are written to the blob store and the index row keeps
only the filename. Entries expire logically after their TTL and are
physically removed by purge() once the grace period has also elapsed.
With ``max_entries`` set, every write is followed by an LRU eviction pass.

Usage::

    async with Cache(path="./files", db_path="./cache.db", max_entries=1000) as cache:
        await cache.set("user:1", b"...", ttl=60)
        status = await cache.has("user:1")
        value = await cache.get("user:1")
        purged = await cache.purge()
"""

from __future__ import annotations

import asyncio
import math
from pathlib import Path
from types import TracebackType
from typing import Any, Callable, Iterable, Sequence, Union

from hcache.blobs import BlobStore
from hcache.config import CacheOptions, get_settings
from hcache.exceptions import InvalidKeyError, InvalidTTLError, ValidationError
from hcache.index import CacheIndex
from hcache.logging import get_logger, log_context
from hcache.types import CacheEntry, CacheStatus, FilePayload, InlinePayload, epoch_now

logger = get_logger(__name__)

BytesLike = Union[bytes, bytearray, memoryview]
BatchItem = Union[tuple[str, BytesLike], tuple[str, BytesLike, Union[float, None]]]


class Cache:
    """Key-value cache with inline/file storage tiers, TTL, purge and LRU.

    All public operations are serialized per instance, so a batch write or
    a purge is never interleaved with other statements on the shared
    connection.
    """

    def __init__(
        self,
        path: str | Path | None = None,
        db_path: str | Path | None = None,
        ttl: float | None = None,
        grace: float | None = None,
        max_inline_size: int | None = None,
        max_entries: int | None = None,
        *,
        clock: Callable[[], float] = epoch_now,
    ) -> None:
        """Initialize the cache. Unset arguments fall back to Settings.

        Args:
            path: Storage root for file-backed values.
            db_path: Index location (file path, ":memory:" or "").
            ttl: Default time-to-live in seconds.
            grace: Seconds after expiry before purge removes an entry.
            max_inline_size: Values above this many bytes are stored as files.
            max_entries: Enables LRU eviction when positive.
            clock: Returns the current time in epoch seconds.

        Raises:
            ConfigurationError: If the resulting configuration is invalid.
        """
        options = get_settings().cache_options(
            path=path,
            db_path=db_path,
            ttl=ttl,
            grace=grace,
            max_inline_size=max_inline_size,
            max_entries=max_entries,
        )
        self._setup(options, clock)

    @classmethod
    def from_options(
        cls, options: CacheOptions, *, clock: Callable[[], float] = epoch_now
    ) -> Cache:
        """Build a cache from explicit, already validated options."""
        cache = cls.__new__(cls)
        cache._setup(options, clock)
        return cache

    def _setup(self, options: CacheOptions, clock: Callable[[], float]) -> None:
        self.options = options
        self._clock = clock
        self.blobs = BlobStore(options.path)
        self.index = CacheIndex(options.db_path)
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self.options.path

    @property
    def db_path(self) -> str:
        return self.options.db_path

    async def init(self) -> None:
        """Create directories and open the index. Safe to call multiple times."""
        if self.index.is_open:
            return

        self.blobs.init()
        if self.options.has_persistent_db:
            Path(self.options.db_path).parent.mkdir(parents=True, exist_ok=True)

        await self.index.init()
        logger.info(
            "Cache initialized",
            path=str(self.options.path),
            db_path=self.options.db_path or "<temporary>",
            max_entries=self.options.max_entries,
        )

    async def close(self) -> None:
        """Close the index connection."""
        await self.index.close()

    def _require_open(self) -> None:
        if not self.index.is_open:
            raise RuntimeError("Cache not initialized. Call init() first.")

    async def __aenter__(self) -> Cache:
        await self.init()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Validation and tier decision
    # ------------------------------------------------------------------

    @staticmethod
    def _check_key(key: Any) -> str:
        if not isinstance(key, str) or not key:
            raise InvalidKeyError(
                "Cache key must be a non-empty string",
                context={"field": "key", "value": key},
            )
        return key

    @staticmethod
    def _check_value(key: str, value: Any) -> bytes:
        if not isinstance(value, (bytes, bytearray, memoryview)):
            raise ValidationError(
                "Cache value must be bytes-like",
                context={"key": key, "type": type(value).__name__},
            )
        return bytes(value)

    def _expiry(self, ttl: float | None, now: float) -> float:
        """Compute the absolute expiry for a write.

        Raises:
            InvalidTTLError: If the TTL is negative or the expiry is not finite.
        """
        effective = self.options.ttl if ttl is None else ttl
        if isinstance(effective, bool) or not isinstance(effective, (int, float)):
            raise InvalidTTLError("TTL must be a number", context={"ttl": effective})
        if not math.isfinite(effective) or effective < 0:
            raise InvalidTTLError(
                "TTL must be a finite, non-negative number", context={"ttl": effective, "now": now}
            )

        expiry = now + effective
        if not math.isfinite(expiry):
            raise InvalidTTLError(
                "Computed expiry is not finite",
                context={"ttl": effective, "now": now, "expiry": expiry},
            )
        return expiry

    def _make_entry(self, key: str, data: bytes, expiry: float, now: float) -> CacheEntry:
        if len(data) > self.options.max_inline_size:
            payload: InlinePayload | FilePayload = FilePayload(BlobStore.filename_for(key))
        else:
            payload = InlinePayload(data)
        return CacheEntry(key=key, payload=payload, expiry=expiry, atime=now)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def set(self, key: str, value: BytesLike, ttl: float | None = None) -> None:
        """Store a value.

        Args:
            key: Non-empty cache key.
            value: Bytes to store.
            ttl: Time-to-live in seconds; the cache default when None.

        Raises:
            InvalidKeyError: If the key is empty or not a string.
            InvalidTTLError: If the TTL or resulting expiry is invalid.
        """
        key = self._check_key(key)
        data = self._check_value(key, value)

        async with self._lock:
            self._require_open()
            now = self._clock()
            entry = self._make_entry(key, data, self._expiry(ttl, now), now)

            previous = await self.index.fetch_filename(key)

            try:
                # Blob lands before the row that references it
                if entry.filename:
                    await self.blobs.write(entry.filename, data)
                await self.index.upsert(entry)
            except BaseException:
                if entry.filename and previous != entry.filename:
                    await self.blobs.delete(entry.filename)
                raise

            if previous and previous != entry.filename:
                await self.blobs.delete(previous)

            if self.options.lru_enabled:
                await self._evict_lru(now)

    async def set_many(self, entries: Iterable[BatchItem]) -> None:
        """Store many values in one index transaction.

        Args:
            entries: (key, value) or (key, value, ttl) tuples. When a key
                repeats, the last tuple wins.

        Raises:
            InvalidKeyError: If any key is invalid. Nothing is written.
            InvalidTTLError: If any TTL is invalid. Nothing is written.
        """
        items = [self._unpack_item(item) for item in entries]
        if not items:
            return

        async with self._lock:
            self._require_open()
            now = self._clock()
            prepared = [
                (self._make_entry(key, data, self._expiry(ttl, now), now), data)
                for key, data, ttl in items
            ]

            rows = [entry for entry, _ in prepared]
            previous = await self.index.fetch_filenames(entry.key for entry in rows)

            written: set[str] = set()
            try:
                for entry, data in prepared:
                    if entry.filename:
                        await self.blobs.write(entry.filename, data)
                        written.add(entry.key)

                await self.index.upsert_many(rows)
            except BaseException:
                # No rows committed; drop blobs that no existing row references
                for key in written:
                    filename = BlobStore.filename_for(key)
                    if previous.get(key) != filename:
                        await self.blobs.delete(filename)
                raise

            final = {entry.key: entry.filename for entry in rows}
            for key, filename in final.items():
                candidates = {previous.get(key)}
                if key in written:
                    candidates.add(BlobStore.filename_for(key))
                for stale in candidates - {None, filename}:
                    await self.blobs.delete(stale)

            logger.debug("Batch written", count=len(rows), blobs=len(written))

            if self.options.lru_enabled:
                await self._evict_lru(now)

    def _unpack_item(self, item: Sequence[Any]) -> tuple[str, bytes, float | None]:
        if len(item) == 2:
            key, value = item
            ttl = None
        elif len(item) == 3:
            key, value, ttl = item
        else:
            raise ValidationError(
                "Batch items must be (key, value) or (key, value, ttl)",
                context={"length": len(item)},
            )
        key = self._check_key(key)
        return key, self._check_value(key, value), ttl

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, key: str, default: bytes | None = None) -> bytes | None:
        """Retrieve a value, loading it from disk when file-backed.

        Expiry is not checked: a stale entry is still returned until purged.
        Use has() to tell fresh from stale.

        Args:
            key: Cache key.
            default: Returned when the key is absent.

        Returns:
            The stored bytes, or default.
        """
        async with self._lock:
            self._require_open()
            entry = await self.index.fetch(key)
            if entry is None:
                return default

            if self.options.lru_enabled:
                await self.index.touch(key, self._clock())

            if isinstance(entry.payload, InlinePayload):
                return entry.payload.data

            try:
                return await self.blobs.read(entry.payload.filename)
            except FileNotFoundError:
                logger.warning("Blob missing for cache entry", key=key, filename=entry.filename)
                return default

    async def has(self, key: str) -> CacheStatus:
        """Check whether a key is fresh, stale or absent."""
        async with self._lock:
            self._require_open()
            expiry = await self.index.fetch_expiry(key)
            if expiry is None:
                return CacheStatus.MISS
            return CacheStatus.HIT if expiry > self._clock() else CacheStatus.STALE

    # ------------------------------------------------------------------
    # Deletion and maintenance
    # ------------------------------------------------------------------

    async def delete(self, key: str) -> bool:
        """Delete a key and its blob. Deleting an absent key is a no-op.

        Returns:
            True if a row was removed.
        """
        async with self._lock:
            self._require_open()
            filename = await self.index.fetch_filename(key)
            deleted = await self.index.delete(key)
            await self.blobs.delete(filename)
            return deleted

    async def evict_lru(self) -> int:
        """Run an LRU eviction pass now.

        Returns:
            Number of evicted entries (0 when LRU is disabled).
        """
        async with self._lock:
            self._require_open()
            if not self.options.lru_enabled:
                return 0
            return await self._evict_lru(self._clock())

    async def _evict_lru(self, now: float) -> int:
        # Only live rows count toward the limit; stale rows are left to purge()
        max_entries = self.options.max_entries or 0
        live = await self.index.count_live(now)
        if live <= max_entries:
            return 0

        with log_context(cache=str(self.options.path), operation="evict"):
            rows = await self.index.evict_lru(now, live - max_entries)
            for _key, filename in rows:
                await self.blobs.delete(filename)

            logger.info("Evicted least recently used entries", count=len(rows), limit=max_entries)
        return len(rows)

    async def purge(self) -> int:
        """Permanently remove entries expired for longer than the grace period.

        Returns:
            Number of purged entries.
        """
        async with self._lock:
            self._require_open()
            with log_context(cache=str(self.options.path), operation="purge"):
                cutoff = self._clock() - self.options.grace
                rows = await self.index.purge(cutoff)
                for _key, filename in rows:
                    await self.blobs.delete(filename)
                await self.blobs.purge_empty_dirs()

                logger.info("Purged expired entries", count=len(rows), cutoff=cutoff)
                return len(rows)

    async def destroy_database(self) -> bool:
        """Close the index and delete its file, if it is a real file.

        In-memory and temporary databases are left alone. The cache must
        be re-initialized with init() before further use.

        Returns:
            True if a database file was removed.
        """
        async with self._lock:
            if not self.options.has_persistent_db:
                return False

            await self.index.close()
            db_file = Path(self.options.db_path)
            for suffix in ("", "-wal", "-shm"):
                db_file.with_name(db_file.name + suffix).unlink(missing_ok=True)

            logger.info("Destroyed cache database", db_path=str(db_file))
            return True

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    async def count(self) -> int:
        """Total number of entries, stale ones included."""
        async with self._lock:
            self._require_open()
            return await self.index.count()

    async def stats(self) -> dict[str, Any]:
        """Entry counts and inline byte usage."""
        async with self._lock:
            self._require_open()
            return await self.index.stats(self._clock())
