"""
SQLite index of cache entries.

One table keyed by cache key, with secondary indexes on expiry (purge)
and access time (LRU eviction):

    cache(key TEXT PRIMARY KEY, value BLOB, filename TEXT,
          expiry REAL NOT NULL, atime REAL NOT NULL)

The connection is opened in autocommit mode; multi-statement operations
use explicit BEGIN IMMEDIATE transactions via transaction().
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Iterable, Sequence

import aiosqlite

from hcache.logging import get_logger
from hcache.types import CacheEntry

logger = get_logger(__name__)

PRAGMAS = (
    "PRAGMA journal_mode = WAL",
    "PRAGMA synchronous = NORMAL",
    "PRAGMA temp_store = MEMORY",
    # Negative cache_size is in KiB
    "PRAGMA cache_size = -20000",
)

CREATE_TABLE = """
    CREATE TABLE IF NOT EXISTS cache (
        key TEXT PRIMARY KEY,
        value BLOB,
        filename TEXT,
        expiry REAL NOT NULL,
        atime REAL NOT NULL
    )
"""

UPSERT = """
    INSERT INTO cache (key, value, filename, expiry, atime)
    VALUES (?, ?, ?, ?, ?)
    ON CONFLICT(key) DO UPDATE SET
        value = excluded.value,
        filename = excluded.filename,
        expiry = excluded.expiry,
        atime = excluded.atime
"""

# Stay well below SQLITE_MAX_VARIABLE_NUMBER on old builds
_IN_CHUNK = 500


class CacheIndex:
    """Async SQLite-backed index of cache rows."""

    def __init__(self, location: str) -> None:
        """Initialize the index.

        Args:
            location: Database path, ":memory:", or "" for a temporary database.
        """
        self.location = location
        self._db: aiosqlite.Connection | None = None

    @property
    def is_open(self) -> bool:
        return self._db is not None

    async def init(self) -> None:
        """Open the connection, apply pragmas and create or migrate the schema.

        Safe to call multiple times.
        """
        if self._db is not None:
            return

        db = await aiosqlite.connect(self.location, isolation_level=None)
        db.row_factory = aiosqlite.Row
        self._db = db

        try:
            for pragma in PRAGMAS:
                await db.execute(pragma)

            await db.execute(CREATE_TABLE)
            await self._migrate()
            await db.execute("CREATE INDEX IF NOT EXISTS cache_expiry ON cache(expiry)")
            await db.execute("CREATE INDEX IF NOT EXISTS cache_atime ON cache(atime)")
        except BaseException:
            await self.close()
            raise

    async def _migrate(self) -> None:
        """Bring tables written by older versions up to the current schema.

        Older stores keep the absolute expiry (epoch seconds) in a column
        named ``ttl`` indexed as ``cache_ttl``, and the oldest ones have no
        ``atime`` column.
        """
        db = self._require()
        async with db.execute("PRAGMA table_info(cache)") as cursor:
            columns = {row["name"] for row in await cursor.fetchall()}

        steps: list[str] = []
        if "expiry" not in columns and "ttl" in columns:
            steps += [
                "DROP INDEX IF EXISTS cache_ttl",
                "ALTER TABLE cache RENAME COLUMN ttl TO expiry",
            ]
        if "atime" not in columns:
            steps.append("ALTER TABLE cache ADD COLUMN atime REAL NOT NULL DEFAULT 0")
        if not steps:
            return

        async with self.transaction() as tx:
            for statement in steps:
                await tx.execute(statement)
        logger.info("Migrated cache table", steps=len(steps), location=self.location)

    async def close(self) -> None:
        """Close the database connection."""
        if self._db:
            await self._db.close()
            self._db = None

    def _require(self) -> aiosqlite.Connection:
        if not self._db:
            raise RuntimeError("CacheIndex not initialized. Call init() first.")
        return self._db

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Run statements in one write transaction, rolling back on error."""
        db = self._require()
        await db.execute("BEGIN IMMEDIATE")
        try:
            yield db
        except BaseException:
            await db.execute("ROLLBACK")
            raise
        await db.execute("COMMIT")

    async def upsert(self, entry: CacheEntry) -> None:
        """Insert or replace one row."""
        db = self._require()
        await db.execute(UPSERT, entry.to_row())

    async def upsert_many(self, entries: Sequence[CacheEntry]) -> None:
        """Insert or replace many rows atomically."""
        async with self.transaction() as db:
            await db.executemany(UPSERT, [entry.to_row() for entry in entries])

    async def fetch(self, key: str) -> CacheEntry | None:
        """Point lookup of a full row."""
        db = self._require()
        async with db.execute(
            "SELECT key, value, filename, expiry, atime FROM cache WHERE key = ?", (key,)
        ) as cursor:
            row = await cursor.fetchone()

        if not row:
            return None

        return CacheEntry.from_row(
            row["key"], row["value"], row["filename"], row["expiry"], row["atime"]
        )

    async def fetch_expiry(self, key: str) -> float | None:
        db = self._require()
        async with db.execute("SELECT expiry FROM cache WHERE key = ?", (key,)) as cursor:
            row = await cursor.fetchone()
        return row["expiry"] if row else None

    async def fetch_filename(self, key: str) -> str | None:
        db = self._require()
        async with db.execute("SELECT filename FROM cache WHERE key = ?", (key,)) as cursor:
            row = await cursor.fetchone()
        return row["filename"] if row else None

    async def fetch_filenames(self, keys: Iterable[str]) -> dict[str, str]:
        """Map each given key that has a file-backed row to its filename."""
        db = self._require()
        unique = list(dict.fromkeys(keys))
        found: dict[str, str] = {}

        for start in range(0, len(unique), _IN_CHUNK):
            chunk = unique[start : start + _IN_CHUNK]
            placeholders = ", ".join("?" for _ in chunk)
            async with db.execute(
                f"SELECT key, filename FROM cache "
                f"WHERE filename IS NOT NULL AND key IN ({placeholders})",
                chunk,
            ) as cursor:
                for row in await cursor.fetchall():
                    found[row["key"]] = row["filename"]

        return found

    async def touch(self, key: str, atime: float) -> None:
        """Record an access."""
        db = self._require()
        await db.execute("UPDATE cache SET atime = ? WHERE key = ?", (atime, key))

    async def delete(self, key: str) -> bool:
        """Delete one row. Returns whether a row existed."""
        db = self._require()
        cursor = await db.execute("DELETE FROM cache WHERE key = ?", (key,))
        deleted = cursor.rowcount > 0
        await cursor.close()
        return deleted

    async def count(self) -> int:
        """Total number of rows, stale ones included."""
        db = self._require()
        async with db.execute("SELECT COUNT(*) FROM cache") as cursor:
            row = await cursor.fetchone()
            return row[0] if row else 0

    async def count_live(self, now: float) -> int:
        """Number of rows that have not expired."""
        db = self._require()
        async with db.execute("SELECT COUNT(*) FROM cache WHERE expiry > ?", (now,)) as cursor:
            row = await cursor.fetchone()
            return row[0] if row else 0

    async def evict_lru(self, now: float, limit: int) -> list[tuple[str, str | None]]:
        """Delete the `limit` least recently used live rows.

        Ties on atime are broken by rowid, i.e. first insertion order.

        Returns:
            (key, filename) of each deleted row.
        """
        async with self.transaction() as db:
            async with db.execute(
                "SELECT key, filename FROM cache WHERE expiry > ? "
                "ORDER BY atime ASC, rowid ASC LIMIT ?",
                (now, limit),
            ) as cursor:
                rows = [(row["key"], row["filename"]) for row in await cursor.fetchall()]

            await db.executemany("DELETE FROM cache WHERE key = ?", [(key,) for key, _ in rows])

        return rows

    async def purge(self, cutoff: float) -> list[tuple[str, str | None]]:
        """Delete every row whose expiry is strictly before `cutoff`.

        Returns:
            (key, filename) of each deleted row.
        """
        async with self.transaction() as db:
            async with db.execute(
                "SELECT key, filename FROM cache WHERE expiry < ?", (cutoff,)
            ) as cursor:
                rows = [(row["key"], row["filename"]) for row in await cursor.fetchall()]

            await db.execute("DELETE FROM cache WHERE expiry < ?", (cutoff,))

        return rows

    async def stats(self, now: float) -> dict[str, Any]:
        """Summary counts over the whole table."""
        db = self._require()
        async with db.execute(
            """
            SELECT
                COUNT(*),
                COALESCE(SUM(expiry > ?), 0),
                COALESCE(SUM(filename IS NOT NULL), 0),
                COALESCE(SUM(LENGTH(value)), 0)
            FROM cache
            """,
            (now,),
        ) as cursor:
            row = await cursor.fetchone()

        total, live, file_backed, inline_bytes = tuple(row) if row else (0, 0, 0, 0)
        return {
            "total": total,
            "live": live,
            "stale": total - live,
            "file_backed": file_backed,
            "inline_bytes": inline_bytes,
        }
