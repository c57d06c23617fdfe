"""
File-backed blob storage for values too large to keep inline.

Blobs are named by the SHA-256 digest of their cache key and sharded by
the first two hex characters:

    <root>/ab/ab12cd...

The same key always maps to the same file, so rewriting a key overwrites
its blob in place. Deletions are best-effort: the index row is the source
of truth and a blob that is already gone is not an error.
"""

from __future__ import annotations

import asyncio
import hashlib
import os
import tempfile
from pathlib import Path

from hcache.logging import get_logger

logger = get_logger(__name__)


class BlobStore:
    """Byte-addressable file storage under a cache-local directory."""

    def __init__(self, root: str | Path) -> None:
        """Initialize blob store.

        Args:
            root: Storage root directory. Created by init().
        """
        self.root = Path(root)

    def init(self) -> None:
        """Create the storage root if it does not exist."""
        self.root.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def filename_for(key: str) -> str:
        """Derive the relative blob filename for a key."""
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return f"{digest[:2]}/{digest}"

    def path_for(self, filename: str) -> Path:
        """Absolute path of a blob."""
        return self.root / filename

    async def write(self, filename: str, data: bytes) -> None:
        """Write a blob atomically, replacing any previous content."""
        await asyncio.to_thread(self._write_sync, self.path_for(filename), data)
        logger.debug("Stored blob", filename=filename, size=len(data))

    @staticmethod
    def _write_sync(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    async def read(self, filename: str) -> bytes:
        """Read a blob.

        Raises:
            FileNotFoundError: If the blob does not exist.
        """
        return await asyncio.to_thread(self.path_for(filename).read_bytes)

    async def delete(self, filename: str | None) -> bool:
        """Best-effort delete of a blob.

        Returns:
            True if a file was removed, False if there was nothing to remove
            or the removal failed.
        """
        if not filename:
            return False
        try:
            await asyncio.to_thread(self.path_for(filename).unlink)
        except OSError as e:
            logger.debug("Blob delete skipped", filename=filename, error=str(e))
            return False
        return True

    async def purge_empty_dirs(self) -> int:
        """Remove empty directories below the root, keeping the root itself.

        Returns:
            Number of directories removed.
        """
        return await asyncio.to_thread(self._purge_empty_dirs_sync)

    def _purge_empty_dirs_sync(self) -> int:
        if not self.root.is_dir():
            return 0

        removed = 0
        # Bottom-up so parents are visited after their children are gone
        for dirpath, _dirnames, _filenames in os.walk(self.root, topdown=False):
            path = Path(dirpath)
            if path == self.root:
                continue
            try:
                path.rmdir()
            except OSError:
                # Not empty, or removed concurrently
                continue
            removed += 1
        return removed
