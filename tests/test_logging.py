"""
Tests for structured logging.
"""

from __future__ import annotations

import json
import logging
import sys

import pytest

from hcache.config import MEMORY_DB
from hcache.engine import Cache
from hcache.logging import (
    ContextRichHandler,
    JSONFormatter,
    current_context,
    get_logger,
    log_context,
    setup_logging,
)


class TestLogContext:
    """Test context variables."""

    def test_context_is_scoped(self) -> None:
        """Test that log_context sets and restores values."""
        assert current_context() == {}

        with log_context(cache="/tmp/files", operation="purge"):
            assert current_context() == {"cache": "/tmp/files", "operation": "purge"}

            with log_context(operation="evict"):
                assert current_context() == {"cache": "/tmp/files", "operation": "evict"}

            assert current_context()["operation"] == "purge"

        assert current_context() == {}


class TestLibraryLogging:
    """Test behaviour when the package is used without setup_logging()."""

    @pytest.mark.asyncio
    async def test_records_reach_root_handlers(self, temp_dir, caplog) -> None:
        """Test that engine records propagate to the application's handlers."""
        with caplog.at_level(logging.INFO):
            async with Cache(path=temp_dir / "files", db_path=MEMORY_DB) as cache:
                await cache.set("k", b"v")

        assert "Cache initialized" in caplog.messages
        record = next(r for r in caplog.records if r.getMessage() == "Cache initialized")
        assert record.name == "hcache.engine"
        assert record.extra["db_path"] == MEMORY_DB

    def test_no_handlers_installed_on_import(self) -> None:
        """Test that getting a logger does not configure output."""
        get_logger("hcache.blobs")

        package_logger = logging.getLogger("hcache")
        assert package_logger.handlers == []
        assert package_logger.propagate is True


class TestSetupLogging:
    """Test handlers installed by setup_logging()."""

    def test_names_are_namespaced(self) -> None:
        """Test that loggers live under the hcache namespace."""
        assert get_logger("hcache.engine").name == "hcache.engine"
        assert get_logger("hcache").name == "hcache"
        assert get_logger("tools").name == "hcache.tools"
        assert get_logger("hcachex").name == "hcache.hcachex"

    def test_console_handler_replaces_previous(self) -> None:
        """Test that repeated setup leaves a single console handler."""
        setup_logging(log_level="WARNING")
        setup_logging(log_level="DEBUG")

        package_logger = logging.getLogger("hcache")
        assert len(package_logger.handlers) == 1
        assert isinstance(package_logger.handlers[0], ContextRichHandler)
        assert package_logger.level == logging.DEBUG
        assert package_logger.propagate is False

    def test_json_file_output(self, temp_dir) -> None:
        """Test that the file handler writes JSON lines with context and extras."""
        log_file = temp_dir / "logs" / "cache.jsonl"
        setup_logging(log_level="DEBUG", log_file=log_file, console_output=False)

        logger = get_logger("hcache.test")
        with log_context(cache="files", operation="purge"):
            logger.info("Purged expired entries", count=3)

        for handler in logging.getLogger("hcache").handlers:
            handler.flush()

        record = json.loads(log_file.read_text().strip().splitlines()[-1])
        assert record["message"] == "Purged expired entries"
        assert record["level"] == "INFO"
        assert record["operation"] == "purge"
        assert record["extra"]["count"] == 3
        assert record["extra"]["cache"] == "files"

    def test_formatter_includes_exception(self) -> None:
        """Test that exceptions are rendered into the JSON record."""
        try:
            raise ValueError("boom")
        except ValueError:
            record = logging.LogRecord(
                "hcache.x", logging.ERROR, __file__, 1, "failed", (), sys.exc_info()
            )

        payload = json.loads(JSONFormatter().format(record))
        assert payload["message"] == "failed"
        assert "ValueError: boom" in payload["exception"]
