"""
Pytest configuration and fixtures for hybrid cache tests.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, AsyncGenerator, Awaitable, Callable, Generator
from unittest.mock import patch

import pytest

from hcache.config import Settings, clear_settings_cache
from hcache.engine import Cache


class FakeClock:
    """Controllable epoch clock."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test outputs."""
    return tmp_path


@pytest.fixture
def clock() -> FakeClock:
    """Provide a clock frozen until advanced."""
    return FakeClock()


@pytest.fixture
def mock_env_vars() -> Generator[dict[str, str], None, None]:
    """Provide mock environment variables for testing."""
    env_vars = {
        "CACHE_DIR": ".test_cache",
        "CACHE_TTL": "120",
        "CACHE_GRACE": "60",
        "CACHE_MAX_INLINE_SIZE": "32",
        "LOG_LEVEL": "DEBUG",
    }

    with patch.dict(os.environ, env_vars, clear=False):
        clear_settings_cache()
        yield env_vars


@pytest.fixture
def mock_settings(mock_env_vars: dict[str, str], temp_dir: Path) -> Generator[Settings, None, None]:
    """Provide a Settings instance with CACHE_DIR under temp_dir."""
    with patch.dict(os.environ, {"CACHE_DIR": str(temp_dir / "cache")}):
        clear_settings_cache()
        from hcache.config import get_settings

        yield get_settings()
        clear_settings_cache()


@pytest.fixture
async def make_cache(
    temp_dir: Path, clock: FakeClock
) -> AsyncGenerator[Callable[..., Awaitable[Cache]], None]:
    """Factory for initialized caches under temp_dir, closed after the test.

    Defaults: ttl=60, grace=30, max_inline_size=16, no LRU.
    """
    caches: list[Cache] = []

    async def factory(**overrides: Any) -> Cache:
        options: dict[str, Any] = {
            "path": temp_dir / "files",
            "db_path": temp_dir / "cache.db",
            "ttl": 60,
            "grace": 30,
            "max_inline_size": 16,
        }
        options.update(overrides)
        cache = Cache(**options, clock=clock)
        await cache.init()
        caches.append(cache)
        return cache

    yield factory

    for cache in caches:
        await cache.close()


@pytest.fixture
async def cache(make_cache: Callable[..., Awaitable[Cache]]) -> Cache:
    """Provide an initialized cache with default test options."""
    return await make_cache()


@pytest.fixture
def blob_files() -> Callable[[Path], list[Path]]:
    """Provide a helper listing all regular files under a storage root."""

    def _list(root: Path) -> list[Path]:
        return sorted(p for p in root.rglob("*") if p.is_file())

    return _list


@pytest.fixture(autouse=True)
def reset_package_logger() -> Generator[None, None, None]:
    """Undo setup_logging() so each test starts with a propagating logger."""
    yield
    package_logger = logging.getLogger("hcache")
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()
    package_logger.setLevel(logging.NOTSET)
    package_logger.propagate = True


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Generator[None, None, None]:
    """Automatically reset settings cache before and after each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()
