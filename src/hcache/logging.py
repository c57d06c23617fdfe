"""
Structured logging for the hybrid cache.

Library code only obtains loggers through get_logger(); records propagate
to whatever handlers the host application configured. The CLI calls
setup_logging() to install its own handlers:

- ContextRichHandler: console output prefixed with the cache and operation
- JSONFormatter: JSON Lines for CACHE_LOG_FILE

Scoped context (cache label, current operation) is set with log_context()
and attached to every record as structured extras.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Generator, MutableMapping

import orjson
from rich.console import Console
from rich.logging import RichHandler
from rich.text import Text

PACKAGE_LOGGER = "hcache"

_context_var: ContextVar[dict[str, str]] = ContextVar("hcache_log_context", default={})

# Keyword arguments the stdlib logging calls understand themselves
_LOGGING_KWARGS = frozenset({"exc_info", "stack_info", "stacklevel"})


def current_context() -> dict[str, str]:
    """Get a copy of the active logging context."""
    return dict(_context_var.get())


@contextmanager
def log_context(
    cache: str | None = None,
    operation: str | None = None,
) -> Generator[None, None, None]:
    """Scope a cache label and/or operation name to the enclosed code.

    Unset arguments keep the value of any enclosing context.
    """
    fields = current_context()
    if cache is not None:
        fields["cache"] = cache
    if operation is not None:
        fields["operation"] = operation

    token = _context_var.set(fields)
    try:
        yield
    finally:
        _context_var.reset(token)


class JSONFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **current_context(),
        }
        extra = getattr(record, "extra", None)
        if extra:
            payload["extra"] = extra
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return orjson.dumps(payload, default=str).decode("utf-8")


class ContextRichHandler(RichHandler):
    """Rich handler showing the storage root name and operation after the level."""

    def get_level_text(self, record: logging.LogRecord) -> Text:
        level_text = super().get_level_text(record)
        context = current_context()

        prefix: list[str] = []
        if "cache" in context:
            label = context["cache"]
            prefix.append(f"[dim]{Path(label).name or label}[/dim]")
        if "operation" in context:
            prefix.append(f"[cyan]{context['operation']}[/cyan]")

        if not prefix:
            return level_text
        return Text.from_markup(f"{level_text} {' '.join(prefix)}")


class ContextLogger(logging.LoggerAdapter):
    """Adapter turning keyword arguments and the active context into extras.

    ``logger.info("Purged", count=3)`` stores ``{"count": 3, ...context}``
    on the record as ``record.extra``.
    """

    def __init__(self, logger: logging.Logger) -> None:
        super().__init__(logger, {})

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        fields: dict[str, Any] = dict(kwargs.pop("extra", None) or {})
        fields.update(current_context())
        for key in [k for k in kwargs if k not in _LOGGING_KWARGS]:
            fields[key] = kwargs.pop(key)

        kwargs["extra"] = {"extra": fields}
        return msg, kwargs


_console: Console | None = None


def get_console() -> Console:
    """Get the shared stderr console used for log output."""
    global _console
    if _console is None:
        _console = Console(stderr=True)
    return _console


def setup_logging(
    log_level: str = "INFO",
    log_file: Path | None = None,
    console_output: bool = True,
) -> None:
    """Install handlers on the package logger. Meant for application entry points.

    Replaces handlers from any earlier call and stops propagation, so the
    package's records are written exactly once.

    Args:
        log_level: Level for the package logger and the console handler.
        log_file: JSON Lines log file. Parent directories are created.
        console_output: Whether to log to stderr through rich.
    """
    level = logging.getLevelName(log_level.upper())
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.setLevel(level)

    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setFormatter(JSONFormatter())
        package_logger.addHandler(file_handler)

    if console_output:
        console_handler = ContextRichHandler(
            console=get_console(),
            show_path=False,
            rich_tracebacks=True,
            markup=True,
        )
        console_handler.setLevel(level)
        package_logger.addHandler(console_handler)

    package_logger.propagate = False

    for noisy in ("aiosqlite", "asyncio"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> ContextLogger:
    """Get a context-aware logger namespaced under ``hcache``.

    No handlers are installed here; see setup_logging().
    """
    if name != PACKAGE_LOGGER and not name.startswith(f"{PACKAGE_LOGGER}."):
        name = f"{PACKAGE_LOGGER}.{name}"
    return ContextLogger(logging.getLogger(name))
