"""
CLI for the hybrid cache.

Operates on the cache configured through environment variables
(CACHE_DIR, CACHE_DB_PATH, CACHE_TTL, ...).

Commands:
    hcache set KEY --value TEXT | --file PATH [--ttl SECONDS]
    hcache get KEY [--output PATH]
    hcache has KEY
    hcache delete KEY
    hcache purge - Remove entries expired beyond the grace period
    hcache evict - Run an LRU eviction pass
    hcache stats - Show entry counts
    hcache destroy - Delete the index database file
    hcache bench - Benchmark writes and reads on a throwaway cache
    hcache config - Show current configuration
    hcache version - Print version
"""

from __future__ import annotations

import asyncio
import sys
import tempfile
import time
from pathlib import Path
from typing import Annotated, Awaitable, Callable, Optional, TypeVar

import orjson
import typer
from pydantic import ValidationError as PydanticValidationError
from rich.console import Console
from rich.table import Table

from hcache import __version__
from hcache.config import DEFAULT_MAX_INLINE_SIZE, Settings, clear_settings_cache, get_settings
from hcache.engine import Cache
from hcache.exceptions import HCacheError
from hcache.logging import setup_logging
from hcache.types import CacheStatus

T = TypeVar("T")

app = typer.Typer(
    name="hcache",
    help="Hybrid key-value cache - inline SQLite values, large values on disk",
    no_args_is_help=True,
)

console = Console()
error_console = Console(stderr=True)

_STATUS_STYLE = {
    CacheStatus.HIT: "green",
    CacheStatus.STALE: "yellow",
    CacheStatus.MISS: "red",
}


def _load_settings() -> Settings:
    """Load settings, exiting with a message if they are invalid."""
    try:
        clear_settings_cache()
        settings = get_settings()
    except PydanticValidationError as e:
        error_console.print(f"[red]Error:[/red] Configuration is invalid.\n{e}")
        raise typer.Exit(1)

    setup_logging(log_level=settings.LOG_LEVEL, log_file=settings.CACHE_LOG_FILE)
    return settings


def _run(action: Callable[[Cache], Awaitable[T]]) -> T:
    """Open the configured cache, run an action on it and close it."""
    _load_settings()

    async def runner() -> T:
        async with Cache() as cache:
            return await action(cache)

    try:
        return asyncio.run(runner())
    except HCacheError as e:
        error_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)


@app.command("set")
def set_value(
    key: Annotated[str, typer.Argument(help="Cache key")],
    value: Annotated[
        Optional[str],
        typer.Option("--value", "-v", help="Value as UTF-8 text"),
    ] = None,
    file: Annotated[
        Optional[Path],
        typer.Option("--file", "-f", help="Read the value from a file", exists=True, dir_okay=False),
    ] = None,
    ttl: Annotated[
        Optional[float],
        typer.Option("--ttl", "-t", help="Time-to-live in seconds"),
    ] = None,
) -> None:
    """Store a value."""
    if (value is None) == (file is None):
        error_console.print("[red]Error:[/red] Provide exactly one of --value or --file.")
        raise typer.Exit(1)

    data = file.read_bytes() if file is not None else value.encode("utf-8")

    async def action(cache: Cache) -> None:
        await cache.set(key, data, ttl=ttl)

    _run(action)
    console.print(f"[green]Stored[/green] {key} ({len(data)} bytes)")


@app.command("get")
def get_value(
    key: Annotated[str, typer.Argument(help="Cache key")],
    output: Annotated[
        Optional[Path],
        typer.Option("--output", "-o", help="Write the value to a file instead of stdout"),
    ] = None,
) -> None:
    """Print a value (stale values included)."""

    async def action(cache: Cache) -> bytes | None:
        return await cache.get(key)

    data = _run(action)
    if data is None:
        error_console.print(f"[red]Not found:[/red] {key}")
        raise typer.Exit(1)

    if output is not None:
        output.write_bytes(data)
        console.print(f"[green]Wrote[/green] {len(data)} bytes to {output}")
        return

    sys.stdout.buffer.write(data)
    sys.stdout.buffer.flush()


@app.command()
def has(key: Annotated[str, typer.Argument(help="Cache key")]) -> None:
    """Show whether a key is a hit, stale or a miss."""

    async def action(cache: Cache) -> CacheStatus:
        return await cache.has(key)

    status = _run(action)
    console.print(f"[{_STATUS_STYLE[status]}]{status.value}[/{_STATUS_STYLE[status]}]")


@app.command()
def delete(key: Annotated[str, typer.Argument(help="Cache key")]) -> None:
    """Delete a key and its file, if any."""

    async def action(cache: Cache) -> bool:
        return await cache.delete(key)

    if _run(action):
        console.print(f"[green]Deleted[/green] {key}")
    else:
        console.print(f"[dim]Not present:[/dim] {key}")


@app.command()
def purge() -> None:
    """Remove entries that expired more than the grace period ago."""

    async def action(cache: Cache) -> int:
        return await cache.purge()

    count = _run(action)
    console.print(f"Purged [bold]{count}[/bold] entries")


@app.command()
def evict() -> None:
    """Evict least recently used entries above CACHE_MAX_ENTRIES."""

    async def action(cache: Cache) -> int:
        return await cache.evict_lru()

    count = _run(action)
    console.print(f"Evicted [bold]{count}[/bold] entries")


@app.command()
def stats(
    as_json: Annotated[
        bool,
        typer.Option("--json", help="Print machine-readable JSON"),
    ] = False,
) -> None:
    """Show entry counts."""

    async def action(cache: Cache) -> dict:
        return await cache.stats()

    data = _run(action)

    if as_json:
        typer.echo(orjson.dumps(data, option=orjson.OPT_INDENT_2).decode("utf-8"))
        return

    table = Table(title="Cache Statistics", show_header=True)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green", justify="right")
    for name, value in data.items():
        table.add_row(name, str(value))
    console.print(table)


@app.command()
def destroy(
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Do not ask for confirmation"),
    ] = False,
) -> None:
    """Delete the index database file. Blob files are left in place."""
    settings = _load_settings()
    if not yes and not typer.confirm(f"Destroy {settings.db_path}?"):
        raise typer.Exit(1)

    async def action(cache: Cache) -> bool:
        return await cache.destroy_database()

    if _run(action):
        console.print(f"[green]Destroyed[/green] {settings.db_path}")
    else:
        console.print("[yellow]Index is not persistent; nothing to destroy.[/yellow]")


def _bench_data(size: int) -> list[bytes]:
    """Zero-filled values of 1, 2 and 5 x 10^i bytes for i < size."""
    return [bytes(base * 10**exp) for exp in range(size) for base in (1, 2, 5)]


async def _bench(cache: Cache, batch: int, size: int) -> list[tuple[str, int, float]]:
    values = _bench_data(size)
    results: list[tuple[str, int, float]] = []

    def record(name: str, start: float, count: int) -> None:
        elapsed_us = (time.perf_counter() - start) * 1_000_000
        results.append((name, count, elapsed_us / count if count else 0.0))

    keys = [f"key-{j}" for j in range(len(values))]
    start = time.perf_counter()
    for _ in range(batch):
        for key, value in zip(keys, values):
            await cache.set(key, value)
    record("individual writes", start, batch * len(values))

    start = time.perf_counter()
    for _ in range(batch):
        for key in keys:
            await cache.get(key)
    record("reads", start, batch * len(keys))

    bulk_keys = [f"key-bulk-{j}" for j in range(len(values))]
    entries = [(key, value) for _ in range(batch) for key, value in zip(bulk_keys, values)]
    start = time.perf_counter()
    await cache.set_many(entries)
    record("bulk writes (set_many)", start, len(entries))

    start = time.perf_counter()
    for _ in range(batch):
        for key in bulk_keys:
            await cache.get(key)
    record("bulk reads", start, batch * len(bulk_keys))

    return results


@app.command()
def bench(
    batch: Annotated[int, typer.Option("--batch", "-b", min=1, help="Repetitions per value")] = 100,
    size: Annotated[
        int,
        typer.Option("--size", "-s", min=1, help="Largest value is 5 x 10^(size-1) bytes"),
    ] = 5,
) -> None:
    """Benchmark individual and bulk writes and reads on a temporary cache.

    Runs with the default inline threshold and LRU disabled, whatever
    CACHE_MAX_INLINE_SIZE and CACHE_MAX_ENTRIES say.
    """
    _load_settings()
    console.print(
        f"> values from 1B to {5 * 10 ** (size - 1)}B, {batch} repetitions"
    )

    async def runner() -> list[tuple[str, int, float]]:
        with tempfile.TemporaryDirectory(prefix="hcache-bench-") as tmp:
            cache = Cache(
                path=Path(tmp) / "files",
                db_path=Path(tmp) / "bench.db",
                max_inline_size=DEFAULT_MAX_INLINE_SIZE,
                max_entries=0,
            )
            async with cache:
                return await _bench(cache, batch, size)

    try:
        results = asyncio.run(runner())
    except HCacheError as e:
        error_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    table = Table(title="Benchmark", show_header=True)
    table.add_column("Phase", style="cyan")
    table.add_column("Records", justify="right")
    table.add_column("μs/record", style="green", justify="right")
    for name, count, per_record in results:
        table.add_row(name, str(count), f"{per_record:.2f}")
    console.print(table)


@app.command()
def config() -> None:
    """Show current configuration."""
    settings = _load_settings()

    table = Table(title="Settings", show_header=True)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    for key, value in settings.display().items():
        display_value = str(value) if value is not None else "[dim]not set[/dim]"
        table.add_row(key, display_value)

    console.print(table)


@app.command()
def version() -> None:
    """Print the version number."""
    console.print(f"hybrid-cache version {__version__}")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
