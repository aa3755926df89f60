"""
Shared wiring for CLI commands: config, logging, storage, clients, Ctrl-C.
"""

from __future__ import annotations

import asyncio
import signal
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

import typer
from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)

from shoppatrol.core.backends import CatalogFetcher, CredentialPool, RiskClassifier
from shoppatrol.core.config import AppConfig, ConfigError, load_app_config
from shoppatrol.core.logging import setup_logging
from shoppatrol.core.orchestrator import CancellationToken, ProgressSnapshot
from shoppatrol.persistence.gateway import SqlSessionStore

console = Console()
err_console = Console(stderr=True)


def load_config(path: Path | None = None, *, runnable: bool = False) -> AppConfig:
    """Load app config and set up logging, exiting on config errors."""
    try:
        config = load_app_config(path)
        if runnable:
            config.session.require_runnable()
    except ConfigError as e:
        err_console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(1)

    config.ensure_directories()
    setup_logging(
        level=config.logging.level,
        log_file=config.logging.file,
        json_format=config.logging.json_format,
        rich_console=config.logging.rich_console,
    )
    return config


def open_store(config: AppConfig) -> SqlSessionStore:
    return SqlSessionStore.from_url(
        config.database.url,
        echo=config.database.echo,
        pool_size=config.database.pool_size,
    )


@asynccontextmanager
async def patrol_clients(
    config: AppConfig,
) -> AsyncGenerator[tuple[CatalogFetcher, RiskClassifier, CredentialPool], None]:
    """Catalog fetcher, classifier and credential pool, closed on exit."""
    session = config.session
    pool = CredentialPool(session.credentials)
    fetcher = CatalogFetcher.from_config(session)
    classifier = RiskClassifier.from_config(session)
    try:
        yield fetcher, classifier, pool
    finally:
        await fetcher.close()
        await classifier.close()


def install_pause_handler(token: CancellationToken) -> None:
    """First Ctrl-C asks for a cooperative pause; the run stops at the next batch."""

    def request_pause() -> None:
        if not token.cancelled:
            err_console.print("\n[yellow]Pausing after the current batch...[/yellow]")
        token.cancel("interrupted")

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, request_pause)
    except NotImplementedError:
        # Windows event loops have no signal handler support
        signal.signal(signal.SIGINT, lambda signum, frame: request_pause())


def remove_pause_handler() -> None:
    loop = asyncio.get_running_loop()
    try:
        loop.remove_signal_handler(signal.SIGINT)
    except NotImplementedError:
        signal.signal(signal.SIGINT, signal.default_int_handler)


class ProgressView:
    """Renders progress snapshots with rich."""

    def __init__(self, progress: Progress) -> None:
        self.progress = progress
        self._tasks: dict[str | None, int] = {}

    @classmethod
    def create(cls) -> "ProgressView":
        progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TextColumn("{task.fields[eta]}"),
            TimeElapsedColumn(),
            console=console,
        )
        return cls(progress)

    def __enter__(self) -> "ProgressView":
        self.progress.start()
        return self

    def __exit__(self, *exc: object) -> None:
        self.progress.stop()

    def __call__(self, snapshot: ProgressSnapshot) -> None:
        key = snapshot.target
        if key not in self._tasks:
            prefix = ""
            if snapshot.target_index is not None and snapshot.targets_total:
                prefix = f"[{snapshot.target_index + 1}/{snapshot.targets_total}] "
            self._tasks[key] = self.progress.add_task(
                f"[cyan]{prefix}{key or 'patrol'}[/cyan]",
                total=snapshot.total or None,
                eta="",
            )
        eta = ""
        if snapshot.eta_seconds is not None:
            minutes, seconds = divmod(int(snapshot.eta_seconds), 60)
            eta = f"ETA {minutes}m{seconds:02d}s"
        self.progress.update(
            self._tasks[key],
            completed=snapshot.processed,
            total=snapshot.total or None,
            eta=eta,
        )
