"""
ShopPatrol CLI - Main entry point.

A terminal-first compliance patrol for e-commerce shop listings with
resumable single-shop and fleet scans.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv
from rich.panel import Panel
from rich.traceback import install as install_rich_traceback

from shoppatrol import __app_name__, __version__

from .context import console, err_console

# Load environment variables from .env (if present)
load_dotenv()

# Install rich traceback for better error display
install_rich_traceback(show_locals=False, width=120)

# Force UTF-8 on Windows; product names are mostly Japanese
if sys.platform == "win32":
    os.environ.setdefault("PYTHONIOENCODING", "utf-8")
    if hasattr(sys.stdout, "reconfigure"):
        sys.stdout.reconfigure(encoding="utf-8", errors="replace")
    if hasattr(sys.stderr, "reconfigure"):
        sys.stderr.reconfigure(encoding="utf-8", errors="replace")

# Create main app
app = typer.Typer(
    name=__app_name__,
    help="Compliance patrol for e-commerce shop listings",
    rich_markup_mode="rich",
    no_args_is_help=True,
    pretty_exceptions_show_locals=False,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold cyan]{__app_name__}[/bold cyan] version [green]{__version__}[/green]")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """ShopPatrol - AI-assisted compliance patrol for shop listings."""
    pass


# =============================================================================
# Import and register subcommand modules
# =============================================================================

from .commands import credentials, db, runs, scan  # noqa: E402

app.add_typer(scan.app, name="scan", help="Run patrol scans")
app.add_typer(runs.app, name="runs", help="View and export patrol runs")
app.add_typer(credentials.app, name="credentials", help="Manage classification credentials")
app.add_typer(db.app, name="db", help="Database operations")


# =============================================================================
# Init Command
# =============================================================================


@app.command()
def init(
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Overwrite existing configuration",
    ),
) -> None:
    """Initialize ShopPatrol database and configuration.

    Creates required directories, a default configuration file,
    and the database schema.
    """
    from rich.progress import Progress, SpinnerColumn, TextColumn

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task("Creating directories...", total=None)

        for dir_path in (Path("configs"), Path("data"), Path("logs")):
            dir_path.mkdir(parents=True, exist_ok=True)

        progress.update(task, description="Creating default configuration...")

        app_config_path = Path("configs/app.yaml")
        if not app_config_path.exists() or force:
            _create_default_app_config(app_config_path)

        progress.update(task, description="Initializing database...")

        from shoppatrol.core.config import ConfigError, load_app_config
        from shoppatrol.persistence.db import init_db

        try:
            config = load_app_config(app_config_path)
        except ConfigError as e:
            err_console.print(f"[red]Configuration error:[/red] {e}")
            raise typer.Exit(1)
        init_db(config.database.url)

        progress.update(task, description="Done!")

    console.print()
    console.print(Panel.fit(
        "[bold green]OK - ShopPatrol initialized successfully![/bold green]\n\n"
        "Created:\n"
        "  - [cyan]configs/app.yaml[/cyan] - Application configuration\n"
        "  - [cyan]data/[/cyan] - Database storage\n"
        "  - [cyan]logs/[/cyan] - Log files\n\n"
        "Next steps:\n"
        "  1. Set [yellow]SHOPPATROL_CREDENTIALS[/yellow] and [yellow]SHOPPATROL_CATALOG_TOKEN[/yellow] (or edit app.yaml)\n"
        "  2. Check keys: [yellow]shoppatrol credentials check[/yellow]\n"
        "  3. Scan a shop: [yellow]shoppatrol scan shop <url>[/yellow]",
        title="[bold]Initialization Complete[/bold]",
        border_style="green",
    ))


def _create_default_app_config(path: Path) -> None:
    """Create default app.yaml configuration."""
    default_config = """\
# ShopPatrol Configuration

data_dir: data

# Database settings
database:
  url: sqlite:///data/shoppatrol.db
  echo: false

# Logging settings
logging:
  level: INFO
  file: logs/shoppatrol.log
  json_format: true
  rich_console: true

# Patrol session settings
session:
  # Comma-separated; SHOPPATROL_CREDENTIALS overrides
  credentials: "${SHOPPATROL_CREDENTIALS:-}"
  catalog_auth_token: "${SHOPPATROL_CATALOG_TOKEN:-}"
  classifier_url: http://localhost:3000/api/analyze
  batch_size_cap: 30
  batch_multiplier: 4
  retry_limit: 3
  request_timeout_ms: 60000
  max_pages: 20
  fleet_max_pages: 50
  checkpoint_every_pages: 5
  store_all_items: false
"""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(default_config, encoding="utf-8")


# =============================================================================
# Status Command
# =============================================================================


@app.command()
def status(
    limit: int = typer.Option(10, "--limit", "-n", help="Number of runs to show"),
) -> None:
    """Show ShopPatrol status and recent runs."""
    from shoppatrol.cli.commands.runs import runs_table
    from shoppatrol.cli.context import load_config, open_store
    from shoppatrol.core.records import RunStatus

    config = load_config()

    if config.database.url.startswith("sqlite:///"):
        db_path = Path(config.database.url.replace("sqlite:///", ""))
        if not db_path.exists():
            err_console.print("[red]ShopPatrol not initialized. Run:[/red] shoppatrol init")
            raise typer.Exit(1)

    store = open_store(config)

    console.print()
    console.print("[bold]ShopPatrol Status[/bold]")
    console.print()
    console.print(f"Credentials configured: [cyan]{len(config.session.credentials)}[/cyan]")
    console.print(f"Batch size: [cyan]{config.session.batch_size}[/cyan]")
    console.print()

    runs = store.list_runs(limit=limit)
    if not runs:
        console.print("[dim]No runs yet. Start one with:[/dim] shoppatrol scan shop <url>")
        return

    console.print(runs_table(runs, title="Recent Runs"))

    paused = [r for r in runs if r.status in (RunStatus.PAUSED, RunStatus.PROCESSING)]
    if paused:
        console.print()
        console.print(f"[yellow]{len(paused)} run(s) can be resumed with[/yellow] shoppatrol scan resume <id>")


# =============================================================================
# Entry Point
# =============================================================================


def run() -> None:
    """Run the CLI application."""
    app()


if __name__ == "__main__":
    run()
