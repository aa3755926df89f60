"""
Run viewing, export and watch commands.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import typer
from rich.table import Table

from shoppatrol.cli.context import console, err_console, load_config, open_store

app = typer.Typer(
    help="View and export patrol runs",
    no_args_is_help=True,
)

STATUS_STYLES = {
    "PROCESSING": "cyan",
    "PAUSED": "yellow",
    "COMPLETED": "green",
    "ERROR": "red",
}

RISK_STYLES = {
    "CRITICAL": "bold red",
    "HIGH": "red",
    "MEDIUM": "yellow",
    "ERROR": "magenta",
}


def _parse_enum(enum_cls, value: Optional[str]):
    if value is None:
        return None
    try:
        return enum_cls(value.upper())
    except ValueError:
        choices = ", ".join(m.value for m in enum_cls)
        err_console.print(f"[red]Invalid value:[/red] {value} (choose from {choices})")
        raise typer.Exit(1)


def runs_table(runs, title: str = "Patrol Runs") -> Table:
    table = Table(title=f"{title} ({len(runs)} shown)", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Mode", justify="center")
    table.add_column("Label", max_width=40)
    table.add_column("Status", justify="center")
    table.add_column("Targets", justify="right")
    table.add_column("Items", justify="right")
    table.add_column("High", justify="right")
    table.add_column("Critical", justify="right")
    table.add_column("Created", justify="right")

    for run in runs:
        style = STATUS_STYLES.get(run.status.value, "white")
        done = len(run.completed_targets)
        table.add_row(
            run.id,
            run.mode.value,
            run.label,
            f"[{style}]{run.status.value}[/{style}]",
            f"{done}/{len(run.targets)}",
            str(run.summary.total),
            str(run.summary.high_risk_count),
            str(run.summary.critical_count),
            run.created_at.strftime("%Y-%m-%d %H:%M") if run.created_at else "-",
        )
    return table


@app.command("list")
def list_runs(
    mode: Optional[str] = typer.Option(None, "--mode", "-m", help="SINGLE or FLEET"),
    status: Optional[str] = typer.Option(None, "--status", "-s", help="Filter by status"),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum runs to show"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c"),
) -> None:
    """List recent runs, newest first."""
    from shoppatrol.core.records import PatrolMode, RunStatus

    config = load_config(config_path)
    store = open_store(config)
    runs = store.list_runs(
        mode=_parse_enum(PatrolMode, mode),
        status=_parse_enum(RunStatus, status),
        limit=limit,
    )
    if not runs:
        console.print("[dim]No runs yet. Start one with:[/dim] shoppatrol scan shop <url>")
        return
    console.print(runs_table(runs))


@app.command("show")
def show_run(
    run_id: str = typer.Argument(..., help="Run ID"),
    risky: bool = typer.Option(False, "--risky", "-r", help="Only show risk-bearing items"),
    limit: int = typer.Option(50, "--limit", "-n", help="Maximum items to show"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c"),
) -> None:
    """Show a run's targets and items."""
    config = load_config(config_path)
    store = open_store(config)
    run = store.get(run_id)
    if run is None:
        err_console.print(f"[red]Run not found:[/red] {run_id}")
        raise typer.Exit(1)

    console.print(runs_table([run], title="Run"))

    if run.targets:
        targets = Table(title="Targets", show_header=True, header_style="bold magenta")
        targets.add_column("#", justify="right", style="dim")
        targets.add_column("URL", max_width=60)
        targets.add_column("Status", justify="center")
        targets.add_column("Items", justify="right")
        targets.add_column("Error", max_width=40)
        for i, target in enumerate(run.targets):
            style = STATUS_STYLES.get(target.status.value, "white")
            targets.add_row(
                str(i),
                target.url,
                f"[{style}]{target.status.value}[/{style}]",
                str(target.item_count),
                target.error_message or "",
            )
        console.print(targets)

    items = [i for i in run.items if i.is_risk_bearing] if risky else run.items
    if not items:
        console.print("[dim]No stored items.[/dim]")
        return

    table = Table(title=f"Items ({min(len(items), limit)} of {len(items)})", show_header=True, header_style="bold magenta")
    table.add_column("Risk", justify="center")
    table.add_column("Name", max_width=50)
    table.add_column("Reason", max_width=60)
    for item in items[:limit]:
        style = RISK_STYLES.get(item.risk_level.value, "dim")
        table.add_row(
            f"[{style}]{item.risk_level.value}[/{style}]",
            item.product.name,
            item.assessment.reason,
        )
    console.print(table)


@app.command("export")
def export_run(
    run_id: str = typer.Argument(..., help="Run ID"),
    output: Path = typer.Argument(..., help="Output CSV path"),
    risky: bool = typer.Option(False, "--risky", "-r", help="Only export risk-bearing items"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c"),
) -> None:
    """Export a run's stored items to CSV.

    Examples:
        shoppatrol runs export 3f2a... out/report.csv --risky
    """
    from shoppatrol.core.report import write_csv

    config = load_config(config_path)
    store = open_store(config)
    run = store.get(run_id)
    if run is None:
        err_console.print(f"[red]Run not found:[/red] {run_id}")
        raise typer.Exit(1)

    items = [i for i in run.items if i.is_risk_bearing] if risky else run.items
    count = write_csv(items, output)
    console.print(f"[green]OK[/green] Exported {count} rows to {output}")


@app.command("watch")
def watch_runs(
    mode: Optional[str] = typer.Option(None, "--mode", "-m", help="SINGLE or FLEET"),
    interval: float = typer.Option(2.0, "--interval", "-i", help="Seconds between polls"),
    limit: int = typer.Option(10, "--limit", "-n", help="Maximum runs to show"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c"),
) -> None:
    """Live view of recent runs; Ctrl-C to exit."""
    from rich.live import Live

    from shoppatrol.core.records import PatrolMode

    config = load_config(config_path)
    store = open_store(config)

    async def _watch() -> None:
        with Live(runs_table([]), console=console, refresh_per_second=4) as live:
            async for runs in store.watch(
                mode=_parse_enum(PatrolMode, mode),
                limit=limit,
                interval=interval,
            ):
                live.update(runs_table(runs))

    try:
        asyncio.run(_watch())
    except KeyboardInterrupt:
        pass
