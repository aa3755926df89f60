"""
Scan commands for running single-shop and fleet patrols.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import typer
from rich.table import Table

from shoppatrol.cli.context import (
    ProgressView,
    console,
    err_console,
    install_pause_handler,
    load_config,
    open_store,
    patrol_clients,
    remove_pause_handler,
)

app = typer.Typer(
    help="Run patrol scans",
    no_args_is_help=True,
)

ConfigOption = typer.Option(
    None,
    "--config",
    "-c",
    help="Path to app.yaml (default: configs/app.yaml)",
)


def _show_summary(run) -> None:
    """Show summary table for a run."""
    table = Table(title=f"Run {run.id or '(not stored)'}", show_header=True, header_style="bold magenta")
    table.add_column("Status", justify="center")
    table.add_column("Items", justify="right")
    table.add_column("High risk", justify="right", style="yellow")
    table.add_column("Critical", justify="right", style="red")

    table.add_row(
        run.status.value,
        str(run.summary.total),
        str(run.summary.high_risk_count),
        str(run.summary.critical_count),
    )
    console.print(table)


def _export(items, output: Path) -> None:
    from shoppatrol.core.report import write_csv

    count = write_csv(items, output)
    console.print(f"[green]OK[/green] Exported {count} rows to {output}")


# =============================================================================
# Single target
# =============================================================================


@app.command("shop")
def scan_shop(
    url: str = typer.Argument(..., help="Shop URL or shop code"),
    export: Optional[Path] = typer.Option(
        None,
        "--export",
        "-o",
        help="Write risk-bearing items to this CSV when done",
    ),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """Scan one shop. Ctrl-C pauses; resume with `scan resume <run_id>`.

    Examples:
        shoppatrol scan shop https://www.rakuten.co.jp/shop-a/
        shoppatrol scan shop shop-a --export out/shop-a.csv
    """
    from shoppatrol.core.backends import FetchError
    from shoppatrol.core.orchestrator import (
        CancellationToken,
        ControllerState,
        SinglePatrolController,
    )

    config = load_config(config_path, runnable=True)
    store = open_store(config)

    async def _run() -> SinglePatrolController:
        async with patrol_clients(config) as (fetcher, classifier, pool):
            with ProgressView.create() as view:
                controller = SinglePatrolController(
                    config.session,
                    fetcher=fetcher,
                    classifier=classifier,
                    pool=pool,
                    store=store,
                    on_progress=view,
                )
                total = await controller.inspect(url)
                console.print(f"[bold]{url}[/bold]: {total} items")

                token = CancellationToken()
                install_pause_handler(token)
                try:
                    await controller.start(token)
                finally:
                    remove_pause_handler()
                return controller

    try:
        controller = asyncio.run(_run())
    except FetchError as e:
        err_console.print(f"[red]Could not read catalog:[/red] {e}")
        raise typer.Exit(1)

    run = controller.snapshot()
    _show_summary(run)

    if controller.persistence_degraded:
        err_console.print("[yellow]Storage was unavailable for part of the run; results may be incomplete[/yellow]")

    if controller.state == ControllerState.PAUSED:
        console.print(f"Paused. Resume with: [yellow]shoppatrol scan resume {controller.run_id}[/yellow]")
    elif controller.state == ControllerState.IDLE:
        err_console.print(f"[red]Scan failed:[/red] {controller.last_error}")
        raise typer.Exit(1)

    if export:
        _export(controller.results.risk_bearing(), export)


# =============================================================================
# Fleet
# =============================================================================


@app.command("fleet")
def scan_fleet(
    urls_file: Path = typer.Argument(
        ...,
        help="Text file with one shop URL per line",
        exists=True,
        dir_okay=False,
    ),
    label: Optional[str] = typer.Option(None, "--label", "-l", help="Run label"),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """Scan every shop listed in a file under one resumable run.

    Examples:
        shoppatrol scan fleet shops.txt --label "October sweep"
    """
    from shoppatrol.core.config import ConfigError
    from shoppatrol.core.orchestrator import FleetPatrolController

    config = load_config(config_path, runnable=True)
    store = open_store(config)
    text = urls_file.read_text(encoding="utf-8")

    async def _create() -> FleetPatrolController:
        async with patrol_clients(config) as (fetcher, classifier, pool):
            controller = FleetPatrolController.create(
                text,
                config=config.session,
                fetcher=fetcher,
                classifier=classifier,
                pool=pool,
                store=store,
                label=label,
            )
            console.print(f"[bold]Fleet run {controller.run_id}[/bold]: {len(controller.targets)} shops")
            await _drive_fleet(controller)
            return controller

    try:
        controller = asyncio.run(_create())
    except ConfigError as e:
        err_console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    _finish_fleet(controller)


async def _drive_fleet(controller) -> None:
    from shoppatrol.core.orchestrator import CancellationToken

    with ProgressView.create() as view:
        controller.on_progress = view
        token = CancellationToken()
        install_pause_handler(token)
        try:
            await controller.run(token)
        finally:
            remove_pause_handler()


def _finish_fleet(controller) -> None:
    from shoppatrol.core.records import RunStatus, TargetStatus

    _show_summary(controller.run_record)

    failed = [(i, t) for i, t in enumerate(controller.targets) if t.status == TargetStatus.ERROR]
    for index, target in failed:
        err_console.print(f"[red]Target {index} failed:[/red] {target.url} ({target.error_message})")
    if failed:
        console.print(f"Re-queue with: [yellow]shoppatrol scan retry-target {controller.run_id} <index>[/yellow]")

    if controller.persistence_degraded:
        err_console.print("[yellow]Storage was unavailable for part of the run; results may be incomplete[/yellow]")

    if controller.status == RunStatus.PAUSED:
        console.print(f"Paused. Resume with: [yellow]shoppatrol scan resume {controller.run_id}[/yellow]")


# =============================================================================
# Resume and retries
# =============================================================================


@app.command("resume")
def resume_run(
    run_id: str = typer.Argument(..., help="Run ID"),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """Resume a paused or interrupted run, single or fleet."""
    from shoppatrol.core.orchestrator import (
        CancellationToken,
        ControllerState,
        ControllerStateError,
        FleetPatrolController,
        SinglePatrolController,
    )
    from shoppatrol.core.records import PatrolMode

    config = load_config(config_path, runnable=True)
    store = open_store(config)

    run = store.get(run_id, include_items=False)
    if run is None:
        err_console.print(f"[red]Run not found:[/red] {run_id}")
        raise typer.Exit(1)

    async def _resume():
        async with patrol_clients(config) as (fetcher, classifier, pool):
            kwargs = dict(config=config.session, fetcher=fetcher, classifier=classifier, pool=pool, store=store)
            if run.mode == PatrolMode.FLEET:
                fleet = FleetPatrolController.resume(run_id, **kwargs)
                await _drive_fleet(fleet)
                return fleet

            with ProgressView.create() as view:
                single = SinglePatrolController.resume(run_id, on_progress=view, **kwargs)
                if single.state == ControllerState.COMPLETED:
                    return single
                token = CancellationToken()
                install_pause_handler(token)
                try:
                    await single.start(token)
                finally:
                    remove_pause_handler()
                return single

    try:
        controller = asyncio.run(_resume())
    except ControllerStateError as e:
        err_console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    if isinstance(controller, FleetPatrolController):
        _finish_fleet(controller)
        return

    _show_summary(controller.snapshot())
    if controller.state == ControllerState.PAUSED:
        console.print(f"Paused. Resume with: [yellow]shoppatrol scan resume {controller.run_id}[/yellow]")
    elif controller.state == ControllerState.IDLE:
        err_console.print(f"[red]Scan failed:[/red] {controller.last_error}")
        raise typer.Exit(1)


@app.command("retry-failed")
def retry_failed(
    run_id: str = typer.Argument(..., help="Single-shop run ID"),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """Reclassify the ERROR items of a single-shop run."""
    from shoppatrol.core.orchestrator import ControllerStateError, SinglePatrolController

    config = load_config(config_path, runnable=True)
    store = open_store(config)

    async def _retry() -> tuple[int, int, SinglePatrolController]:
        async with patrol_clients(config) as (fetcher, classifier, pool):
            controller = SinglePatrolController.resume(
                run_id,
                config=config.session,
                fetcher=fetcher,
                classifier=classifier,
                pool=pool,
                store=store,
            )
            failed = len(controller.results.failed_indexes())
            recovered = await controller.retry_failed()
            return failed, recovered, controller

    try:
        failed, recovered, controller = asyncio.run(_retry())
    except ControllerStateError as e:
        err_console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    console.print(f"Retried {failed} items, {recovered} recovered")
    _show_summary(controller.snapshot())


@app.command("retry-target")
def retry_target(
    run_id: str = typer.Argument(..., help="Fleet run ID"),
    index: int = typer.Argument(..., help="Target index (0-based)"),
    run_now: bool = typer.Option(
        False,
        "--run/--queue-only",
        help="Resume the run right away",
    ),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """Re-queue a failed fleet target."""
    from shoppatrol.core.orchestrator import ControllerStateError, FleetPatrolController

    config = load_config(config_path, runnable=True)
    store = open_store(config)

    async def _retry() -> FleetPatrolController:
        async with patrol_clients(config) as (fetcher, classifier, pool):
            controller = FleetPatrolController.resume(
                run_id,
                config=config.session,
                fetcher=fetcher,
                classifier=classifier,
                pool=pool,
                store=store,
            )
            target = controller.retry_target(index)
            console.print(f"[green]OK[/green] Re-queued {target.url}")
            if run_now:
                await _drive_fleet(controller)
            return controller

    try:
        controller = asyncio.run(_retry())
    except ControllerStateError as e:
        err_console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    if run_now:
        _finish_fleet(controller)
