"""
Credential commands.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import typer
from rich.table import Table

from shoppatrol.cli.context import console, err_console, load_config

app = typer.Typer(
    help="Manage classification credentials",
    no_args_is_help=True,
)


def _mask(credential: str) -> str:
    if len(credential) <= 8:
        return "*" * len(credential)
    return f"{credential[:4]}...{credential[-4:]}"


@app.command("check")
def check_credentials(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c"),
) -> None:
    """Send a test request with each configured credential."""
    from shoppatrol.core.backends import CredentialPool, RiskClassifier
    from shoppatrol.core.config import ConfigError

    config = load_config(config_path)
    try:
        pool = CredentialPool(config.session.credentials)
    except ConfigError as e:
        err_console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    async def _check():
        async with RiskClassifier.from_config(config.session) as classifier:
            return await asyncio.gather(
                *(classifier.check_credential(c) for c in pool.credentials)
            )

    results = asyncio.run(_check())

    table = Table(title="Credentials", show_header=True, header_style="bold magenta")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Key")
    table.add_column("Status", justify="center")
    table.add_column("Message", max_width=60)

    for i, (credential, result) in enumerate(zip(pool.credentials, results)):
        status = "[green]OK[/green]" if result.ok else "[red]FAIL[/red]"
        table.add_row(str(i), _mask(credential), status, result.message)
    console.print(table)

    if not all(r.ok for r in results):
        raise typer.Exit(1)
