"""``shipwright cache status``: inspect the active and staging cache stores."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from shipwright.config import settings
from shipwright.cli.runtime import open_blob_store, open_rotator

console = Console()

cache_app = typer.Typer(help="Inspect the build cache.", no_args_is_help=True)


def _yes_no(value: object) -> str:
    return "[green]Yes[/green]" if value else "[dim]No[/dim]"


@cache_app.command(name="status", help="Show the cache stores and persisted keys.")
def status_cmd(
    root: Path = typer.Option(Path("."), "--root", help="Build root."),
) -> None:
    root = root.resolve()
    rotator = open_rotator(settings, root)
    status = rotator.status()

    table = Table(title="Build Cache")
    table.add_column("Property", style="cyan")
    table.add_column("Value")
    table.add_row("Active store", str(status["active_path"]))
    table.add_row("Exists", _yes_no(status["active_exists"]))
    table.add_row("Sealed", _yes_no(status["active_sealed"]))
    table.add_row("Entries", str(status["active_entries"]))
    table.add_row("Size", f"{status['active_size_bytes']:,} bytes")
    table.add_row("Staging store", str(status["staging_path"]))
    table.add_row("Staging present", _yes_no(status["staging_exists"]))
    if status["rotation_interrupted"]:
        table.add_row("Rotation", "[bold red]interrupted; next run starts cold[/bold red]")
    console.print(table)

    keys = open_blob_store(settings, root).keys(settings.os_identifier)
    if keys:
        console.print(f"\n[bold]Persisted keys ({settings.os_identifier}):[/bold]")
        for key in keys[:10]:
            console.print(f"  [cyan]{key}[/cyan]")
        if len(keys) > 10:
            console.print(f"  [dim]... and {len(keys) - 10} more[/dim]")
