"""``shipwright history`` and ``shipwright verify``: read the run ledger."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from shipwright.config import settings
from shipwright.cli.runtime import load_config
from shipwright.core.run_ledger import LedgerIntegrityError, RunLedger

console = Console()


def _open_ledger(root: Path) -> RunLedger:
    db_path = load_config(settings, root.resolve()).ledger_path
    if not db_path.exists():
        console.print(f"[bold red]Ledger not found:[/bold red] {db_path}")
        console.print("[dim]Run the pipeline first with: shipwright run[/dim]")
        raise typer.Exit(code=1)
    return RunLedger(db_path)


def history_cmd(
    run_id: Optional[str] = typer.Argument(None, help="Run to show; omit to list runs."),
    root: Path = typer.Option(Path("."), "--root", help="Build root."),
    limit: int = typer.Option(20, "--limit", "-n", help="How many runs to list."),
) -> None:
    """List recent runs, or show every transition of one run."""
    ledger = _open_ledger(root)

    if run_id is None:
        run_ids = ledger.get_all_run_ids(limit=limit)
        if not run_ids:
            console.print("[dim]No runs recorded.[/dim]")
            return
        table = Table(title="Recent Runs")
        table.add_column("Run ID", style="cyan")
        table.add_column("Revision")
        table.add_column("Phase")
        table.add_column("Updated (UTC)")
        for rid in run_ids:
            latest = ledger.get_latest(rid)
            if latest is None:
                continue
            colour = {"done": "green", "failed": "red"}.get(latest.phase, "yellow")
            table.add_row(
                rid,
                latest.revision[:12],
                f"[{colour}]{latest.phase}[/{colour}]",
                latest.timestamp_utc.strftime("%Y-%m-%d %H:%M:%S"),
            )
        console.print(table)
        return

    entries = ledger.get_run_entries(run_id)
    if not entries:
        console.print(f"[bold red]Run not found:[/bold red] {run_id}")
        raise typer.Exit(code=1)

    table = Table(title=f"Run {run_id}")
    table.add_column("#", justify="right")
    table.add_column("Transition", style="cyan")
    table.add_column("Input")
    table.add_column("Output")
    table.add_column("Detail")
    for i, entry in enumerate(entries):
        table.add_row(
            str(i),
            entry.state_transition,
            entry.input_hash[:12],
            entry.output_hash[:12],
            entry.detail,
        )
    console.print(table)


def verify_cmd(
    run_id: str = typer.Argument(..., help="Run whose hash chain to verify."),
    root: Path = typer.Option(Path("."), "--root", help="Build root."),
) -> None:
    """Verify the hash chain of one run's ledger entries."""
    ledger = _open_ledger(root)
    if not ledger.get_run_entries(run_id):
        console.print(f"[bold red]Run not found:[/bold red] {run_id}")
        raise typer.Exit(code=1)
    try:
        ledger.verify_chain(run_id)
    except LedgerIntegrityError as exc:
        console.print(f"[bold red]Chain BROKEN:[/bold red] {exc}")
        raise typer.Exit(code=1)
    console.print(f"[bold green]Chain valid[/bold green] for run {run_id}")
