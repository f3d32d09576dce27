"""``shipwright run``: build, assemble, tag, publish and rotate the cache.

Exit codes:

    0   image published and the build cache promoted
    1   the run failed before publishing completed
    2   image published, but the cache could not be promoted
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from pydantic import SecretStr
from rich.console import Console
from rich.panel import Panel

from shipwright.config import settings
from shipwright.cli.runtime import load_config, open_blob_store, open_registry
from shipwright.core.errors import ShipwrightError
from shipwright.core.orchestrator import Orchestrator
from shipwright.models.context import TriggerContext
from shipwright.models.reports import RunReport
from shipwright.toolchain.cargo import CargoToolchain
from shipwright.toolchain.packages import AptPackageInstaller

console = Console()

EXIT_FAILED = 1
EXIT_PROMOTION_FAILED = 2


def run_cmd(
    revision: str = typer.Option(
        ...,
        "--revision",
        "-r",
        envvar="GITHUB_SHA",
        help="Full commit hash being built.",
    ),
    repository: str = typer.Option(
        ...,
        "--repository",
        "-R",
        envvar="GITHUB_REPOSITORY",
        help="Repository identifier, e.g. Owner/Name.",
    ),
    root: Path = typer.Option(
        Path("."),
        "--root",
        help="Build root containing the manifest files and sources.",
    ),
    binary: Optional[str] = typer.Option(
        None,
        "--binary",
        "-b",
        help="Entry-point binary to build (default: SHIPWRIGHT_BINARY_NAME).",
    ),
    registry_token: Optional[str] = typer.Option(
        None,
        "--registry-token",
        envvar="SHIPWRIGHT_REGISTRY_TOKEN",
        help="Credential presented to the registry before pushing.",
    ),
) -> None:
    """Run the full pipeline for one revision."""
    root = root.resolve()
    overrides = {"binary_name": binary} if binary else {}
    config = load_config(settings, root, **overrides)

    orchestrator = Orchestrator(
        config,
        toolchain=CargoToolchain(settings.cargo_bin, rustc_wrapper=settings.rustc_wrapper),
        installer=AptPackageInstaller(),
        registry=open_registry(settings, root),
        blob_store=open_blob_store(settings, root),
    )
    trigger = TriggerContext(
        revision=revision,
        repository=repository,
        registry_credential=SecretStr(registry_token) if registry_token else None,
    )

    try:
        report = orchestrator.run(trigger)
    except ValueError as exc:
        console.print(f"[bold red]Invalid trigger:[/bold red] {exc}")
        raise typer.Exit(code=EXIT_FAILED)
    except ShipwrightError as exc:
        failed = orchestrator.last_report
        if failed is not None:
            _print_report(failed)
        if not exc.fatal and failed is not None and failed.published:
            console.print(
                f"[bold yellow]Published, but the cache was not promoted:[/bold yellow] {exc}"
            )
            raise typer.Exit(code=EXIT_PROMOTION_FAILED)
        console.print(f"[bold red]Run failed:[/bold red] {exc}")
        raise typer.Exit(code=EXIT_FAILED)

    _print_report(report)


def _print_report(report: RunReport) -> None:
    style = "green" if report.succeeded else "red"
    lines = [
        f"[bold]Run ID:[/bold]    {report.run_id}",
        f"[bold]Revision:[/bold]  {report.revision}",
        f"[bold]Phase:[/bold]     [{style}]{report.phase.value}[/{style}]",
        f"[bold]Cache:[/bold]     {report.cache_outcome.value if report.cache_outcome else '-'}",
        f"[bold]Deps from:[/bold] {report.dependency_source or '-'}",
        f"[bold]Artifact:[/bold]  {report.artifact_digest or '-'}",
        f"[bold]Image:[/bold]     {report.manifest_digest or '-'}",
    ]
    if report.references:
        lines.append("")
        lines.extend(f"  [cyan]{ref}[/cyan]" for ref in report.references)
    if report.error:
        lines.extend(["", f"[red]{report.failed_phase.value if report.failed_phase else ''}: {report.error}[/red]"])
    console.print(
        Panel(
            "\n".join(lines),
            title="[bold]Shipwright Run[/bold]",
            border_style=style,
            padding=(1, 2),
        )
    )
