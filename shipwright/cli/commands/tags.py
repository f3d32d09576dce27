"""``shipwright tags``: preview the tag set a run would publish."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from shipwright.config import settings
from shipwright.core.tagging import generate_tags

console = Console()


def tags_cmd(
    revision: str = typer.Option(..., "--revision", "-r", envvar="GITHUB_SHA"),
    repository: str = typer.Option(..., "--repository", "-R", envvar="GITHUB_REPOSITORY"),
    at: Optional[datetime] = typer.Option(
        None,
        "--at",
        help="Build time to tag with (UTC); defaults to now.",
    ),
) -> None:
    """Show the three tags and full references for a revision."""
    try:
        tag_set = generate_tags(
            at or datetime.now(timezone.utc),
            revision,
            repository,
            registry_host=settings.registry_host,
            short_length=settings.short_revision_length,
        )
    except ValueError as exc:
        console.print(f"[bold red]Cannot generate tags:[/bold red] {exc}")
        raise typer.Exit(code=1)

    table = Table(title=f"Tags for {tag_set.repository_ref}")
    table.add_column("Kind", style="cyan")
    table.add_column("Tag", style="green")
    table.add_column("Reference")
    for kind, tag, ref in zip(("latest", "date", "revision"), tag_set.tags, tag_set.references()):
        table.add_row(kind, tag, ref)
    console.print(table)
