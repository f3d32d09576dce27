"""Main Typer application: imports and registers all CLI commands.

Entry point: ``shipwright`` (configured via pyproject.toml scripts).
"""

from __future__ import annotations

import typer

from shipwright.cli.commands.cache import cache_app
from shipwright.cli.commands.history import history_cmd, verify_cmd
from shipwright.cli.commands.run import run_cmd
from shipwright.cli.commands.tags import tags_cmd
from shipwright.cli.runtime import configure_logging
from shipwright.config import settings

app = typer.Typer(
    name="shipwright",
    help="Shipwright: cached container builds published under deterministic tags.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def _setup(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    configure_logging(settings.log_level, debug=verbose or settings.debug)


# Register subcommands
app.command(name="run", help="Build and publish one revision.")(run_cmd)
app.command(name="tags", help="Preview the tags for a revision.")(tags_cmd)
app.command(name="history", help="Show recorded runs.")(history_cmd)
app.command(name="verify", help="Verify a run's ledger hash chain.")(verify_cmd)
app.add_typer(cache_app, name="cache")


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
