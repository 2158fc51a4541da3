"""healthcheck-sync command line interface."""

from __future__ import annotations

import logging

import typer
from rich.console import Console
from rich.logging import RichHandler

from .commands import config_cmd, phases, report

console = Console()

app = typer.Typer(
    name="healthcheck-sync",
    help="Inspect and report on team health-check session documents",
    add_completion=False,
    no_args_is_help=True,
)


@app.callback()
def callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Configure logging for every subcommand."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


app.command(name="report")(report.report)
app.command(name="phases")(phases.phases)
app.add_typer(config_cmd.app, name="config")


def main() -> None:
    app()


__all__ = ["app", "main"]
