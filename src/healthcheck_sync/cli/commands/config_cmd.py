"""``healthcheck-sync config`` - inspect and edit engine configuration."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from healthcheck_sync.config import load_config, set_server_url

console = Console()

app = typer.Typer(help="Configuration commands", no_args_is_help=True)


@app.command("show")
def show(
    project: Path = typer.Option(
        Path("."), "--project", help="Project root holding .healthcheck/config.yaml"
    ),
) -> None:
    """Display the resolved configuration and where each value came from."""
    config = load_config(project_root=project.resolve())

    table = Table(title="Engine Configuration", show_lines=True)
    table.add_column("Setting", style="cyan", no_wrap=True)
    table.add_column("Value", style="bold", overflow="fold")
    table.add_column("Source", style="magenta", no_wrap=True)

    table.add_row("phase_policy", str(config.phase_policy), config.sources.get("phase_policy", ""))
    table.add_row("palette", ", ".join(config.palette), config.sources.get("palette", ""))
    table.add_row(
        "rebroadcast_delay", f"{config.rebroadcast_delay}s", config.sources.get("rebroadcast_delay", "")
    )
    table.add_row("server_url", config.server_url, config.sources.get("server_url", ""))
    table.add_row("data_dir", str(config.data_dir), config.sources.get("data_dir", ""))
    console.print(table)


@app.command("set-server")
def set_server(url: str = typer.Argument(..., help="Sync server base URL")) -> None:
    """Store the sync server URL in the user configuration."""
    if not url.startswith(("http://", "https://", "ws://", "wss://")):
        console.print(f"[red]Error:[/red] not a URL: {url}")
        raise typer.Exit(1)
    path = set_server_url(url)
    console.print(f"✅ Server URL set to: {url} [dim]({path})[/dim]")
