"""``healthcheck-sync phases`` - show the phase moves each policy allows."""

from __future__ import annotations

from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from healthcheck_sync.core.phase import PhaseController, PhasePolicy
from healthcheck_sync.models import PHASE_ORDER

console = Console()


def phases(
    policy: Optional[PhasePolicy] = typer.Option(
        None, "--policy", "-p", case_sensitive=False, help="Only show this policy"
    ),
) -> None:
    """List the session phases and the moves allowed from each."""
    policies = [policy] if policy is not None else list(PhasePolicy)

    for selected in policies:
        controller = PhaseController(selected)
        table = Table(title=f"Policy: {selected}", show_header=True, header_style="bold")
        table.add_column("From", style="cyan")
        for target in PHASE_ORDER:
            table.add_column(str(target), justify="center")
        for source in PHASE_ORDER:
            cells = [
                "[dim]=[/dim]" if source == target
                else ("[green]✓[/green]" if controller.can_move(source, target) else "[red]✗[/red]")
                for target in PHASE_ORDER
            ]
            table.add_row(str(source), *cells)
        console.print(table)
