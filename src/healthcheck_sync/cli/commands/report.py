"""``healthcheck-sync report`` - summarise a session document."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from healthcheck_sync.core import actions as action_tracker
from healthcheck_sync.core import anonymizer
from healthcheck_sync.core import ratings as rating_aggregator
from healthcheck_sync.core import roti as roti_collector
from healthcheck_sync.core.roster import dedupe_participants
from healthcheck_sync.errors import DocumentFormatError
from healthcheck_sync.models import SessionDocument

console = Console()

_BAND_STYLES = {"good": "green", "fair": "yellow", "poor": "red"}


def load_document(path: Path, session_id: str | None = None) -> SessionDocument:
    """Read a session document from JSON.

    Accepts either a bare document or a team file (``healthChecks`` list),
    from which ``session_id`` (default: the most recent) is selected.
    """
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise DocumentFormatError(f"Cannot read {path}: {exc}") from exc

    if isinstance(data, dict) and isinstance(data.get("healthChecks"), list):
        checks = [c for c in data["healthChecks"] if isinstance(c, dict)]
        if session_id is not None:
            checks = [c for c in checks if c.get("id") == session_id]
        if not checks:
            raise DocumentFormatError(f"No matching session in team file {path}")
        data = checks[0]
    return SessionDocument.from_dict(data)


def _format_distribution(distribution: tuple[int, ...]) -> str:
    return " ".join(f"{score}:{count}" for score, count in enumerate(distribution, start=1))


def report(
    document: Path = typer.Argument(..., exists=True, dir_okay=False, help="Session document (JSON)"),
    session: Optional[str] = typer.Option(
        None, "--session", "-s", help="Session id when DOCUMENT is a team file"
    ),
    anonymous: bool = typer.Option(False, "--anonymous", help="Force anonymised participant labels"),
    discussion_order: bool = typer.Option(
        False, "--discussion-order", help="List dimensions lowest average first"
    ),
    show_comments: bool = typer.Option(False, "--comments", help="Include rating comments"),
) -> None:
    """Print dimension statistics, completion and the ROTI tally."""
    try:
        doc = load_document(document, session)
    except DocumentFormatError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    if anonymous:
        doc.settings.is_anonymous = True

    roster = dedupe_participants(doc.participants)
    roster_ids = [p.id for p in roster]
    dimensions = rating_aggregator.discussion_order(doc) if discussion_order else doc.dimensions

    console.print(
        Panel(
            f"[bold]{doc.name or doc.id}[/bold]\n"
            f"Phase: {doc.phase}   Status: {doc.status}\n"
            f"Finished: {rating_aggregator.finished_count(doc, roster_ids)} / {len(roster)} participants",
            title="Health Check",
            border_style="cyan",
            expand=False,
        )
    )

    people = Table(title="Participants", show_header=True, header_style="bold")
    people.add_column("", style="bold", no_wrap=True)
    people.add_column("Participant")
    people.add_column("Finished", justify="center")
    for participant in roster:
        who = anonymizer.label(doc, participant.id, roster)
        finished = rating_aggregator.participant_progress(doc, participant.id)
        people.add_row(anonymizer.initials(who), who, "✓" if finished else "")
    console.print(people)

    table = Table(title="Dimensions", show_header=True, header_style="bold")
    table.add_column("Dimension", style="cyan")
    table.add_column("Average", justify="right")
    table.add_column("Votes", justify="right")
    table.add_column("Distribution", style="dim")
    table.add_column("Band")

    for dimension in dimensions:
        stats = rating_aggregator.dimension_stats(doc, dimension.id)
        if stats.count:
            band = rating_aggregator.score_band(stats.average)
            band_cell = f"[{_BAND_STYLES[band]}]{band}[/{_BAND_STYLES[band]}]"
            average_cell = f"{stats.average:.1f}"
        else:
            band_cell = "[dim]-[/dim]"
            average_cell = "-"
        table.add_row(
            dimension.name,
            average_cell,
            str(stats.count),
            _format_distribution(stats.distribution),
            band_cell,
        )
    console.print(table)

    if show_comments:
        for dimension in dimensions:
            stats = rating_aggregator.dimension_stats(doc, dimension.id)
            if not stats.comments:
                continue
            console.print(f"\n[bold]{dimension.name}[/bold]")
            for comment in stats.comments:
                who = anonymizer.label(doc, comment.participant_id, roster)
                console.print(f"  • [dim]{who}:[/dim] {comment.text}")

    grouped = action_tracker.group_by_dimension(doc.actions)
    if grouped:
        names = {d.id: d.name for d in doc.dimensions}
        actions_table = Table(title="Actions", show_header=True, header_style="bold")
        actions_table.add_column("Topic", style="cyan")
        actions_table.add_column("Action")
        actions_table.add_column("Owner")
        actions_table.add_column("Done", justify="center")
        for bucket, items in grouped.items():
            topic = names.get(bucket, "General")
            for item in items:
                owner = anonymizer.label(doc, item.assignee_id, roster) if item.assignee_id else "-"
                actions_table.add_row(topic, item.text, owner, "✓" if item.done else "")
        console.print(actions_table)

    tally = roti_collector.tally(doc, roster_ids)
    roti_line = f"ROTI: {tally.voter_count} / {tally.total_participants} voted"
    if doc.settings.reveal_roti:
        roti_line += f"   average {tally.display_average} / 5   {_format_distribution(tally.histogram)}"
    else:
        roti_line += "   [dim](results hidden)[/dim]"
    console.print(roti_line)
