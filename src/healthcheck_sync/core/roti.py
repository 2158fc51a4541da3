"""Return-on-time-invested closing vote."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from ..errors import FacilitatorRequiredError
from ..models import MAX_SCORE, MIN_SCORE, Participant, SessionDocument
from .ratings import validate_score

NO_VOTES = "-"


@dataclass(frozen=True)
class RotiTally:
    """Closing vote summary.

    ``average`` is None when nobody has voted; that is distinct from an
    average of zero, which cannot occur.
    """

    average: float | None
    histogram: tuple[int, ...]
    voter_count: int
    total_participants: int

    @property
    def display_average(self) -> str:
        return NO_VOTES if self.average is None else f"{self.average:.1f}"


def cast_vote(doc: SessionDocument, participant_id: str, score: int) -> None:
    """Upsert the participant's vote; a later vote replaces the earlier one."""
    doc.roti[participant_id] = validate_score(score)


def tally(doc: SessionDocument, participant_ids: Iterable[str]) -> RotiTally:
    votes = list(doc.roti.values())
    histogram = tuple(votes.count(v) for v in range(MIN_SCORE, MAX_SCORE + 1))
    return RotiTally(
        average=sum(votes) / len(votes) if votes else None,
        histogram=histogram,
        voter_count=len(doc.roti),
        total_participants=len(list(participant_ids)),
    )


def reveal(doc: SessionDocument, actor: Participant) -> None:
    """Show ROTI results to everyone. There is no way to hide them again."""
    if not actor.is_facilitator:
        raise FacilitatorRequiredError("reveal_roti", actor.id)
    doc.settings.reveal_roti = True
