"""Rating mutations and per-dimension aggregation.

Aggregates only count submitted scores: a participant who has not rated a
dimension (or has only left a comment) contributes nothing, which is
different from contributing a zero.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from ..errors import FacilitatorRequiredError, InvalidScoreError
from ..models import (
    MAX_SCORE,
    MIN_SCORE,
    Dimension,
    Participant,
    Phase,
    RatingEntry,
    SessionDocument,
)

logger = logging.getLogger(__name__)

GOOD_THRESHOLD = 4.0
FAIR_THRESHOLD = 3.0


def validate_score(score: int) -> int:
    """Return ``score`` if it is an integer in 1..5, else raise InvalidScoreError."""
    if isinstance(score, bool) or not isinstance(score, int):
        raise InvalidScoreError(f"Score must be an integer, got {score!r}")
    if not MIN_SCORE <= score <= MAX_SCORE:
        raise InvalidScoreError(f"Score must be between {MIN_SCORE} and {MAX_SCORE}, got {score}")
    return score


@dataclass(frozen=True)
class DimensionComment:
    participant_id: str
    text: str


@dataclass(frozen=True)
class DimensionStats:
    """Aggregate of one dimension's ratings."""

    dimension_id: str
    average: float
    count: int
    distribution: tuple[int, ...]
    comments: tuple[DimensionComment, ...] = field(default_factory=tuple)


def set_rating(doc: SessionDocument, participant_id: str, dimension_id: str, rating: int) -> None:
    """Record ``participant_id``'s score for a dimension, keeping any comment."""
    validate_score(rating)
    if not doc.has_dimension(dimension_id):
        logger.debug("Ignoring rating for unknown dimension %s", dimension_id)
        return
    by_dim = doc.ratings.setdefault(participant_id, {})
    entry = by_dim.get(dimension_id)
    if entry is None:
        by_dim[dimension_id] = RatingEntry(rating=rating)
    else:
        entry.rating = rating


def set_comment(doc: SessionDocument, participant_id: str, dimension_id: str, text: str) -> None:
    """Record a comment. An entry without a score keeps ``rating=None``."""
    if not doc.has_dimension(dimension_id):
        logger.debug("Ignoring comment for unknown dimension %s", dimension_id)
        return
    by_dim = doc.ratings.setdefault(participant_id, {})
    entry = by_dim.get(dimension_id)
    if entry is None:
        by_dim[dimension_id] = RatingEntry(rating=None, comment=text)
    else:
        entry.comment = text


def dimension_stats(doc: SessionDocument, dimension_id: str) -> DimensionStats:
    """Average, count, 1..5 histogram and comments for one dimension."""
    scores: list[int] = []
    comments: list[DimensionComment] = []

    for participant_id, by_dim in doc.ratings.items():
        entry = by_dim.get(dimension_id)
        if entry is None:
            continue
        if entry.rating is not None:
            scores.append(entry.rating)
        if entry.comment and entry.comment.strip():
            comments.append(DimensionComment(participant_id, entry.comment))

    distribution = tuple(scores.count(v) for v in range(MIN_SCORE, MAX_SCORE + 1))
    average = sum(scores) / len(scores) if scores else 0.0
    return DimensionStats(
        dimension_id=dimension_id,
        average=average,
        count=len(scores),
        distribution=distribution,
        comments=tuple(comments),
    )


def has_completed(doc: SessionDocument, participant_id: str) -> bool:
    """True iff the participant has a score for every dimension."""
    by_dim = doc.ratings.get(participant_id) or {}
    return all(
        by_dim.get(dim.id) is not None and by_dim[dim.id].rating is not None
        for dim in doc.dimensions
    )


def finished_count(doc: SessionDocument, participant_ids: Iterable[str]) -> int:
    """Count completed surveys among ``participant_ids`` (the current roster).

    Ratings left behind by participants no longer on the roster are ignored.
    """
    return sum(1 for pid in set(participant_ids) if pid in doc.ratings and has_completed(doc, pid))


def participant_progress(doc: SessionDocument, participant_id: str) -> bool:
    """Whether the participant shows as finished for the current phase."""
    if has_completed(doc, participant_id):
        return True
    return doc.phase == Phase.CLOSE and participant_id in doc.roti


def discussion_order(doc: SessionDocument) -> list[Dimension]:
    """Dimensions sorted by ascending average so low scores are discussed first."""
    averages = {dim.id: dimension_stats(doc, dim.id).average for dim in doc.dimensions}
    return sorted(doc.dimensions, key=lambda dim: averages[dim.id])


def toggle_discussion_focus(doc: SessionDocument, dimension_id: str, actor: Participant) -> None:
    """Focus everyone on a dimension, or clear the focus if it is already set."""
    if not actor.is_facilitator:
        raise FacilitatorRequiredError("toggle_discussion_focus", actor.id)
    if not doc.has_dimension(dimension_id):
        logger.debug("Ignoring focus on unknown dimension %s", dimension_id)
        return
    doc.discussion_focus_id = None if doc.discussion_focus_id == dimension_id else dimension_id


def score_band(average: float) -> str:
    if average >= GOOD_THRESHOLD:
        return "good"
    if average >= FAIR_THRESHOLD:
        return "fair"
    return "poor"
