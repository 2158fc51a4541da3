"""Session document models for team health-check sessions.

Defines the four-phase lifecycle enum, the participant roster entry, rating
and action records, and the SessionDocument that every client holds a full
copy of. Serialisation uses the shared wire shape (camelCase keys) so that a
document round-trips unchanged between browsers, storage and this engine.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from .errors import DocumentFormatError

logger = logging.getLogger(__name__)


class Phase(StrEnum):
    """Ordered session phases."""

    SURVEY = "SURVEY"
    DISCUSS = "DISCUSS"
    REVIEW = "REVIEW"
    CLOSE = "CLOSE"


PHASE_ORDER: tuple[Phase, ...] = (Phase.SURVEY, Phase.DISCUSS, Phase.REVIEW, Phase.CLOSE)


class SessionStatus(StrEnum):
    ACTIVE = "ACTIVE"
    CLOSED = "CLOSED"


# Older clients wrote IN_PROGRESS for a running session.
STATUS_ALIASES: dict[str, str] = {"IN_PROGRESS": "ACTIVE"}


class Role(StrEnum):
    FACILITATOR = "facilitator"
    PARTICIPANT = "participant"


class ActionType(StrEnum):
    PREV = "prev"
    NEW = "new"
    PROPOSAL = "proposal"


MIN_SCORE = 1
MAX_SCORE = 5


def resolve_status_alias(raw: str) -> str:
    """Resolve a legacy status value to the canonical vocabulary."""
    normalized = raw.strip().upper()
    return STATUS_ALIASES.get(normalized, normalized)


def stored_score(raw: Any) -> int | None:
    """A stored 1..5 score, or None for anything else (booleans included)."""
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        return None
    if not MIN_SCORE <= raw <= MAX_SCORE:
        return None
    return int(raw)


@dataclass(frozen=True)
class Dimension:
    """A named axis of team health, fixed once the session is created."""

    id: str
    name: str
    good_description: str = ""
    bad_description: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "goodDescription": self.good_description,
            "badDescription": self.bad_description,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Dimension:
        return cls(
            id=data["id"],
            name=data["name"],
            good_description=data.get("goodDescription", ""),
            bad_description=data.get("badDescription", ""),
        )


@dataclass
class Participant:
    """A roster entry. ``color_tag`` travels as ``color`` on the wire."""

    id: str
    name: str
    color_tag: str
    role: Role = Role.PARTICIPANT

    @property
    def is_facilitator(self) -> bool:
        return self.role == Role.FACILITATOR

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "color": self.color_tag,
            "role": str(self.role),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Participant:
        raw_role = data.get("role") or Role.PARTICIPANT
        try:
            role = Role(raw_role)
        except ValueError:
            role = Role.PARTICIPANT
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            color_tag=data.get("color", ""),
            role=role,
        )


@dataclass
class RatingEntry:
    """One participant's score for one dimension.

    ``rating`` is None when only a comment has been written so far.
    """

    rating: int | None = None
    comment: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"rating": self.rating}
        if self.comment is not None:
            d["comment"] = self.comment
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RatingEntry:
        # 0 was written as a placeholder when a comment preceded the score.
        return cls(rating=stored_score(data.get("rating")), comment=data.get("comment"))


@dataclass
class ActionItem:
    """A follow-up action raised during the session."""

    id: str
    text: str
    assignee_id: str | None = None
    done: bool = False
    type: ActionType = ActionType.NEW
    linked_dimension_id: str | None = None
    proposal_votes: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "text": self.text,
            "assigneeId": self.assignee_id,
            "done": self.done,
            "type": str(self.type),
            "proposalVotes": dict(self.proposal_votes),
        }
        if self.linked_dimension_id is not None:
            d["linkedDimensionId"] = self.linked_dimension_id
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ActionItem:
        try:
            action_type = ActionType(data.get("type", ActionType.NEW))
        except ValueError:
            action_type = ActionType.NEW
        return cls(
            id=data["id"],
            text=data.get("text", ""),
            assignee_id=data.get("assigneeId"),
            done=bool(data.get("done", False)),
            type=action_type,
            linked_dimension_id=data.get("linkedDimensionId", data.get("linkedTicketId")),
            proposal_votes=dict(data.get("proposalVotes") or {}),
        )


@dataclass
class SessionSettings:
    is_anonymous: bool = False
    reveal_roti: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"isAnonymous": self.is_anonymous, "revealRoti": self.reveal_roti}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SessionSettings:
        return cls(
            is_anonymous=bool(data.get("isAnonymous", False)),
            reveal_roti=bool(data.get("revealRoti", False)),
        )


_KNOWN_KEYS = frozenset(
    {
        "id",
        "teamId",
        "name",
        "date",
        "templateId",
        "templateName",
        "phase",
        "status",
        "settings",
        "dimensions",
        "participants",
        "ratings",
        "actions",
        "roti",
        "discussionFocusId",
    }
)


@dataclass
class SessionDocument:
    """The shared health-check session.

    Every client owns one copy. Mutations never touch a copy another
    component can see: callers work on :meth:`clone` and replace the
    stored reference afterwards.
    """

    id: str
    dimensions: list[Dimension] = field(default_factory=list)
    phase: Phase = Phase.SURVEY
    status: SessionStatus = SessionStatus.ACTIVE
    settings: SessionSettings = field(default_factory=SessionSettings)
    participants: list[Participant] = field(default_factory=list)
    # participant id -> dimension id -> entry
    ratings: dict[str, dict[str, RatingEntry]] = field(default_factory=dict)
    actions: list[ActionItem] = field(default_factory=list)
    roti: dict[str, int] = field(default_factory=dict)
    discussion_focus_id: str | None = None
    team_id: str | None = None
    name: str = ""
    date: str | None = None
    template_id: str | None = None
    template_name: str | None = None
    extra: dict[str, Any] = field(default_factory=dict, repr=False)

    def clone(self) -> SessionDocument:
        """Return a fully independent deep copy."""
        return copy.deepcopy(self)

    def dimension_ids(self) -> list[str]:
        return [d.id for d in self.dimensions]

    def has_dimension(self, dimension_id: str | None) -> bool:
        return dimension_id is not None and any(d.id == dimension_id for d in self.dimensions)

    def find_participant(self, participant_id: str) -> Participant | None:
        for participant in self.participants:
            if participant.id == participant_id:
                return participant
        return None

    def find_action(self, action_id: str) -> ActionItem | None:
        for action in self.actions:
            if action.id == action_id:
                return action
        return None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = dict(self.extra)
        d.update(
            {
                "id": self.id,
                "teamId": self.team_id,
                "name": self.name,
                "date": self.date,
                "templateId": self.template_id,
                "templateName": self.template_name,
                "phase": str(self.phase),
                "status": str(self.status),
                "settings": self.settings.to_dict(),
                "dimensions": [dim.to_dict() for dim in self.dimensions],
                "participants": [p.to_dict() for p in self.participants],
                "ratings": {
                    pid: {dim_id: entry.to_dict() for dim_id, entry in by_dim.items()}
                    for pid, by_dim in self.ratings.items()
                },
                "actions": [a.to_dict() for a in self.actions],
                "roti": dict(self.roti),
                "discussionFocusId": self.discussion_focus_id,
            }
        )
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SessionDocument:
        """Parse a wire/storage document.

        Raises:
            DocumentFormatError: If required fields are missing or malformed.
        """
        if not isinstance(data, dict):
            raise DocumentFormatError(f"Expected a JSON object, got {type(data).__name__}")
        try:
            ratings: dict[str, dict[str, RatingEntry]] = {}
            for pid, by_dim in (data.get("ratings") or {}).items():
                ratings[pid] = {
                    dim_id: RatingEntry.from_dict(raw) for dim_id, raw in (by_dim or {}).items()
                }
            roti = {
                pid: stored_score(score)
                for pid, score in (data.get("roti") or {}).items()
                if stored_score(score) is not None
            }
            doc = cls(
                id=data["id"],
                team_id=data.get("teamId"),
                name=data.get("name", ""),
                date=data.get("date"),
                template_id=data.get("templateId"),
                template_name=data.get("templateName"),
                phase=Phase(data.get("phase", Phase.SURVEY)),
                status=SessionStatus(resolve_status_alias(data.get("status", SessionStatus.ACTIVE))),
                settings=SessionSettings.from_dict(data.get("settings") or {}),
                dimensions=[Dimension.from_dict(d) for d in data.get("dimensions") or []],
                participants=[Participant.from_dict(p) for p in data.get("participants") or []],
                ratings=ratings,
                actions=[ActionItem.from_dict(a) for a in data.get("actions") or []],
                roti=roti,
                discussion_focus_id=data.get("discussionFocusId"),
                extra={k: v for k, v in data.items() if k not in _KNOWN_KEYS},
            )
        except (KeyError, ValueError, TypeError, AttributeError) as exc:
            raise DocumentFormatError(f"Invalid session document: {exc}") from exc
        doc.drop_dangling_dimension_refs()
        return doc

    def drop_dangling_dimension_refs(self) -> None:
        """Remove ratings, action links and focus that name no known dimension."""
        known = set(self.dimension_ids())

        for pid in list(self.ratings):
            by_dim = self.ratings[pid]
            unknown = [dim_id for dim_id in by_dim if dim_id not in known]
            for dim_id in unknown:
                del by_dim[dim_id]
            if unknown:
                logger.warning(
                    "Session %s: dropped ratings by %s for unknown dimensions %s",
                    self.id,
                    pid,
                    ", ".join(unknown),
                )
            if not by_dim:
                del self.ratings[pid]

        for action in self.actions:
            if action.linked_dimension_id is not None and action.linked_dimension_id not in known:
                logger.warning(
                    "Session %s: action %s linked to unknown dimension %s, moved to general",
                    self.id,
                    action.id,
                    action.linked_dimension_id,
                )
                action.linked_dimension_id = None

        if self.discussion_focus_id is not None and self.discussion_focus_id not in known:
            logger.warning(
                "Session %s: cleared focus on unknown dimension %s", self.id, self.discussion_focus_id
            )
            self.discussion_focus_id = None
