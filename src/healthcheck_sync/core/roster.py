"""Roster reconciliation and connected-user bookkeeping.

Membership events only carry a transient connection identity (id, name).
The reconciler folds that identity into the durable participant list:

- a join adds the user unless their id is already on the roster;
- a roster entry matching an existing participant by id updates its name;
- a roster entry matching by case-insensitive, trimmed name under a new id
  migrates that participant to the new id, re-keying every rating, ROTI
  vote, assignment and proposal vote so no history is lost. The local
  user's own record is never migrated away;
- anything else becomes a new participant, reusing the colour and role of
  a matching team directory member when there is one.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable, Collection, Iterable, Sequence

from ..models import Participant, Role, SessionDocument

if TYPE_CHECKING:
    from ..sync.messages import RosterEntry
    from .store import SessionStore

logger = logging.getLogger(__name__)


def normalize_name(name: str) -> str:
    return name.strip().casefold()


def find_match(
    roster: Iterable[Participant],
    user_id: str,
    user_name: str,
    protected_ids: Collection[str] = (),
) -> Participant | None:
    """Find a participant by id first, then by normalised name.

    Participants in ``protected_ids`` only ever match by id.
    """
    roster = list(roster)
    for participant in roster:
        if participant.id == user_id:
            return participant
    key = normalize_name(user_name)
    if not key:
        return None
    for participant in roster:
        if participant.id not in protected_ids and normalize_name(participant.name) == key:
            return participant
    return None


def dedupe_participants(
    participants: Iterable[Participant], keep_ids: Collection[str] = ()
) -> list[Participant]:
    """Drop later entries whose id or normalised name was already seen.

    Entries in ``keep_ids`` are only dropped for a repeated id.
    """
    seen_ids: set[str] = set()
    seen_names: set[str] = set()
    result: list[Participant] = []
    for participant in participants:
        key = normalize_name(participant.name)
        if participant.id in seen_ids:
            continue
        if key and key in seen_names and participant.id not in keep_ids:
            continue
        seen_ids.add(participant.id)
        if key:
            seen_names.add(key)
        result.append(participant)
    return result


def new_participant(
    user_id: str,
    user_name: str,
    known_members: Sequence[Participant],
    palette: Sequence[str],
    color_index: int,
) -> Participant:
    """Build a roster entry, preferring the team directory's colour and role."""
    member = next(
        (m for m in known_members if m.id == user_id or m.name == user_name),
        None,
    )
    if member is not None:
        return Participant(id=user_id, name=user_name, color_tag=member.color_tag, role=member.role)
    return Participant(
        id=user_id,
        name=user_name,
        color_tag=palette[color_index % len(palette)],
        role=Role.PARTICIPANT,
    )


def migrate_identity(doc: SessionDocument, old_id: str, new_id: str) -> None:
    """Re-key every reference to ``old_id`` onto ``new_id``.

    Data already recorded under ``new_id`` wins over data from ``old_id``.
    """
    if old_id == new_id:
        return

    old_ratings = doc.ratings.pop(old_id, None)
    if old_ratings:
        merged = dict(old_ratings)
        merged.update(doc.ratings.get(new_id, {}))
        doc.ratings[new_id] = merged

    if old_id in doc.roti:
        vote = doc.roti.pop(old_id)
        doc.roti.setdefault(new_id, vote)

    for action in doc.actions:
        if action.assignee_id == old_id:
            action.assignee_id = new_id
        if old_id in action.proposal_votes:
            vote = action.proposal_votes.pop(old_id)
            action.proposal_votes.setdefault(new_id, vote)

    logger.info("Migrated participant %s -> %s in session %s", old_id, new_id, doc.id)


def merge_entry(
    doc: SessionDocument,
    user_id: str,
    user_name: str,
    known_members: Sequence[Participant],
    palette: Sequence[str],
    color_index: int,
    protected_ids: Collection[str] = (),
) -> bool:
    """Fold one (id, name) pair into ``doc.participants``.

    Returns True when a new participant was appended.
    """
    existing = find_match(doc.participants, user_id, user_name, protected_ids)
    if existing is not None:
        if existing.id != user_id:
            migrate_identity(doc, existing.id, user_id)
            existing.id = user_id
        if user_name:
            existing.name = user_name
        return False

    doc.participants.append(new_participant(user_id, user_name, known_members, palette, color_index))
    return True


class Presence:
    """The set of users currently connected to the session.

    Joins and leaves are idempotent; a roster snapshot replaces the set.
    """

    def __init__(self, initial: Iterable[str] = ()) -> None:
        self._ids: set[str] = set(initial)

    def joined(self, user_id: str) -> bool:
        if user_id in self._ids:
            return False
        self._ids.add(user_id)
        return True

    def left(self, user_id: str) -> bool:
        if user_id not in self._ids:
            return False
        self._ids.discard(user_id)
        return True

    def replace(self, user_ids: Iterable[str]) -> None:
        self._ids = set(user_ids)

    @property
    def ids(self) -> frozenset[str]:
        return frozenset(self._ids)

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)


class RosterReconciler:
    """Applies membership events to the store's document as local mutations."""

    def __init__(
        self,
        store: SessionStore,
        palette: Sequence[str],
        directory: Callable[[], Sequence[Participant]] | None = None,
    ) -> None:
        self.store = store
        self.palette = tuple(palette)
        self._directory = directory

    def _known_members(self, known_members: Sequence[Participant] | None) -> Sequence[Participant]:
        if known_members is not None:
            return known_members
        if self._directory is None:
            return ()
        try:
            return self._directory()
        except Exception as exc:
            logger.warning("Could not load team directory: %s", exc)
            return ()

    async def upsert_from_join(
        self,
        user_id: str,
        user_name: str,
        known_members: Sequence[Participant] | None = None,
    ) -> SessionDocument | None:
        """Add the joining user unless a participant with that id already exists.

        Matching is by id only: a newcomer who shares a display name with
        someone on the roster is a different participant.
        """
        doc = self.store.load()
        stored = doc.participants if doc is not None else []
        if any(p.id == user_id for p in [*stored, *self.store.known_participants]):
            return None
        members = self._known_members(known_members)
        color_index = len(self.store.roster())

        def mutate(doc: SessionDocument) -> None:
            if doc.find_participant(user_id) is None:
                doc.participants.append(
                    new_participant(user_id, user_name, members, self.palette, color_index)
                )

        return await self.store.apply_local_mutation(mutate)

    async def merge_roster(
        self,
        entries: Sequence[RosterEntry],
        known_members: Sequence[Participant] | None = None,
    ) -> SessionDocument | None:
        """Fold a full roster snapshot into the participant list."""
        members = self._known_members(known_members)
        protected = self.store.local_ids

        def mutate(doc: SessionDocument) -> None:
            color_index = len(doc.participants)
            for entry in entries:
                if merge_entry(doc, entry.id, entry.name, members, self.palette, color_index, protected):
                    color_index += 1
            doc.participants = dedupe_by_id(doc.participants)

        return await self.store.apply_local_mutation(mutate)


def dedupe_by_id(participants: Iterable[Participant]) -> list[Participant]:
    seen: set[str] = set()
    result: list[Participant] = []
    for participant in participants:
        if participant.id not in seen:
            seen.add(participant.id)
            result.append(participant)
    return result
