"""SessionStore: the authoritative local copy of one session document.

Every local change goes through :meth:`SessionStore.apply_local_mutation`:
clone the current document, make sure the known local participants are on
the roster, run the mutator on the clone, persist it, swap it in as the new
local copy and publish it to the other clients.

Remote copies arrive through :meth:`SessionStore.apply_remote_snapshot` and
replace the local copy wholesale. There is no field-level merge: when two
clients write within the same window the later broadcast wins and the
earlier change is lost. That trade-off is intentional.
"""

from __future__ import annotations

import logging
from typing import Callable

from ..errors import BackendError
from ..models import Participant, SessionDocument
from ..persistence.backend import PersistenceBackend
from ..sync.gateway import SyncGateway
from .roster import dedupe_participants

logger = logging.getLogger(__name__)

Mutator = Callable[[SessionDocument], object]


class SessionStore:
    """Owns the local document for one (team, session) pair."""

    def __init__(
        self,
        team_id: str,
        session_id: str,
        current_user: Participant,
        backend: PersistenceBackend,
        gateway: SyncGateway,
        document: SessionDocument | None = None,
    ) -> None:
        self.team_id = team_id
        self.session_id = session_id
        self.current_user = current_user
        self.backend = backend
        self.gateway = gateway
        self._document = document
        self._local_participants: list[Participant] = [current_user]

    @property
    def document(self) -> SessionDocument | None:
        """The current local copy. Treat it as read-only."""
        return self._document

    @property
    def known_participants(self) -> list[Participant]:
        return list(self._local_participants)

    @property
    def local_ids(self) -> frozenset[str]:
        return frozenset(p.id for p in self._local_participants)

    def roster(self) -> list[Participant]:
        """Deduplicated, ordered participants including the local ones."""
        doc = self.load()
        stored = list(doc.participants) if doc is not None else []
        return dedupe_participants([*stored, *self._local_participants], keep_ids=self.local_ids)

    def load(self) -> SessionDocument | None:
        """Local copy, falling back to the backend. None when neither has it."""
        if self._document is not None:
            return self._document
        try:
            loaded = self.backend.get(self.team_id, self.session_id)
        except BackendError as exc:
            logger.warning("Could not load session %s: %s", self.session_id, exc)
            return None
        if loaded is not None:
            self._document = loaded
        return loaded

    async def apply_local_mutation(self, mutator: Mutator) -> SessionDocument | None:
        """Apply ``mutator`` to a fresh clone and publish the result.

        Returns the new document, or None when no base document exists, in
        which case the mutation is dropped. Exceptions raised by the mutator
        propagate and leave the local copy untouched.
        """
        base = self.load()
        if base is None:
            logger.warning(
                "Dropping mutation: session %s not found locally or in storage", self.session_id
            )
            return None

        doc = base.clone()
        present = {p.id for p in doc.participants}
        for participant in self._local_participants:
            if participant.id not in present:
                doc.participants.append(
                    Participant(participant.id, participant.name, participant.color_tag, participant.role)
                )
                present.add(participant.id)

        mutator(doc)

        self._persist(doc, with_participants=True)
        self._document = doc
        await self.broadcast(doc)
        return doc

    def apply_remote_snapshot(self, doc: SessionDocument) -> bool:
        """Replace the local copy with a broadcast document.

        Accepted only when the document belongs to this session and the
        gateway is joined to it. Returns whether the snapshot was applied.
        """
        joined = self.gateway.current_session_id()
        if doc.id != self.session_id or joined != self.session_id:
            logger.debug(
                "Ignoring snapshot %s (expected %s, joined %s)", doc.id, self.session_id, joined
            )
            return False
        self._document = doc.clone()
        self._persist(self._document, with_participants=False)
        return True

    async def broadcast(self, doc: SessionDocument) -> bool:
        """Publish ``doc``; failures are logged and reported as False."""
        try:
            await self.gateway.broadcast(doc)
        except Exception as exc:
            logger.warning("Broadcast of session %s failed: %s", doc.id, exc)
            return False
        return True

    def _persist(self, doc: SessionDocument, with_participants: bool) -> None:
        try:
            self.backend.put(self.team_id, doc)
            if with_participants:
                self.backend.put_participants(self.team_id, doc.participants)
        except BackendError as exc:
            logger.warning("Persisting session %s failed: %s", doc.id, exc)
