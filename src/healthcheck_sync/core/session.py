"""HealthCheckSession: one client's handle on one shared session.

The handle owns the SessionStore, listens to the gateway, and exposes the
commands a participant or facilitator can issue. Gateway trouble never
reaches the caller: it is logged and the handle keeps working against its
local copy and storage (``degraded``).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Sequence

from ..config import EngineConfig, load_config
from ..models import ActionItem, Dimension, Participant, Phase, SessionDocument, SessionStatus
from ..persistence.backend import HttpBackend, JsonFileBackend, PersistenceBackend
from ..sync.gateway import SyncGateway, Unsubscribe
from ..sync.messages import MemberJoined, MemberLeft, RosterEntry
from . import actions as action_tracker
from . import anonymizer
from . import ratings as rating_aggregator
from . import roti as roti_collector
from .phase import PhaseController, close_session
from .roster import Presence, RosterReconciler
from .store import SessionStore

logger = logging.getLogger(__name__)


class HealthCheckSession:
    """Per-connection session actor."""

    def __init__(
        self,
        team_id: str,
        session_id: str,
        current_user: Participant,
        backend: PersistenceBackend,
        gateway: SyncGateway,
        config: EngineConfig | None = None,
        document: SessionDocument | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.current_user = current_user
        self.gateway = gateway
        self.store = SessionStore(team_id, session_id, current_user, backend, gateway, document)
        self.phases = PhaseController(self.config.phase_policy)
        self.reconciler = RosterReconciler(
            self.store,
            palette=self.config.palette,
            directory=lambda: backend.members(team_id),
        )
        self.presence = Presence([current_user.id])
        self.degraded = False
        self.closed = False
        self._unsubscribers: list[Unsubscribe] = []
        self._rebroadcast_task: asyncio.Task | None = None

    @classmethod
    def from_config(
        cls,
        team_id: str,
        session_id: str,
        current_user: Participant,
        config: EngineConfig | None = None,
        password: str | None = None,
    ) -> HealthCheckSession:
        """Build a session wired to the configured server.

        With a team ``password`` documents are stored through the server's
        team routes; without one they live in team files under ``data_dir``.
        """
        from ..sync.client import WebSocketGateway

        config = config or load_config()
        backend: PersistenceBackend
        if password is not None:
            backend = HttpBackend(config.server_url, password, palette=config.palette)
        else:
            backend = JsonFileBackend(config.data_dir, palette=config.palette)
        gateway = WebSocketGateway(config.server_url)
        return cls(team_id, session_id, current_user, backend, gateway, config)

    @property
    def session_id(self) -> str:
        return self.store.session_id

    @property
    def document(self) -> SessionDocument | None:
        return self.store.load()

    @property
    def connected_user_ids(self) -> frozenset[str]:
        return self.presence.ids

    @property
    def is_facilitator(self) -> bool:
        return self.current_user.is_facilitator

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        """Subscribe, connect and join. Never raises on gateway failure."""
        self._unsubscribers = [
            self.gateway.on_document_update(self._on_document_update),
            self.gateway.on_member_joined(self._on_member_joined),
            self.gateway.on_member_left(self._on_member_left),
            self.gateway.on_roster(self._on_roster),
        ]

        try:
            await self.gateway.connect()
            await self.gateway.join(self.session_id, self.current_user.id, self.current_user.name)
        except Exception as exc:
            self.degraded = True
            logger.warning(
                "Sync unavailable for session %s, continuing locally: %s", self.session_id, exc
            )

        doc = self.store.load()
        if doc is None:
            logger.warning("Session %s not found; commands will be dropped", self.session_id)
            return

        if doc.find_participant(self.current_user.id) is None:
            await self.store.apply_local_mutation(lambda d: None)

        if self.is_facilitator and not self.degraded:
            self._rebroadcast_task = asyncio.create_task(self._rebroadcast_later())

    async def _rebroadcast_later(self) -> None:
        await asyncio.sleep(self.config.rebroadcast_delay)
        doc = self.store.document
        if doc is not None and not self.closed:
            await self.store.broadcast(doc)

    async def close(self) -> None:
        """Stop listening and tell the gateway we left (best effort)."""
        if self.closed:
            return
        self.closed = True
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        if self._rebroadcast_task is not None and not self._rebroadcast_task.done():
            self._rebroadcast_task.cancel()
        try:
            await self.gateway.leave()
        except Exception as exc:
            logger.warning("Leave notification for session %s failed: %s", self.session_id, exc)

    async def exit(self) -> None:
        """Leave the session; a facilitator also closes it if still active."""
        doc = self.store.load()
        if self.is_facilitator and doc is not None and doc.status == SessionStatus.ACTIVE:
            await self.store.apply_local_mutation(lambda d: close_session(d, self.current_user))
        await self.close()

    # ------------------------------------------------------------------
    # Inbound events
    # ------------------------------------------------------------------

    def _accepts_events(self) -> bool:
        return not self.closed and self.gateway.current_session_id() == self.session_id

    async def _on_document_update(self, doc: SessionDocument) -> None:
        if self.closed:
            return
        self.store.apply_remote_snapshot(doc)

    async def _on_member_joined(self, event: MemberJoined) -> None:
        if not self._accepts_events():
            return
        self.presence.joined(event.user_id)
        await self.reconciler.upsert_from_join(event.user_id, event.user_name)

    async def _on_member_left(self, event: MemberLeft) -> None:
        if not self._accepts_events():
            return
        self.presence.left(event.user_id)

    async def _on_roster(self, entries: list[RosterEntry]) -> None:
        if not self._accepts_events():
            return
        self.presence.replace(entry.id for entry in entries)
        await self.reconciler.merge_roster(entries)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def rate(self, dimension_id: str, score: int) -> SessionDocument | None:
        rating_aggregator.validate_score(score)
        return await self.store.apply_local_mutation(
            lambda d: rating_aggregator.set_rating(d, self.current_user.id, dimension_id, score)
        )

    async def comment(self, dimension_id: str, text: str) -> SessionDocument | None:
        return await self.store.apply_local_mutation(
            lambda d: rating_aggregator.set_comment(d, self.current_user.id, dimension_id, text)
        )

    async def add_action(self, text: str, linked_dimension_id: str | None = None) -> SessionDocument | None:
        if not (text or "").strip():
            return self.store.load()
        return await self.store.apply_local_mutation(
            lambda d: action_tracker.add_action(d, text, linked_dimension_id)
        )

    async def toggle_action_done(self, action_id: str) -> SessionDocument | None:
        return await self.store.apply_local_mutation(
            lambda d: action_tracker.toggle_done(d, action_id, self.current_user)
        )

    async def assign_action(self, action_id: str, participant_id: str | None) -> SessionDocument | None:
        return await self.store.apply_local_mutation(
            lambda d: action_tracker.set_assignee(d, action_id, participant_id, self.current_user)
        )

    async def set_phase(self, phase: Phase | str) -> SessionDocument | None:
        return await self.store.apply_local_mutation(
            lambda d: self.phases.set_phase(d, phase, self.current_user)
        )

    async def toggle_discussion_focus(self, dimension_id: str) -> SessionDocument | None:
        return await self.store.apply_local_mutation(
            lambda d: rating_aggregator.toggle_discussion_focus(d, dimension_id, self.current_user)
        )

    async def cast_roti(self, score: int) -> SessionDocument | None:
        rating_aggregator.validate_score(score)
        return await self.store.apply_local_mutation(
            lambda d: roti_collector.cast_vote(d, self.current_user.id, score)
        )

    async def reveal_roti(self) -> SessionDocument | None:
        return await self.store.apply_local_mutation(
            lambda d: roti_collector.reveal(d, self.current_user)
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def roster(self) -> list[Participant]:
        return self.store.roster()

    def _roster_ids(self) -> list[str]:
        return [p.id for p in self.roster()]

    def _require_document(self) -> SessionDocument:
        doc = self.store.load()
        if doc is None:
            raise LookupError(f"Session {self.session_id} is not available")
        return doc

    def stats(self, dimension_id: str) -> rating_aggregator.DimensionStats:
        return rating_aggregator.dimension_stats(self._require_document(), dimension_id)

    def has_completed(self, participant_id: str | None = None) -> bool:
        return rating_aggregator.has_completed(
            self._require_document(), participant_id or self.current_user.id
        )

    def is_finished(self, participant_id: str) -> bool:
        """Finished indicator: survey completed, or ROTI cast during CLOSE."""
        return rating_aggregator.participant_progress(self._require_document(), participant_id)

    def finished_count(self) -> int:
        return rating_aggregator.finished_count(self._require_document(), self._roster_ids())

    def discussion_order(self) -> list[Dimension]:
        return rating_aggregator.discussion_order(self._require_document())

    def actions_by_dimension(self) -> dict[str, list[ActionItem]]:
        return action_tracker.group_by_dimension(self._require_document().actions)

    def roti_tally(self) -> roti_collector.RotiTally:
        return roti_collector.tally(self._require_document(), self._roster_ids())

    def label(self, participant_id: str, ordered_roster: Sequence[Participant] | None = None) -> str:
        roster = self.roster() if ordered_roster is None else ordered_roster
        return anonymizer.label(self._require_document(), participant_id, roster)
