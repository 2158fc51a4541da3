"""Phase controller for the SURVEY -> DISCUSS -> REVIEW -> CLOSE lifecycle.

The legal moves are built into a ``transitions.Machine`` from a
:class:`PhasePolicy`. The default ``free`` policy lets the facilitator jump
to any phase, including back out of CLOSE; stricter policies are opt-in.
"""

from __future__ import annotations

import logging
from enum import StrEnum
from typing import Any

from transitions import Machine, MachineError

from ..errors import FacilitatorRequiredError, PhaseTransitionError
from ..models import PHASE_ORDER, Participant, Phase, SessionDocument, SessionStatus

logger = logging.getLogger(__name__)


class PhasePolicy(StrEnum):
    """Which phase moves ``set_phase`` accepts."""

    FREE = "free"
    FORWARD_ONLY = "forward_only"
    ADJACENT = "adjacent"


def allowed_targets(source: Phase, policy: PhasePolicy) -> tuple[Phase, ...]:
    """Phases reachable from ``source`` under ``policy`` (excluding staying put)."""
    index = PHASE_ORDER.index(source)
    if policy == PhasePolicy.FREE:
        return tuple(p for p in PHASE_ORDER if p != source)
    if policy == PhasePolicy.FORWARD_ONLY:
        return PHASE_ORDER[index + 1 :]
    neighbours = []
    if index > 0:
        neighbours.append(PHASE_ORDER[index - 1])
    if index + 1 < len(PHASE_ORDER):
        neighbours.append(PHASE_ORDER[index + 1])
    return tuple(neighbours)


def _trigger_name(target: Phase) -> str:
    return f"to_{target.value.lower()}"


def build_transitions(policy: PhasePolicy) -> list[dict[str, Any]]:
    """Transition table for ``transitions.Machine``: one trigger per target phase."""
    table: list[dict[str, Any]] = []
    for target in PHASE_ORDER:
        sources = [str(p) for p in PHASE_ORDER if target in allowed_targets(p, policy)]
        # Re-selecting the current phase is always legal.
        table.append({"trigger": _trigger_name(target), "source": str(target), "dest": str(target)})
        if sources:
            table.append({"trigger": _trigger_name(target), "source": sources, "dest": str(target)})
    return table


class _PhaseModel:
    """Model object the machine attaches ``state`` and triggers to."""

    def __init__(self) -> None:
        self.state: str = str(Phase.SURVEY)


class PhaseController:
    """Reads and advances a document's phase under a fixed policy."""

    def __init__(self, policy: PhasePolicy = PhasePolicy.FREE) -> None:
        self.policy = PhasePolicy(policy)
        self._model = _PhaseModel()
        self._machine = Machine(
            model=self._model,
            states=[str(p) for p in PHASE_ORDER],
            transitions=build_transitions(self.policy),
            initial=str(Phase.SURVEY),
            auto_transitions=False,
        )

    @staticmethod
    def current(doc: SessionDocument) -> Phase:
        return doc.phase

    def can_move(self, source: Phase, target: Phase) -> bool:
        found = self._machine.get_transitions(
            trigger=_trigger_name(Phase(target)), source=str(source), dest=str(target)
        )
        return bool(found)

    def set_phase(self, doc: SessionDocument, target: Phase | str, actor: Participant) -> None:
        """Move ``doc`` to ``target`` in place.

        Raises:
            FacilitatorRequiredError: If ``actor`` is not the facilitator.
            PhaseTransitionError: If the policy forbids the move.
        """
        if not actor.is_facilitator:
            raise FacilitatorRequiredError("set_phase", actor.id)
        try:
            target_phase = Phase(target)
        except ValueError as exc:
            raise PhaseTransitionError(f"Unknown phase: {target}") from exc

        self._machine.set_state(str(doc.phase))
        try:
            self._model.trigger(_trigger_name(target_phase))
        except MachineError as exc:
            raise PhaseTransitionError(
                f"Illegal phase move under {self.policy} policy: {doc.phase} -> {target_phase}"
            ) from exc

        if doc.phase != target_phase:
            logger.info("Phase %s -> %s (session %s)", doc.phase, target_phase, doc.id)
        doc.phase = Phase(self._model.state)


def close_session(doc: SessionDocument, actor: Participant) -> bool:
    """Mark an active session CLOSED. Returns False if it was already closed."""
    if not actor.is_facilitator:
        raise FacilitatorRequiredError("close_session", actor.id)
    if doc.status == SessionStatus.CLOSED:
        return False
    doc.status = SessionStatus.CLOSED
    logger.info("Session %s closed", doc.id)
    return True
