"""Follow-up action items raised during a session."""

from __future__ import annotations

import logging
from typing import Iterable

from ..errors import FacilitatorRequiredError
from ..identifiers import new_id
from ..models import ActionItem, ActionType, Participant, SessionDocument

logger = logging.getLogger(__name__)

GENERAL_BUCKET = "general"


def add_action(
    doc: SessionDocument,
    text: str,
    linked_dimension_id: str | None = None,
) -> ActionItem | None:
    """Append a new action. Any participant may add one.

    Returns the created action, or None when ``text`` is blank or the linked
    dimension does not exist.
    """
    cleaned = (text or "").strip()
    if not cleaned:
        return None
    if linked_dimension_id is not None and not doc.has_dimension(linked_dimension_id):
        logger.debug("Ignoring action linked to unknown dimension %s", linked_dimension_id)
        return None

    action = ActionItem(
        id=new_id(),
        text=cleaned,
        assignee_id=None,
        done=False,
        type=ActionType.NEW,
        linked_dimension_id=linked_dimension_id,
        proposal_votes={},
    )
    doc.actions.append(action)
    return action


def toggle_done(doc: SessionDocument, action_id: str, actor: Participant) -> None:
    if not actor.is_facilitator:
        raise FacilitatorRequiredError("toggle_done", actor.id)
    action = doc.find_action(action_id)
    if action is None:
        logger.debug("toggle_done: no action %s", action_id)
        return
    action.done = not action.done


def set_assignee(
    doc: SessionDocument,
    action_id: str,
    participant_id: str | None,
    actor: Participant,
) -> None:
    """Assign (or with None, unassign) an action. Unknown ids are a no-op."""
    if not actor.is_facilitator:
        raise FacilitatorRequiredError("set_assignee", actor.id)
    action = doc.find_action(action_id)
    if action is None:
        logger.debug("set_assignee: no action %s", action_id)
        return
    if participant_id is not None and doc.find_participant(participant_id) is None:
        logger.debug("set_assignee: %s is not on the roster", participant_id)
        return
    action.assignee_id = participant_id


def group_by_dimension(actions: Iterable[ActionItem]) -> dict[str, list[ActionItem]]:
    """Bucket actions by linked dimension, keeping insertion order per bucket.

    Actions without a link land in :data:`GENERAL_BUCKET`.
    """
    groups: dict[str, list[ActionItem]] = {}
    for action in actions:
        key = action.linked_dimension_id or GENERAL_BUCKET
        groups.setdefault(key, []).append(action)
    return groups
