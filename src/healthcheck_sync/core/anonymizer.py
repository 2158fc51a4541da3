"""Display labels for participants when the session is anonymous.

Anonymous labels are positional: ``Participant N`` is the N-th roster entry,
so a participant inserted earlier in the roster shifts everyone after it.
"""

from __future__ import annotations

from typing import Sequence

from ..models import Participant, SessionDocument


def label(doc: SessionDocument, participant_id: str, ordered_roster: Sequence[Participant]) -> str:
    if not doc.settings.is_anonymous:
        for participant in ordered_roster:
            if participant.id == participant_id:
                return participant.name
        found = doc.find_participant(participant_id)
        return found.name if found else participant_id

    for index, participant in enumerate(ordered_roster):
        if participant.id == participant_id:
            return f"Participant {index + 1}"
    return f"Participant {len(ordered_roster) + 1}"


def initials(display_name: str) -> str:
    return display_name[:2].upper()
