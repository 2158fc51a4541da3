"""Exception hierarchy for the health-check session engine."""

from __future__ import annotations


class HealthCheckError(Exception):
    """Base class for all engine errors."""


class FacilitatorRequiredError(HealthCheckError, PermissionError):
    """Raised when a facilitator-only operation is invoked by another role."""

    def __init__(self, operation: str, actor_id: str | None = None) -> None:
        self.operation = operation
        self.actor_id = actor_id
        who = f"participant {actor_id!r}" if actor_id else "caller"
        super().__init__(f"{operation} requires the facilitator role ({who} is not facilitator)")


class InvalidScoreError(HealthCheckError, ValueError):
    """Raised when a rating or ROTI score falls outside 1..5."""


class PhaseTransitionError(HealthCheckError):
    """Raised when the configured phase policy rejects a move."""


class DocumentFormatError(HealthCheckError, ValueError):
    """Raised when a session document cannot be parsed."""


class BackendError(HealthCheckError):
    """Raised when the persistence backend fails to read or write."""
