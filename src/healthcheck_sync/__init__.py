"""Session-state synchronisation and aggregation engine for team health checks.

Each connected client holds a full copy of the shared session document,
mutates it locally, and rebroadcasts the whole document; remote copies
replace the local one (last writer wins).
"""

from .config import EngineConfig, load_config
from .core.phase import PhasePolicy
from .core.session import HealthCheckSession
from .core.store import SessionStore
from .errors import (
    BackendError,
    DocumentFormatError,
    FacilitatorRequiredError,
    HealthCheckError,
    InvalidScoreError,
    PhaseTransitionError,
)
from .models import (
    ActionItem,
    Dimension,
    Participant,
    Phase,
    RatingEntry,
    Role,
    SessionDocument,
    SessionSettings,
    SessionStatus,
)

__version__ = "0.1.0"

__all__ = [
    "ActionItem",
    "BackendError",
    "Dimension",
    "DocumentFormatError",
    "EngineConfig",
    "FacilitatorRequiredError",
    "HealthCheckError",
    "HealthCheckSession",
    "InvalidScoreError",
    "Participant",
    "Phase",
    "PhasePolicy",
    "PhaseTransitionError",
    "RatingEntry",
    "Role",
    "SessionDocument",
    "SessionSettings",
    "SessionStatus",
    "SessionStore",
    "load_config",
]
