"""Shared fixtures for engine tests."""

from __future__ import annotations

import pytest

from healthcheck_sync.config import EngineConfig
from healthcheck_sync.models import (
    Dimension,
    Participant,
    Role,
    SessionDocument,
)
from healthcheck_sync.persistence.backend import InMemoryBackend
from healthcheck_sync.sync.gateway import LoopbackHub

TEAM_ID = "team-1"
SESSION_ID = "hc-1"


@pytest.fixture
def dimensions() -> list[Dimension]:
    return [
        Dimension("speed", "Speed", "We ship fast", "We are stuck"),
        Dimension("fun", "Fun", "We enjoy it", "It is a chore"),
        Dimension("value", "Value", "We deliver value", "Nobody uses it"),
    ]


@pytest.fixture
def facilitator() -> Participant:
    return Participant("fac", "Fiona", "bg-indigo-500", Role.FACILITATOR)


@pytest.fixture
def alice() -> Participant:
    return Participant("alice", "Alice", "bg-emerald-500", Role.PARTICIPANT)


@pytest.fixture
def bob() -> Participant:
    return Participant("bob", "Bob", "bg-amber-500", Role.PARTICIPANT)


@pytest.fixture
def document(dimensions, facilitator, alice, bob) -> SessionDocument:
    """Fresh ACTIVE session in SURVEY with three participants."""
    return SessionDocument(
        id=SESSION_ID,
        team_id=TEAM_ID,
        name="Sprint 42",
        dimensions=list(dimensions),
        participants=[facilitator, alice, bob],
    )


@pytest.fixture
def backend(document) -> InMemoryBackend:
    """In-memory backend pre-loaded with ``document``."""
    store = InMemoryBackend()
    store.put(TEAM_ID, document)
    return store


@pytest.fixture
def hub() -> LoopbackHub:
    return LoopbackHub()


@pytest.fixture
def config() -> EngineConfig:
    """Config with no rebroadcast delay so tests never sleep."""
    return EngineConfig(rebroadcast_delay=0.0)
