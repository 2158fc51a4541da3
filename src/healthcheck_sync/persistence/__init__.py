"""Durable storage for session documents and team member directories."""

from .backend import (
    HttpBackend,
    InMemoryBackend,
    JsonFileBackend,
    PersistenceBackend,
    merge_team_members,
)

__all__ = [
    "HttpBackend",
    "InMemoryBackend",
    "JsonFileBackend",
    "PersistenceBackend",
    "merge_team_members",
]
