"""Identifier generation shared by every entity-creation path."""

from __future__ import annotations

import ulid


def new_id() -> str:
    """Return a new collision-resistant identifier (26-char ULID string)."""
    return str(ulid.ULID())
