"""Persistence backends for session documents and team member directories.

A backend is a plain key-value store with last-write-wins semantics:
documents are keyed by (team id, session id) and every write replaces the
previous value wholesale.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Iterable, Protocol, Sequence, runtime_checkable
from urllib.parse import quote

import httpx

from ..config import DEFAULT_PALETTE
from ..errors import BackendError, DocumentFormatError
from ..models import Participant, Role, SessionDocument

logger = logging.getLogger(__name__)


@runtime_checkable
class PersistenceBackend(Protocol):
    """Durable per-team storage. Calls are synchronous."""

    def get(self, team_id: str, session_id: str) -> SessionDocument | None: ...

    def put(self, team_id: str, document: SessionDocument) -> None: ...

    def put_participants(self, team_id: str, participants: Sequence[Participant]) -> None: ...

    def members(self, team_id: str) -> list[Participant]: ...


def _normalize_name(name: str) -> str:
    return name.strip().lower()


def merge_team_members(
    members: Sequence[Participant],
    participants: Iterable[Participant],
    palette: Sequence[str],
) -> tuple[list[Participant], bool]:
    """Fold session participants into a team member directory.

    A participant matches a member by id or by case-insensitive name; a
    match only refreshes the stored name. Unknown participants are appended
    as role ``participant`` keeping their colour, or taking the palette
    colour at the directory's current size.

    Returns the merged list and whether anything changed.
    """
    merged = [Participant(m.id, m.name, m.color_tag, m.role) for m in members]
    changed = False

    for participant in participants:
        existing = next(
            (
                m
                for m in merged
                if m.id == participant.id or _normalize_name(m.name) == _normalize_name(participant.name)
            ),
            None,
        )
        if existing is not None:
            if existing.name != participant.name:
                existing.name = participant.name
                changed = True
            continue

        merged.append(
            Participant(
                id=participant.id,
                name=participant.name,
                color_tag=participant.color_tag or palette[len(merged) % len(palette)],
                role=Role.PARTICIPANT,
            )
        )
        changed = True

    return merged, changed


class InMemoryBackend:
    """Dictionary-backed backend, shared by loopback clients and tests."""

    def __init__(
        self,
        members: dict[str, list[Participant]] | None = None,
        palette: Sequence[str] | None = None,
    ) -> None:
        self._documents: dict[tuple[str, str], dict[str, Any]] = {}
        self._members: dict[str, list[Participant]] = {k: list(v) for k, v in (members or {}).items()}
        self._palette = tuple(palette or DEFAULT_PALETTE)

    def get(self, team_id: str, session_id: str) -> SessionDocument | None:
        raw = self._documents.get((team_id, session_id))
        return SessionDocument.from_dict(raw) if raw is not None else None

    def put(self, team_id: str, document: SessionDocument) -> None:
        # Stored serialised so callers can never share state with the backend.
        self._documents[(team_id, document.id)] = json.loads(json.dumps(document.to_dict()))

    def put_participants(self, team_id: str, participants: Sequence[Participant]) -> None:
        merged, changed = merge_team_members(self._members.get(team_id, []), participants, self._palette)
        if changed:
            self._members[team_id] = merged

    def members(self, team_id: str) -> list[Participant]:
        return list(self._members.get(team_id, []))


class JsonFileBackend:
    """One JSON file per team: ``{"teamId", "members", "healthChecks"}``.

    Writes go to a temp file in the same directory and are renamed over the
    target, so a crash never leaves a half-written team file.
    """

    def __init__(self, data_dir: Path, palette: Sequence[str] | None = None) -> None:
        self.data_dir = Path(data_dir)
        self._palette = tuple(palette or DEFAULT_PALETTE)

    def _team_path(self, team_id: str) -> Path:
        # Percent-escaping keeps distinct team ids in distinct files.
        safe = quote(team_id, safe="")
        return self.data_dir / f"{safe}.json"

    def _load_team(self, team_id: str) -> dict[str, Any]:
        path = self._team_path(team_id)
        if not path.exists():
            return {"teamId": team_id, "members": [], "healthChecks": []}
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise BackendError(f"Failed to read {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise BackendError(f"Team file {path} does not contain a JSON object")
        data.setdefault("members", [])
        data.setdefault("healthChecks", [])
        return data

    def _save_team(self, team_id: str, data: dict[str, Any]) -> None:
        path = self._team_path(team_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, sort_keys=True)
            os.replace(tmp_path, path)
        except OSError as exc:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise BackendError(f"Failed to write {path}: {exc}") from exc

    def get(self, team_id: str, session_id: str) -> SessionDocument | None:
        for raw in self._load_team(team_id)["healthChecks"]:
            if isinstance(raw, dict) and raw.get("id") == session_id:
                try:
                    return SessionDocument.from_dict(raw)
                except DocumentFormatError as exc:
                    raise BackendError(f"Stored session {session_id} is corrupt: {exc}") from exc
        return None

    def put(self, team_id: str, document: SessionDocument) -> None:
        data = self._load_team(team_id)
        payload = document.to_dict()
        payload["teamId"] = team_id
        checks = data["healthChecks"]
        for index, raw in enumerate(checks):
            if isinstance(raw, dict) and raw.get("id") == document.id:
                checks[index] = payload
                break
        else:
            checks.insert(0, payload)
        self._save_team(team_id, data)

    def put_participants(self, team_id: str, participants: Sequence[Participant]) -> None:
        data = self._load_team(team_id)
        current = [Participant.from_dict(m) for m in data["members"]]
        merged, changed = merge_team_members(current, participants, self._palette)
        if not changed:
            return
        data["members"] = [m.to_dict() for m in merged]
        self._save_team(team_id, data)

    def members(self, team_id: str) -> list[Participant]:
        return [Participant.from_dict(m) for m in self._load_team(team_id)["members"]]


class HttpBackend:
    """Client for the team REST routes of the health-check server.

    Every route authenticates with the team password in the JSON body.
    """

    def __init__(
        self,
        server_url: str,
        password: str,
        client: httpx.Client | None = None,
        palette: Sequence[str] | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.server_url = server_url.rstrip("/")
        self._password = password
        self._client = client or httpx.Client(base_url=self.server_url, timeout=timeout)
        self._palette = tuple(palette or DEFAULT_PALETTE)

    def close(self) -> None:
        self._client.close()

    def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        try:
            response = self._client.post(path, json={"password": self._password, **body})
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as exc:
            raise BackendError(f"POST {path} failed: HTTP {exc.response.status_code}") from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise BackendError(f"POST {path} failed: {exc}") from exc
        return data if isinstance(data, dict) else {}

    def _fetch_team(self, team_id: str) -> dict[str, Any]:
        team = self._post(f"/api/team/{team_id}", {}).get("team")
        if not isinstance(team, dict):
            raise BackendError(f"Server returned no team for {team_id}")
        return team

    def get(self, team_id: str, session_id: str) -> SessionDocument | None:
        for raw in self._fetch_team(team_id).get("healthChecks") or []:
            if isinstance(raw, dict) and raw.get("id") == session_id:
                try:
                    return SessionDocument.from_dict(raw)
                except DocumentFormatError as exc:
                    raise BackendError(f"Server session {session_id} is corrupt: {exc}") from exc
        return None

    def put(self, team_id: str, document: SessionDocument) -> None:
        self._post(
            f"/api/team/{team_id}/healthcheck/{document.id}",
            {"healthCheck": document.to_dict()},
        )

    def put_participants(self, team_id: str, participants: Sequence[Participant]) -> None:
        current = self.members(team_id)
        merged, changed = merge_team_members(current, participants, self._palette)
        if not changed:
            return
        self._post(f"/api/team/{team_id}/members", {"members": [m.to_dict() for m in merged]})

    def members(self, team_id: str) -> list[Participant]:
        return [
            Participant.from_dict(m)
            for m in self._fetch_team(team_id).get("members") or []
            if isinstance(m, dict) and "id" in m
        ]
