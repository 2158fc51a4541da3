"""Inbound/outbound message shapes for the real-time channel.

Field aliases match the camelCase names the server and browsers use.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Channel event names
JOIN_SESSION = "join-session"
LEAVE_SESSION = "leave-session"
UPDATE_SESSION = "update-session"
SESSION_UPDATE = "session-update"
MEMBER_JOINED = "member-joined"
MEMBER_LEFT = "member-left"
MEMBER_ROSTER = "member-roster"


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")


class MemberJoined(_Payload):
    user_id: str = Field(alias="userId", min_length=1)
    user_name: str = Field(alias="userName", default="")


class MemberLeft(_Payload):
    user_id: str = Field(alias="userId", min_length=1)
    user_name: str | None = Field(alias="userName", default=None)


class RosterEntry(_Payload):
    id: str = Field(min_length=1)
    name: str = ""


class JoinRequest(_Payload):
    session_id: str = Field(alias="sessionId", min_length=1)
    user_id: str = Field(alias="userId", min_length=1)
    user_name: str = Field(alias="userName")


class Envelope(BaseModel):
    """``{"event": name, "data": payload}`` frame."""

    model_config = ConfigDict(extra="ignore")

    event: str
    data: Any = None

    @field_validator("event")
    @classmethod
    def _event_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("event name must not be blank")
        return v
