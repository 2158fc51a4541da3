"""SyncGateway contract, subscription plumbing and an in-process hub.

The gateway is the engine's only view of the real-time channel: it can
connect, join and leave one session, publish whole documents, and deliver
four kinds of inbound events. Everything here is asynchronous and may fail.
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Protocol, Union, runtime_checkable

from ..models import SessionDocument
from .messages import (
    MEMBER_JOINED,
    MEMBER_LEFT,
    MEMBER_ROSTER,
    SESSION_UPDATE,
    MemberJoined,
    MemberLeft,
    RosterEntry,
)

logger = logging.getLogger(__name__)

Callback = Callable[[Any], Union[None, Awaitable[None]]]
Unsubscribe = Callable[[], None]


@runtime_checkable
class SyncGateway(Protocol):
    async def connect(self) -> None: ...

    async def join(self, session_id: str, user_id: str, user_name: str) -> None: ...

    async def leave(self) -> None: ...

    async def broadcast(self, document: SessionDocument) -> None: ...

    def on_document_update(self, callback: Callable[[SessionDocument], Any]) -> Unsubscribe: ...

    def on_member_joined(self, callback: Callable[[MemberJoined], Any]) -> Unsubscribe: ...

    def on_member_left(self, callback: Callable[[MemberLeft], Any]) -> Unsubscribe: ...

    def on_roster(self, callback: Callable[[list[RosterEntry]], Any]) -> Unsubscribe: ...

    def current_session_id(self) -> str | None: ...


class SubscriptionRegistry:
    """Callback lists keyed by channel event name.

    Callbacks may be plain functions or coroutines. A callback that raises is
    logged and skipped; the remaining callbacks still run.
    """

    def __init__(self) -> None:
        self._callbacks: dict[str, list[Callback]] = {}

    def subscribe(self, event: str, callback: Callback) -> Unsubscribe:
        self._callbacks.setdefault(event, []).append(callback)

        def unsubscribe() -> None:
            callbacks = self._callbacks.get(event, [])
            if callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    def count(self, event: str) -> int:
        return len(self._callbacks.get(event, []))

    async def dispatch(self, event: str, payload: Any) -> None:
        for callback in list(self._callbacks.get(event, [])):
            try:
                result = callback(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.warning("Subscriber for %s failed", event, exc_info=True)


class GatewaySubscriptions:
    """Mixin providing the four ``on_*`` subscription methods."""

    def __init__(self) -> None:
        self._registry = SubscriptionRegistry()

    def on_document_update(self, callback: Callable[[SessionDocument], Any]) -> Unsubscribe:
        return self._registry.subscribe(SESSION_UPDATE, callback)

    def on_member_joined(self, callback: Callable[[MemberJoined], Any]) -> Unsubscribe:
        return self._registry.subscribe(MEMBER_JOINED, callback)

    def on_member_left(self, callback: Callable[[MemberLeft], Any]) -> Unsubscribe:
        return self._registry.subscribe(MEMBER_LEFT, callback)

    def on_roster(self, callback: Callable[[list[RosterEntry]], Any]) -> Unsubscribe:
        return self._registry.subscribe(MEMBER_ROSTER, callback)


class LoopbackHub:
    """In-process stand-in for the relay server.

    Fans broadcasts out to every *other* gateway joined to the same session,
    and sends membership events the way the server does: the full roster to
    everyone in the room, then ``member-joined`` to everyone but the joiner.

    With ``auto_deliver=False`` document broadcasts are queued until
    :meth:`flush`, which lets tests interleave two clients' writes.
    """

    def __init__(self, auto_deliver: bool = True) -> None:
        self.auto_deliver = auto_deliver
        self._rooms: dict[str, dict[LoopbackGateway, tuple[str, str]]] = {}
        self._pending: list[tuple[LoopbackGateway, str, dict[str, Any]]] = []

    def gateway(self) -> LoopbackGateway:
        return LoopbackGateway(self)

    def members(self, session_id: str) -> list[RosterEntry]:
        room = self._rooms.get(session_id, {})
        return [RosterEntry(id=uid, name=name) for uid, name in room.values()]

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def _join(self, gateway: LoopbackGateway, session_id: str, user_id: str, user_name: str) -> None:
        room = self._rooms.setdefault(session_id, {})
        room[gateway] = (user_id, user_name)
        roster = self.members(session_id)
        for member in list(room):
            await member._deliver(MEMBER_ROSTER, roster)
        joined = MemberJoined(user_id=user_id, user_name=user_name)
        for member in list(room):
            if member is not gateway:
                await member._deliver(MEMBER_JOINED, joined)

    async def _leave(self, gateway: LoopbackGateway, session_id: str) -> None:
        room = self._rooms.get(session_id, {})
        identity = room.pop(gateway, None)
        if identity is None:
            return
        left = MemberLeft(user_id=identity[0], user_name=identity[1])
        roster = self.members(session_id)
        for member in list(room):
            await member._deliver(MEMBER_LEFT, left)
            await member._deliver(MEMBER_ROSTER, roster)

    async def _publish(self, sender: LoopbackGateway, session_id: str, payload: dict[str, Any]) -> None:
        self._pending.append((sender, session_id, payload))
        if self.auto_deliver:
            await self.flush()

    async def flush(self) -> int:
        """Deliver queued broadcasts in order. Returns how many were sent."""
        delivered = 0
        while self._pending:
            sender, session_id, payload = self._pending.pop(0)
            for member in list(self._rooms.get(session_id, {})):
                if member is not sender:
                    await member._deliver(SESSION_UPDATE, SessionDocument.from_dict(payload))
            delivered += 1
        return delivered


class LoopbackGateway(GatewaySubscriptions):
    """A client's connection to a :class:`LoopbackHub`."""

    def __init__(self, hub: LoopbackHub) -> None:
        super().__init__()
        self._hub = hub
        self._session_id: str | None = None
        self.connected = False

    async def connect(self) -> None:
        self.connected = True

    async def join(self, session_id: str, user_id: str, user_name: str) -> None:
        if not self.connected:
            raise ConnectionError("Not connected")
        if self._session_id is not None and self._session_id != session_id:
            await self.leave()
        self._session_id = session_id
        await self._hub._join(self, session_id, user_id, user_name)

    async def leave(self) -> None:
        session_id, self._session_id = self._session_id, None
        if session_id is not None:
            await self._hub._leave(self, session_id)

    async def broadcast(self, document: SessionDocument) -> None:
        if not self.connected or self._session_id is None:
            raise ConnectionError("Not joined to a session")
        await self._hub._publish(self, self._session_id, document.to_dict())

    def current_session_id(self) -> str | None:
        return self._session_id

    async def _deliver(self, event: str, payload: Any) -> None:
        await self._registry.dispatch(event, payload)
