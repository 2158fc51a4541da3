"""WebSocket gateway with exponential backoff reconnection."""

from __future__ import annotations

import asyncio
import json
import logging
import random
from typing import Any, Optional

import websockets
from pydantic import ValidationError
from websockets import ConnectionClosed

from ..errors import DocumentFormatError
from ..models import SessionDocument
from .gateway import GatewaySubscriptions
from .messages import (
    JOIN_SESSION,
    LEAVE_SESSION,
    MEMBER_JOINED,
    MEMBER_LEFT,
    MEMBER_ROSTER,
    SESSION_UPDATE,
    UPDATE_SESSION,
    Envelope,
    JoinRequest,
    MemberJoined,
    MemberLeft,
    RosterEntry,
)

logger = logging.getLogger(__name__)


class ConnectionStatus:
    """Connection status constants"""
    CONNECTED = "Connected"
    RECONNECTING = "Reconnecting"
    OFFLINE = "Offline"


class WebSocketGateway(GatewaySubscriptions):
    """
    SyncGateway over a WebSocket carrying JSON ``{"event", "data"}`` frames.

    Handles:
    - Idempotent connection management
    - Session join/leave, with automatic re-join after reconnect
    - Inbound frame validation (malformed frames are dropped)
    - Reconnection with exponential backoff
    """

    MAX_RECONNECT_ATTEMPTS = 10
    BASE_DELAY_SECONDS = 0.5
    MAX_DELAY_SECONDS = 30.0
    JITTER_RANGE = 1.0

    def __init__(self, server_url: str, path: str = "/ws", auto_reconnect: bool = True) -> None:
        super().__init__()
        self.server_url = server_url.rstrip("/")
        self.path = path
        self.auto_reconnect = auto_reconnect
        self.ws: Optional[Any] = None
        self.connected = False
        self.status = ConnectionStatus.OFFLINE
        self.reconnect_attempts = 0
        self._session_id: str | None = None
        self._identity: tuple[str, str] | None = None
        self._listener: asyncio.Task | None = None
        self._closing = False

    @property
    def uri(self) -> str:
        base = self.server_url
        if base.startswith("http://"):
            base = "ws://" + base[len("http://"):]
        elif base.startswith("https://"):
            base = "wss://" + base[len("https://"):]
        return f"{base}{self.path}"

    async def connect(self) -> None:
        """Open the socket. A second call while connected does nothing."""
        if self.connected:
            return
        self._closing = False
        try:
            self.ws = await websockets.connect(self.uri)
        except Exception:
            self.connected = False
            self.status = ConnectionStatus.OFFLINE
            raise
        self.connected = True
        self.status = ConnectionStatus.CONNECTED
        self._listener = asyncio.create_task(self._listen())
        logger.info("Connected to sync server %s", self.uri)

        if self._session_id is not None and self._identity is not None:
            await self._send(
                JOIN_SESSION,
                {"sessionId": self._session_id, "userId": self._identity[0], "userName": self._identity[1]},
            )

    async def disconnect(self) -> None:
        self._closing = True
        if self._listener is not None:
            self._listener.cancel()
            self._listener = None
        if self.ws is not None:
            await self.ws.close()
            self.ws = None
        self.connected = False
        self.status = ConnectionStatus.OFFLINE
        logger.info("Disconnected from sync server")

    def get_reconnect_delay(self, attempt: int) -> float:
        """Delay in seconds (without jitter): min(0.5 * 2^attempt, 30)."""
        return min(self.BASE_DELAY_SECONDS * (2 ** attempt), self.MAX_DELAY_SECONDS)

    async def reconnect(self) -> bool:
        """Reconnect with exponential backoff. Returns False after max attempts."""
        self.status = ConnectionStatus.RECONNECTING
        while self.reconnect_attempts < self.MAX_RECONNECT_ATTEMPTS:
            delay = self.get_reconnect_delay(self.reconnect_attempts)
            delay = max(0.0, delay + random.uniform(-self.JITTER_RANGE, self.JITTER_RANGE))
            logger.info(
                "Reconnecting... (%d/%d)", self.reconnect_attempts + 1, self.MAX_RECONNECT_ATTEMPTS
            )
            await asyncio.sleep(delay)
            try:
                await self.connect()
                self.reconnect_attempts = 0
                return True
            except Exception as e:
                logger.debug("Reconnect attempt failed: %s", e)
                self.reconnect_attempts += 1

        self.status = ConnectionStatus.OFFLINE
        logger.warning("Max reconnection attempts reached; continuing offline")
        return False

    async def join(self, session_id: str, user_id: str, user_name: str) -> None:
        request = JoinRequest(session_id=session_id, user_id=user_id, user_name=user_name)
        self._session_id = request.session_id
        self._identity = (request.user_id, request.user_name)
        await self._send(JOIN_SESSION, request.model_dump(by_alias=True))

    async def leave(self) -> None:
        session_id, self._session_id = self._session_id, None
        if session_id is not None and self.connected:
            await self._send(LEAVE_SESSION, {"sessionId": session_id})

    async def broadcast(self, document: SessionDocument) -> None:
        await self._send(UPDATE_SESSION, document.to_dict())

    def current_session_id(self) -> str | None:
        return self._session_id

    async def _send(self, event: str, data: Any) -> None:
        if not self.connected or self.ws is None:
            raise ConnectionError("Not connected to server")
        try:
            await self.ws.send(json.dumps({"event": event, "data": data}))
        except ConnectionClosed:
            self.connected = False
            self.status = ConnectionStatus.OFFLINE
            raise ConnectionError("Connection closed")

    async def _listen(self) -> None:
        try:
            async for message in self.ws:
                await self.handle_frame(message)
        except ConnectionClosed:
            logger.info("Connection closed by server")
        self.connected = False
        self.status = ConnectionStatus.OFFLINE
        if self.auto_reconnect and not self._closing:
            await self.reconnect()

    async def handle_frame(self, raw: str | bytes) -> None:
        """Decode one inbound frame and dispatch it to subscribers."""
        try:
            envelope = Envelope.model_validate(json.loads(raw))
        except (ValueError, ValidationError) as exc:
            logger.warning("Dropping malformed frame: %s", exc)
            return

        try:
            if envelope.event == SESSION_UPDATE:
                payload: Any = SessionDocument.from_dict(envelope.data)
            elif envelope.event == MEMBER_JOINED:
                payload = MemberJoined.model_validate(envelope.data)
            elif envelope.event == MEMBER_LEFT:
                payload = MemberLeft.model_validate(envelope.data)
            elif envelope.event == MEMBER_ROSTER:
                payload = [RosterEntry.model_validate(entry) for entry in envelope.data or []]
            else:
                logger.debug("Ignoring unknown event %s", envelope.event)
                return
        except (ValidationError, DocumentFormatError, TypeError) as exc:
            logger.warning("Dropping invalid %s payload: %s", envelope.event, exc)
            return

        await self._registry.dispatch(envelope.event, payload)
