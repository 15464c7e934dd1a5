# src/parley/services/relay.py
"""Real-time chat relay.

A ``ConnectionHandler`` drives the per-socket protocol
(``UNJOINED -> JOINED -> CLOSED``) and a shared ``RelayHub`` owns the
collaborators every handler needs: the presence registry and the message
store. Handlers on different sockets interleave on one event loop, so shared
state is only touched through single synchronous registry calls; store calls
run in worker threads.
"""

from __future__ import annotations

import asyncio
import enum
import json
import logging
from collections import defaultdict
from typing import Any, Literal

from fastapi import WebSocketDisconnect
from pydantic import ValidationError

from parley.core.settings import settings
from parley.models import conversation_id_for
from parley.schemas.relay import (
    KNOWN_FRAME_TYPES,
    JoinFrame,
    MessageFrame,
    TypingFrame,
    history_frame,
    inbound_frame_adapter,
    send_failed_frame,
    typing_frame,
    user_status_frame,
)
from parley.services.message_store import MessageStore, MessageStoreError, StoredMessage
from parley.services.presence import Connection, PresenceRegistry

logger = logging.getLogger(__name__)

# Errors a transport may raise when the peer has already gone away.
SEND_ERRORS = (WebSocketDisconnect, RuntimeError, OSError)


class RelayAuthError(Exception):
    """Raised when a socket's credentials do not match the identity it claims."""


class ConnectionState(enum.Enum):
    """Lifecycle of a single relay connection."""

    UNJOINED = "unjoined"
    JOINED = "joined"
    CLOSED = "closed"


class DeliveryOutcome(enum.Enum):
    """Result of trying to hand a frame to a peer's live connection."""

    DELIVERED = "delivered"
    PEER_OFFLINE = "peer_offline"
    SEND_FAILED = "send_failed"


async def send_frame(connection: Connection, payload: dict[str, Any]) -> bool:
    """Send ``payload`` and report whether the transport accepted it."""
    try:
        await connection.send_json(payload)
    except SEND_ERRORS as exc:
        logger.debug("Dropping %s frame: %s", payload.get("type"), exc)
        return False
    return True


class RelayHub:
    """Shared state and collaborators for every relay connection."""

    def __init__(
        self,
        registry: PresenceRegistry,
        store: MessageStore,
        *,
        history_limit: int | None = None,
        broadcast_scope: Literal["all", "peers"] | None = None,
    ) -> None:
        self.registry = registry
        self.store = store
        self.history_limit = history_limit or settings.relay_history_limit
        self.broadcast_scope = broadcast_scope or settings.relay_broadcast_scope
        self._peers: defaultdict[str, set[str]] = defaultdict(set)

    def open(
        self,
        connection: Connection,
        authenticated_user_id: str | None = None,
    ) -> ConnectionHandler:
        """Create the protocol handler for a freshly accepted socket."""
        return ConnectionHandler(self, connection, authenticated_user_id=authenticated_user_id)

    def connection_count(self) -> int:
        return len(self.registry)

    def is_user_online_anywhere(self, user_id: str) -> bool:
        return self.registry.is_online_anywhere(user_id)

    async def refresh_presence(self) -> int:
        """Renew presence hints for every open socket on this process."""
        live = [
            user_id
            for user_id, connection in self.registry.connections()
            if self.registry.is_open(connection)
        ]
        return await asyncio.to_thread(self.registry.refresh, live)

    async def keep_presence_alive(self, interval: float | None = None) -> None:
        """Refresh presence hints until cancelled."""
        interval = interval or settings.presence_heartbeat_seconds
        while True:
            await asyncio.sleep(interval)
            renewed = await self.refresh_presence()
            logger.debug("Refreshed presence for %d users", renewed)

    def note_interest(self, user_id: str, target_user_id: str) -> None:
        """Remember that two users have a conversation open with each other."""
        self._peers[user_id].add(target_user_id)
        self._peers[target_user_id].add(user_id)

    def forget(self, user_id: str) -> set[str]:
        """Drop ``user_id`` from the interest map and return its peers."""
        peers = self._peers.pop(user_id, set())
        for peer_id in peers:
            others = self._peers.get(peer_id)
            if others is not None:
                others.discard(user_id)
                if not others:
                    del self._peers[peer_id]
        return peers

    async def load_history(self, conversation_id: str) -> list[StoredMessage]:
        try:
            return await asyncio.to_thread(self.store.history, conversation_id, self.history_limit)
        except MessageStoreError as exc:
            logger.error("Failed to load history for %s: %s", conversation_id, exc, exc_info=True)
            return []

    async def deliver_if_online(self, user_id: str, payload: dict[str, Any]) -> DeliveryOutcome:
        """Forward ``payload`` to ``user_id`` if that user has an open socket here."""
        connection = self.registry.get(user_id)
        if connection is None or not self.registry.is_open(connection):
            return DeliveryOutcome.PEER_OFFLINE
        if await send_frame(connection, payload):
            return DeliveryOutcome.DELIVERED
        return DeliveryOutcome.SEND_FAILED

    async def broadcast_offline(self, user_id: str, peers: set[str]) -> int:
        """Tell other connections that ``user_id`` went offline."""
        payload = user_status_frame(user_id, False)
        if self.broadcast_scope == "peers":
            recipients = [
                (peer_id, connection)
                for peer_id in sorted(peers)
                if (connection := self.registry.get(peer_id)) is not None
            ]
        else:
            recipients = self.registry.connections()

        notified = 0
        for _, connection in recipients:
            if self.registry.is_open(connection) and await send_frame(connection, payload):
                notified += 1
        return notified

    async def close_all(self) -> None:
        """Close every registered socket; used on shutdown."""
        for user_id, connection in self.registry.connections():
            try:
                await connection.close(code=1001)
            except SEND_ERRORS as exc:
                logger.debug("Error closing connection for %s: %s", user_id, exc)
        self.registry.clear()
        self._peers.clear()
        logger.info("All relay connections closed")


class ConnectionHandler:
    """Protocol state machine for one relay socket."""

    def __init__(
        self,
        hub: RelayHub,
        connection: Connection,
        authenticated_user_id: str | None = None,
    ) -> None:
        self.hub = hub
        self.connection = connection
        self.authenticated_user_id = authenticated_user_id
        self.state = ConnectionState.UNJOINED
        self.user_id: str | None = None
        self.user_name: str | None = None
        self.target_user_id: str | None = None

    async def handle_text(self, raw: str | bytes) -> None:
        """Parse one inbound frame and dispatch it.

        Malformed frames are logged and ignored; the socket stays open.
        """
        if self.state is ConnectionState.CLOSED:
            return

        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError, TypeError) as exc:
            logger.warning("Ignoring malformed frame from %s: %s", self.user_id or "unjoined", exc)
            return

        if not isinstance(data, dict):
            logger.warning("Ignoring non-object frame from %s", self.user_id or "unjoined")
            return

        frame_type = data.get("type")
        if frame_type not in KNOWN_FRAME_TYPES:
            logger.warning("Unknown message type: %r", frame_type)
            return

        try:
            frame = inbound_frame_adapter.validate_python(data)
        except ValidationError as exc:
            logger.warning("Ignoring invalid %s frame: %s", frame_type, exc.errors())
            return

        logger.debug("Received %s from %s", frame_type, self.user_id or "unjoined")
        if isinstance(frame, JoinFrame):
            await self.join(frame)
        elif isinstance(frame, MessageFrame):
            await self.message(frame)
        elif isinstance(frame, TypingFrame):
            await self.typing(frame)

    async def join(self, frame: JoinFrame) -> None:
        """Register presence, replay history and exchange online status."""
        if self.state is not ConnectionState.UNJOINED:
            logger.warning("Ignoring repeated join on connection for %s", self.user_id)
            return

        if self.authenticated_user_id is not None and frame.user_id != self.authenticated_user_id:
            logger.warning(
                "Rejecting join as %s from socket authenticated as %s",
                frame.user_id,
                self.authenticated_user_id,
            )
            return

        registry = self.hub.registry
        replaced = registry.set(frame.user_id, self.connection)
        if replaced is not None:
            logger.info("User %s re-joined; previous connection replaced", frame.user_id)

        self.user_id = frame.user_id
        self.user_name = frame.user_name
        self.target_user_id = frame.target_user_id
        self.state = ConnectionState.JOINED
        self.hub.note_interest(frame.user_id, frame.target_user_id)

        logger.info(
            "User %s (ID: %s) joined; %d connections",
            frame.user_name,
            frame.user_id,
            self.hub.connection_count(),
        )

        conversation_id = conversation_id_for(frame.user_id, frame.target_user_id)
        history = await self.hub.load_history(conversation_id)
        if history:
            await send_frame(self.connection, history_frame([m.to_wire() for m in history]))

        target_online = registry.is_online(frame.target_user_id)
        await send_frame(self.connection, user_status_frame(frame.target_user_id, target_online))

        if target_online:
            await self.hub.deliver_if_online(
                frame.target_user_id, user_status_frame(frame.user_id, True)
            )

    async def message(self, frame: MessageFrame) -> None:
        """Persist a message, try to hand it to the peer, and echo the outcome."""
        if self.state is not ConnectionState.JOINED:
            logger.warning("Ignoring message on a connection that has not joined")
            return
        if frame.sender_id != self.user_id:
            logger.warning(
                "Ignoring message from %s on connection joined as %s", frame.sender_id, self.user_id
            )
            return

        sender_name = frame.sender_name or self.user_name or ""
        try:
            stored = await asyncio.to_thread(
                self.hub.store.append,
                frame.sender_id,
                frame.target_user_id,
                sender_name,
                frame.text,
            )
        except ValueError as exc:
            logger.warning("Rejected message from %s: %s", frame.sender_id, exc)
            await send_frame(
                self.connection, send_failed_frame("invalid_message", frame.text, frame.timestamp)
            )
            return
        except MessageStoreError as exc:
            logger.error("Failed to save message from %s: %s", frame.sender_id, exc, exc_info=True)
            await send_frame(
                self.connection, send_failed_frame("store_unavailable", frame.text, frame.timestamp)
            )
            return

        wire = {"type": "message", **stored.to_wire()}
        outcome = await self.hub.deliver_if_online(frame.target_user_id, wire)
        delivered = outcome is DeliveryOutcome.DELIVERED

        if delivered:
            try:
                await asyncio.to_thread(self.hub.store.mark_delivered, stored.id)
            except MessageStoreError as exc:
                logger.error("Failed to record delivery of message %s: %s", stored.id, exc)
            logger.info("Message %s delivered to %s (online)", stored.id, frame.target_user_id)
        else:
            logger.info(
                "Message %s saved for %s (%s)", stored.id, frame.target_user_id, outcome.value
            )

        await send_frame(self.connection, {**wire, "delivered": delivered})

    async def typing(self, frame: TypingFrame) -> None:
        """Forward a typing indicator; never persisted, never retried."""
        if self.state is not ConnectionState.JOINED:
            return
        if frame.user_id != self.user_id:
            logger.warning(
                "Ignoring typing from %s on connection joined as %s", frame.user_id, self.user_id
            )
            return
        await self.hub.deliver_if_online(frame.target_user_id, typing_frame(frame.user_id))

    async def close(self) -> None:
        """Tear down presence; safe to call more than once."""
        if self.state is ConnectionState.CLOSED:
            return

        was_joined = self.state is ConnectionState.JOINED
        self.state = ConnectionState.CLOSED
        if not was_joined or self.user_id is None:
            return

        if not self.hub.registry.remove(self.user_id, self.connection):
            # A newer socket for the same user owns the registry entry.
            logger.info("Stale connection for %s closed", self.user_id)
            return

        peers = self.hub.forget(self.user_id)
        logger.info(
            "User %s disconnected; %d connections",
            self.user_id,
            self.hub.connection_count(),
        )
        await self.hub.broadcast_offline(self.user_id, peers)
