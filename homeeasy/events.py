"""Live event fan-out: connection registry, channels and the notifier.

Every live connection owns a bounded queue. Emitting only enqueues, so a
slow or dead socket can never block the request that produced the event;
the connection's own sender task does the network write. When a queue is
full the event is dropped (delivery is at-most-once).
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any

from fastapi.encoders import jsonable_encoder

from homeeasy.config import settings
from homeeasy.ids import connection_id
from homeeasy.presence import Presence

logger = logging.getLogger("homeeasy.events")


def user_channel(user_id: str) -> str:
    return f"user:{user_id}"


def conversation_channel(conversation_id: str) -> str:
    return f"conversation:{conversation_id}"


@dataclass
class Event:
    type: str
    data: dict[str, Any] = field(default_factory=dict)

    def frame(self) -> dict[str, Any]:
        return {**self.data, "type": self.type}


class Connection:
    def __init__(self, user_id: str, queue_size: int) -> None:
        self.id = connection_id()
        self.user_id = user_id
        self.queue: asyncio.Queue[Event | None] = asyncio.Queue(maxsize=queue_size)
        self.channels: set[str] = set()

    def close(self) -> None:
        """Wake the sender with the stop sentinel, discarding backlog if needed."""
        while True:
            try:
                self.queue.put_nowait(None)
                return
            except asyncio.QueueFull:
                self.queue.get_nowait()


class ConnectionHub:
    def __init__(self, queue_size: int | None = None) -> None:
        self._queue_size = queue_size or settings.live_queue_size
        self._connections: dict[str, Connection] = {}
        self._channels: dict[str, set[str]] = defaultdict(set)

    def register(self, user_id: str) -> Connection:
        conn = Connection(user_id, self._queue_size)
        self._connections[conn.id] = conn
        self.join(conn.id, user_channel(user_id))
        return conn

    def unregister(self, conn_id: str) -> Connection | None:
        conn = self._connections.pop(conn_id, None)
        if conn is None:
            return None
        for channel in list(conn.channels):
            self._drop_member(channel, conn_id)
        conn.channels.clear()
        return conn

    def send(self, conn_id: str, event: str, payload: dict[str, Any]) -> bool:
        """Enqueue ``event`` for a single connection."""
        conn = self._connections.get(conn_id)
        if conn is None:
            return False
        return self._offer(conn, Event(type=event, data=jsonable_encoder(payload)))

    def has_user(self, user_id: str) -> bool:
        return bool(self._channels.get(user_channel(user_id)))

    def join(self, conn_id: str, channel: str) -> bool:
        conn = self._connections.get(conn_id)
        if conn is None:
            return False
        self._channels[channel].add(conn_id)
        conn.channels.add(channel)
        return True

    def leave(self, conn_id: str, channel: str) -> None:
        conn = self._connections.get(conn_id)
        if conn is not None:
            conn.channels.discard(channel)
        self._drop_member(channel, conn_id)

    def members(self, channel: str) -> list[Connection]:
        return [self._connections[cid] for cid in self._channels.get(channel, ())]

    def emit(
        self, channel: str, event: str, payload: dict[str, Any], exclude: str | None = None
    ) -> int:
        """Enqueue ``event`` for every connection in ``channel``; returns how many took it."""
        message = Event(type=event, data=jsonable_encoder(payload))
        return sum(
            self._offer(conn, message) for conn in self.members(channel) if conn.id != exclude
        )

    def broadcast(self, event: str, payload: dict[str, Any], exclude: str | None = None) -> int:
        message = Event(type=event, data=jsonable_encoder(payload))
        return sum(
            self._offer(conn, message)
            for conn in list(self._connections.values())
            if conn.id != exclude
        )

    def _offer(self, conn: Connection, message: Event) -> bool:
        try:
            conn.queue.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning(
                "Dropping %s for connection %s (user %s): queue full",
                message.type,
                conn.id,
                conn.user_id,
            )
            return False
        return True

    def _drop_member(self, channel: str, conn_id: str) -> None:
        members = self._channels.get(channel)
        if members is None:
            return
        members.discard(conn_id)
        if not members:
            del self._channels[channel]


class Notifier:
    """Best-effort delivery of domain events to users and conversation rooms.

    Nothing here raises into the caller: the state change that produced an
    event has already committed, so failures are logged and discarded.
    """

    def __init__(self, hub: ConnectionHub, presence: Presence) -> None:
        self.hub = hub
        self.presence = presence

    def emit_to_user(self, user_id: str, event: str, payload: dict[str, Any]) -> None:
        try:
            if not self.hub.has_user(user_id):
                logger.debug("User %s has no live connection, skipping %s", user_id, event)
                return
            self.hub.emit(user_channel(user_id), event, payload)
        except Exception:
            logger.exception("Failed to emit %s to user %s", event, user_id)

    def emit_to_conversation(
        self,
        conversation_id: str,
        event: str,
        payload: dict[str, Any],
        exclude: str | None = None,
    ) -> None:
        try:
            self.hub.emit(conversation_channel(conversation_id), event, payload, exclude=exclude)
        except Exception:
            logger.exception("Failed to emit %s to conversation %s", event, conversation_id)

    def connect(self, user_id: str) -> Connection:
        """Register a live connection and announce the user as online."""
        conn = self.hub.register(user_id)
        self.presence.set_online(user_id)
        self.announce(conn, "online")
        logger.info("User %s connected (%s)", user_id, conn.id)
        return conn

    def disconnect(self, conn: Connection) -> None:
        """Drop a connection; the user goes offline when it was their last one."""
        self.hub.unregister(conn.id)
        conn.close()
        logger.info("User %s disconnected (%s)", conn.user_id, conn.id)
        if self.hub.has_user(conn.user_id):
            return
        self.presence.set_offline(conn.user_id)
        self.announce(conn, "offline")

    def announce(self, conn: Connection, status: str) -> None:
        try:
            self.hub.broadcast(
                "user_status", {"user_id": conn.user_id, "status": status}, exclude=conn.id
            )
        except Exception:
            logger.exception("Failed to broadcast %s status for %s", status, conn.user_id)
