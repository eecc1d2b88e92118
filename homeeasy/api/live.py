"""WebSocket endpoint for live notifications, chat rooms and presence."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from homeeasy.auth import authenticate
from homeeasy.domain import User
from homeeasy.errors import InvalidArgument, ServiceError
from homeeasy.events import Connection, conversation_channel
from homeeasy.services.messages import post_message, require_participant
from homeeasy.state import AppState

logger = logging.getLogger("homeeasy.live")

router = APIRouter()


async def _pump(websocket: WebSocket, conn: Connection) -> None:
    """Write queued events to the socket until the stop sentinel arrives."""
    while True:
        event = await conn.queue.get()
        if event is None:
            return
        try:
            await websocket.send_json(event.frame())
        except (WebSocketDisconnect, RuntimeError, OSError):
            logger.debug("Connection %s closed while sending %s", conn.id, event.type)
            return


def _conversation_id(frame: dict) -> str:
    conversation_id = frame.get("conversation_id")
    if not isinstance(conversation_id, str) or not conversation_id:
        raise InvalidArgument("conversation_id is required")
    return conversation_id


async def _handle_frame(services: AppState, conn: Connection, user: User, frame: dict) -> None:
    kind = frame.get("type")
    hub = services.hub

    if kind == "ping":
        hub.send(conn.id, "pong", {})

    elif kind == "join_conversation":
        conversation_id = _conversation_id(frame)
        await require_participant(services, conversation_id, user.id)
        hub.join(conn.id, conversation_channel(conversation_id))
        hub.send(conn.id, "joined_conversation", {"conversation_id": conversation_id})

    elif kind == "leave_conversation":
        conversation_id = _conversation_id(frame)
        hub.leave(conn.id, conversation_channel(conversation_id))
        hub.send(conn.id, "left_conversation", {"conversation_id": conversation_id})

    elif kind == "send_message":
        media = frame.get("media") or []
        if not isinstance(media, list) or not all(isinstance(m, str) for m in media):
            raise InvalidArgument("media must be a list of strings")
        content = frame.get("content")
        if content is not None and not isinstance(content, str):
            raise InvalidArgument("content must be a string")
        await post_message(services, _conversation_id(frame), user, content, media)

    elif kind in ("typing_start", "typing_stop"):
        conversation_id = _conversation_id(frame)
        channel = conversation_channel(conversation_id)
        if channel not in conn.channels:
            raise InvalidArgument("Join the conversation first")
        if kind == "typing_start":
            event = "user_typing"
            payload = {
                "conversation_id": conversation_id,
                "user_id": user.id,
                "user_name": user.display_name,
            }
        else:
            event = "user_stop_typing"
            payload = {"conversation_id": conversation_id, "user_id": user.id}
        services.notifier.emit_to_conversation(conversation_id, event, payload, exclude=conn.id)

    elif kind == "user_online":
        services.presence.set_online(user.id)
        services.notifier.announce(conn, "online")

    else:
        raise InvalidArgument(f"Unknown frame type: {kind!r}")


@router.websocket("/v1/ws")
async def live(websocket: WebSocket, token: str | None = None):
    """Authenticated live connection. Pass the bearer token as ``?token=``."""
    services: AppState = websocket.app.state.services
    try:
        user = await authenticate(services, token or "")
    except ServiceError as e:
        logger.info("Rejected live connection: %s", e.detail)
        await websocket.close(code=4401, reason=e.detail)
        return

    # Events produced from here on are queued for this connection.
    conn = services.notifier.connect(user.id)
    sender: asyncio.Task | None = None
    try:
        await websocket.accept()
        sender = asyncio.create_task(_pump(websocket, conn))
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
                if not isinstance(frame, dict):
                    raise InvalidArgument("Frames must be JSON objects")
                await _handle_frame(services, conn, user, frame)
            except json.JSONDecodeError:
                services.hub.send(conn.id, "error", {"message": "Invalid JSON frame"})
            except ServiceError as e:
                services.hub.send(conn.id, "error", {"message": e.detail, "status": e.status_code})
    except WebSocketDisconnect:
        pass
    finally:
        services.notifier.disconnect(conn)
        if sender is not None:
            with contextlib.suppress(asyncio.CancelledError, TimeoutError):
                await asyncio.wait_for(sender, timeout=5)
