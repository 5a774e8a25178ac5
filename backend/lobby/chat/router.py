"""Chat router providing the WebSocket endpoint.

This module provides:
    - WebSocket /ws/chat: Real-time group chat

The endpoint is a thin transport adapter. It assigns each connection an ID,
turns frames into InboundEvents and submits them to the process's
EventBroadcaster (``app.state.broadcaster``). All protocol decisions are
made by the broadcaster.

Frames are JSON text frames of the form ``{"type": ..., "data": ...}``.
Binary frames and invalid JSON are reported as error events and skipped.

Protocol Message Types (client -> server):
    - join: data is the display name
    - message: data is {text}

Protocol Message Types (server -> client):
    - userList: data is the roster (display names in join order)
    - userJoined / userLeft: data is {id, username}
    - message: data is {id, username, text, timestamp}
"""
import json
import logging
import uuid

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from .broadcaster import EventBroadcaster
from .schemas import ClientFrame, EventKind, InboundEvent

logger = logging.getLogger(__name__)

router = APIRouter()

# Client frame type -> inbound event kind
CLIENT_EVENTS = {
    "join": EventKind.JOIN,
    "message": EventKind.MESSAGE,
}


def get_broadcaster(websocket: WebSocket) -> EventBroadcaster:
    """Return the broadcaster owned by the running application."""
    return websocket.app.state.broadcaster


@router.websocket("/ws/chat")
async def websocket_chat_endpoint(websocket: WebSocket) -> None:
    """WebSocket endpoint for the group chat.

    Protocol Flow:
        1. Client connects → Server sends: {type: "userList", data: [...]}
           (to this client only; connecting is not joining)
        2. Client sends: {type: "join", data: "alice"}
           → Server broadcasts: userJoined, then userList
        3. Client sends: {type: "message", data: {text: "hi"}}
           → Server broadcasts: message (including back to the sender)
        4. On disconnect → Server broadcasts: userLeft, then userList
           (only if the client had joined)

    Args:
        websocket: The WebSocket connection.
    """
    broadcaster = get_broadcaster(websocket)
    await websocket.accept()

    # Backend assigns the connection ID; a reconnect always gets a new one
    connection_id = str(uuid.uuid4())
    logger.info(f"[WS] Connection accepted: {connection_id}")

    broadcaster.submit(InboundEvent(
        kind=EventKind.CONNECT,
        connectionId=connection_id,
        transport=websocket,
    ))

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))

            text = message.get("text")
            if text is None:
                broadcaster.submit(InboundEvent(
                    kind=EventKind.ERROR,
                    connectionId=connection_id,
                    payload="Binary frame ignored",
                ))
                continue

            try:
                data = json.loads(text)
            except json.JSONDecodeError as exc:
                broadcaster.submit(InboundEvent(
                    kind=EventKind.ERROR,
                    connectionId=connection_id,
                    payload=f"Invalid JSON frame: {exc}",
                ))
                continue

            try:
                frame = ClientFrame.model_validate(data)
            except ValidationError:
                logger.warning(f"[WS] Malformed frame from {connection_id} ignored")
                continue

            kind = CLIENT_EVENTS.get(frame.type)
            if kind is None:
                logger.warning(f"[WS] Unknown frame type {frame.type!r} from {connection_id} ignored")
                continue

            logger.debug("[WS] %s received: type=%s", connection_id, frame.type)
            broadcaster.submit(InboundEvent(
                kind=kind,
                connectionId=connection_id,
                payload=frame.data,
            ))

    except WebSocketDisconnect as exc:
        logger.info(f"[WS] Client {connection_id} disconnected (code={exc.code})")
    except Exception:
        logger.exception(f"[WS] Transport failure on connection {connection_id}")
    finally:
        if broadcaster.is_running:
            broadcaster.submit(InboundEvent(
                kind=EventKind.DISCONNECT,
                connectionId=connection_id,
            ))
        else:
            logger.debug(f"[WS] Broadcaster stopped; disconnect for {connection_id} not queued")
