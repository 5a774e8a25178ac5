"""Pydantic schemas for the chat protocol.

Inbound events are what the transport hands to the broadcaster; outbound
payloads are what the broadcaster fans out. Every frame on the wire has
the shape ``{"type": <event>, "data": <payload>}``.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, Field


def utc_timestamp() -> str:
    """Current UTC time as ISO-8601 with milliseconds and a ``Z`` suffix."""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class ConnectionState(str, Enum):
    """Protocol state of a single connection.

    Attributes:
        CONNECTED: Transport established, no display name yet.
        JOINED: Registered in the roster under a display name.
        CLOSED: Terminal; every later event for the connection is ignored.
    """
    CONNECTED = "connected"
    JOINED = "joined"
    CLOSED = "closed"


class EventKind(str, Enum):
    """Kinds of inbound events the broadcaster understands."""
    CONNECT = "connect"
    JOIN = "join"
    MESSAGE = "message"
    DISCONNECT = "disconnect"
    ERROR = "error"


class ServerEventType(str, Enum):
    """Outbound event names, as they appear in the frame ``type`` field."""
    USER_LIST = "userList"
    USER_JOINED = "userJoined"
    USER_LEFT = "userLeft"
    MESSAGE = "message"


class InboundEvent(BaseModel):
    """One event for the broadcaster to process.

    Attributes:
        kind: What happened.
        connectionId: Connection the event belongs to.
        payload: Raw client payload (display name for join, ``{text}`` for
            message, error description for error). Validated by the
            broadcaster, not here.
        transport: The live socket, only set on connect. Anything with an
            async ``send_json(dict)`` method.
    """
    kind: EventKind = Field(..., description="Event kind")
    connectionId: str = Field(..., description="Connection the event belongs to")
    payload: Any = Field(default=None, description="Raw client payload")
    transport: Optional[Any] = Field(default=None, exclude=True, description="Live socket (connect only)")


class ClientFrame(BaseModel):
    """Envelope of a frame sent by a client."""
    type: str = Field(..., description="Client event name (join or message)")
    data: Any = Field(default=None, description="Event payload")


class UserPresence(BaseModel):
    """Payload of userJoined / userLeft."""
    id: str = Field(..., description="Connection ID of the user")
    username: str = Field(..., description="Display name of the user")


class ChatMessage(BaseModel):
    """A chat message as broadcast to every connection. Never stored.

    Attributes:
        id: Sender's connection ID.
        username: Sender's display name, resolved when the message is sent.
        text: Message text.
        timestamp: Server-assigned ISO-8601 UTC time.
    """
    id: str = Field(..., description="Sender connection ID")
    username: str = Field(..., description="Sender display name")
    text: str = Field(..., description="Message text")
    timestamp: str = Field(default_factory=utc_timestamp, description="ISO-8601 UTC timestamp")


def server_frame(event_type: ServerEventType, data: Any) -> dict:
    """Wrap an outbound payload in the wire envelope."""
    if isinstance(data, BaseModel):
        data = data.model_dump()
    return {"type": event_type.value, "data": data}


def roster_frame(roster: List[str]) -> dict:
    return server_frame(ServerEventType.USER_LIST, list(roster))
