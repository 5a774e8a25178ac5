"""Real-time chat: connection registry, event broadcaster and WebSocket transport."""

from .broadcaster import EventBroadcaster
from .registry import ConnectionRegistry
from .schemas import ConnectionState, EventKind, InboundEvent, ServerEventType

__all__ = [
    "ConnectionRegistry",
    "ConnectionState",
    "EventBroadcaster",
    "EventKind",
    "InboundEvent",
    "ServerEventType",
]
