"""Event broadcaster: the chat protocol state machine and fan-out policy.

Every inbound event (connect, join, message, disconnect, error) is handled
against the ConnectionRegistry, and the resulting outbound events are sent
to some or all live connections.

Per-connection states:
    connected ──join──▶ joined ──disconnect──▶ closed
        └────────────disconnect─────────────────┘

Serialisation:
    Events are submitted to a single asyncio.Queue and consumed by one
    worker task. Each event is handled to completion before the next one is
    taken, so registry reads and writes never interleave and no locking is
    needed.

Fan-out:
    "Broadcast" targets every live session (joined or not) at the instant of
    sending; the recipient list is re-read for each outbound event. Handling
    an event only decides what each session receives: frames are appended
    to the session's outbox and written to the socket by that session's own
    sender task, in order. A slow or stalled socket therefore only delays
    its own frames. Sends are best-effort: a failed send is logged and
    otherwise ignored, the transport's disconnect event is what removes a
    dead session.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from .registry import ConnectionRegistry
from .schemas import (
    ChatMessage,
    ConnectionState,
    EventKind,
    InboundEvent,
    ServerEventType,
    UserPresence,
    roster_frame,
    server_frame,
)

logger = logging.getLogger(__name__)

# Queue sentinel telling the worker to exit once earlier events are handled
_STOP = None

# Seconds stop() waits for outboxes to drain before dropping what is left
SHUTDOWN_FLUSH_TIMEOUT = 5.0


class ConnectionSession:
    """A live transport session known to the broadcaster.

    Owns an unbounded outbox and a sender task that writes queued frames to
    the socket one at a time. Must be created on a running event loop.
    """

    def __init__(self, connection_id: str, transport: Any) -> None:
        self.connectionId = connection_id
        self.state = ConnectionState.CONNECTED
        self.transport = transport
        self._outbox: asyncio.Queue = asyncio.Queue()
        self._sender = asyncio.create_task(
            self._drain(), name=f"chat-sender-{connection_id}"
        )

    def enqueue(self, frame: dict) -> None:
        """Queue a frame for this connection. Never blocks."""
        self._outbox.put_nowait(frame)

    async def flush(self) -> None:
        """Wait until every frame queued so far has been sent (or failed)."""
        await self._outbox.join()

    def close(self) -> None:
        """Stop the sender; frames still queued are dropped."""
        self._sender.cancel()

    async def wait_closed(self) -> None:
        await asyncio.gather(self._sender, return_exceptions=True)

    async def _drain(self) -> None:
        while True:
            frame = await self._outbox.get()
            try:
                await self._safe_send(frame)
            finally:
                self._outbox.task_done()

    async def _safe_send(self, message: dict) -> bool:
        """Send a message to the connection with error handling.

        Returns:
            True if successful, False if the send failed.
        """
        try:
            await self.transport.send_json(message)
            return True
        except Exception as e:
            logger.debug(f"Failed to send {message.get('type')} to {self.connectionId}: {e}")
            return False


class EventBroadcaster:
    """Serialised handler for chat protocol events.

    One instance exists per server process. It exclusively owns the
    ConnectionRegistry; transport code only ever calls submit().

    Usage:
        broadcaster = EventBroadcaster()
        await broadcaster.start()
        broadcaster.submit(InboundEvent(kind=EventKind.CONNECT, ...))
        ...
        await broadcaster.stop()
    """

    def __init__(self, registry: Optional[ConnectionRegistry] = None) -> None:
        """Create a broadcaster.

        Args:
            registry: Registry to own. A fresh one is created if omitted.
        """
        self.registry = registry if registry is not None else ConnectionRegistry()

        # connection_id -> live session (connected or joined)
        self._sessions: Dict[str, ConnectionSession] = {}

        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None

        self._handlers: Dict[EventKind, Callable[[InboundEvent], Awaitable[None]]] = {
            EventKind.CONNECT: self._on_connect,
            EventKind.JOIN: self._on_join,
            EventKind.MESSAGE: self._on_message,
            EventKind.DISCONNECT: self._on_disconnect,
            EventKind.ERROR: self._on_error,
        }

    # =========================================================================
    # Worker lifecycle
    # =========================================================================

    @property
    def is_running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def start(self) -> None:
        """Start the event worker on the running loop (no-op if already running)."""
        if self.is_running:
            return
        self._queue = asyncio.Queue()
        self._worker = asyncio.create_task(self._run(self._queue), name="chat-event-broadcaster")
        logger.info("[Broadcaster] Event worker started")

    async def stop(self) -> None:
        """Stop accepting events, drain what is queued, and close every session.

        Frames already decided for live sessions are delivered before their
        senders are stopped.
        """
        if self.is_running:
            worker, queue = self._worker, self._queue
            self._worker = None
            self._queue = None
            queue.put_nowait(_STOP)
            await worker
            logger.info("[Broadcaster] Event worker stopped")

        try:
            await asyncio.wait_for(self.flush(), timeout=SHUTDOWN_FLUSH_TIMEOUT)
        except asyncio.TimeoutError:
            logger.warning("[Broadcaster] Outbound frames still pending at shutdown, dropping them")

        sessions = list(self._sessions.values())
        for session in sessions:
            session.close()
        await asyncio.gather(*[session.wait_closed() for session in sessions])

    def submit(self, event: InboundEvent) -> None:
        """Queue an event for serialised handling.

        Never blocks (the queue is unbounded), so it is safe to call from a
        transport task that is being cancelled.

        Raises:
            RuntimeError: If the worker is not running.
        """
        if not self.is_running:
            raise RuntimeError("EventBroadcaster is not running")
        self._queue.put_nowait(event)

    async def _run(self, queue: asyncio.Queue) -> None:
        while True:
            event = await queue.get()
            try:
                if event is _STOP:
                    return
                await self.handle(event)
            except Exception:
                # One bad event must never take the worker down
                logger.exception(
                    "[Broadcaster] Failed to handle %s event for connection %s",
                    event.kind.value, event.connectionId,
                )
            finally:
                queue.task_done()

    # =========================================================================
    # Queries
    # =========================================================================

    def state_of(self, connection_id: str) -> ConnectionState:
        """Protocol state of a connection. Unknown IDs are closed."""
        session = self._sessions.get(connection_id)
        return session.state if session else ConnectionState.CLOSED

    def connection_count(self) -> int:
        """Number of live transport sessions, joined or not."""
        return len(self._sessions)

    async def flush(self, connection_id: Optional[str] = None) -> None:
        """Wait for queued outbound frames to be written.

        Args:
            connection_id: Only wait for this connection. All live sessions
                if omitted.
        """
        if connection_id is not None:
            session = self._sessions.get(connection_id)
            sessions = [session] if session else []
        else:
            sessions = list(self._sessions.values())
        await asyncio.gather(*[session.flush() for session in sessions])

    # =========================================================================
    # Transitions
    # =========================================================================

    async def handle(self, event: InboundEvent) -> None:
        """Apply one event to the state machine and queue its broadcasts.

        Connection IDs are never reused, so any non-connect event for an ID
        without a live session is stale and dropped.
        """
        if event.kind is not EventKind.CONNECT and event.connectionId not in self._sessions:
            logger.debug(
                "[Broadcaster] Ignoring %s for closed connection %s",
                event.kind.value, event.connectionId,
            )
            return
        await self._handlers[event.kind](event)

    async def _on_connect(self, event: InboundEvent) -> None:
        if event.connectionId in self._sessions:
            logger.debug(f"[Broadcaster] Duplicate connect for {event.connectionId} ignored")
            return
        if event.transport is None:
            logger.warning(f"[Broadcaster] Connect for {event.connectionId} has no transport, ignored")
            return

        session = ConnectionSession(event.connectionId, event.transport)
        self._sessions[event.connectionId] = session
        logger.info(
            f"[Broadcaster] Connection {event.connectionId} established "
            f"({len(self._sessions)} live, {len(self.registry)} joined)"
        )

        # Joining the transport is not joining the chat: roster to this session only
        session.enqueue(roster_frame(self.registry.snapshot()))

    async def _on_join(self, event: InboundEvent) -> None:
        display_name = event.payload
        if not isinstance(display_name, str) or not display_name.strip():
            logger.debug(f"[Broadcaster] Blank display name from {event.connectionId} ignored")
            return

        session = self._sessions[event.connectionId]
        if session.state is ConnectionState.JOINED:
            logger.info(
                f"[Broadcaster] {event.connectionId} re-joined, renaming "
                f"{self.registry.get(event.connectionId)!r} -> {display_name!r}"
            )

        self.registry.register(event.connectionId, display_name)
        session.state = ConnectionState.JOINED
        logger.info(
            f"[Broadcaster] User joined: {display_name!r} ({event.connectionId}). "
            f"{len(self.registry)} users online"
        )

        # userJoined first so clients can tell "who changed" from "new full state"
        presence = UserPresence(id=event.connectionId, username=display_name)
        self._broadcast(server_frame(ServerEventType.USER_JOINED, presence))
        self._broadcast(roster_frame(self.registry.snapshot()))

    async def _on_message(self, event: InboundEvent) -> None:
        session = self._sessions[event.connectionId]
        if session.state is not ConnectionState.JOINED:
            logger.debug(f"[Broadcaster] Message from non-joined connection {event.connectionId} ignored")
            return

        payload = event.payload
        text = payload.get("text") if isinstance(payload, dict) else None
        if not isinstance(text, str) or not text.strip():
            logger.debug(f"[Broadcaster] Blank message from {event.connectionId} ignored")
            return

        # Resolve the sender name now, not at join time
        username = self.registry.get(event.connectionId)
        if username is None:
            logger.warning(f"[Broadcaster] Joined connection {event.connectionId} missing from registry")
            return

        message = ChatMessage(id=event.connectionId, username=username, text=text)
        logger.debug("[Broadcaster] Message from %r: %s", username, text[:50])
        # Echoed back to the sender as delivery confirmation
        self._broadcast(server_frame(ServerEventType.MESSAGE, message))

    async def _on_disconnect(self, event: InboundEvent) -> None:
        # Removal from _sessions is what makes the connection closed
        session = self._sessions.pop(event.connectionId)
        session.close()

        display_name = self.registry.unregister(event.connectionId)
        if display_name is None:
            logger.info(f"[Broadcaster] Connection {event.connectionId} closed before joining")
            return

        logger.info(
            f"[Broadcaster] User left: {display_name!r} ({event.connectionId}). "
            f"{len(self.registry)} users online"
        )
        presence = UserPresence(id=event.connectionId, username=display_name)
        self._broadcast(server_frame(ServerEventType.USER_LEFT, presence))
        self._broadcast(roster_frame(self.registry.snapshot()))

    async def _on_error(self, event: InboundEvent) -> None:
        # Observed only; a later disconnect (if any) drives cleanup
        logger.warning(f"[Broadcaster] Transport error on connection {event.connectionId}: {event.payload}")

    # =========================================================================
    # Fan-out
    # =========================================================================

    def _broadcast(self, frame: dict) -> None:
        """Queue a frame for every live session.

        The session list is read at call time, so each outbound event sees
        the membership as it is right now.
        """
        for session in list(self._sessions.values()):
            session.enqueue(frame)
