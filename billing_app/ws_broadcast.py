# billing_app/ws_broadcast.py
"""
Broadcast hub for the dashboard push channel.

The hub owns the connection registry. Each connection gets a bounded outbound
queue drained by its own writer task, so ``broadcast()`` only enqueues: it
never waits on a peer, a slow client cannot hold up the others, and each
client still sees envelopes in the order ``broadcast()`` was called.
Registry mutations and the broadcast snapshot never cross an ``await``.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, Optional, Set, Tuple

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from billing_app.exceptions import BroadcastDeliveryFailure

log = logging.getLogger("billing_app.ws_broadcast")

HANDSHAKE_EVENT = "connected"
HANDSHAKE_MESSAGE = "Real-time updates connected"


def iso_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class BroadcastEvent:
    event: str
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=iso_timestamp)

    def to_message(self) -> Dict[str, Any]:
        return {"event": self.event, "data": self.data, "timestamp": self.timestamp}


# --------------------------------------------------------
# 1) CONNECTION
# --------------------------------------------------------
class PushConnection:
    def __init__(self, websocket: WebSocket, queue_size: int = 100):
        self.id = uuid.uuid4().hex[:12]
        self.websocket = websocket
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._writer: Optional[asyncio.Task] = None
        self.closed = False

    @property
    def is_open(self) -> bool:
        return (
            not self.closed
            and self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def enqueue(self, message: Dict[str, Any]) -> bool:
        if self.closed:
            return False
        try:
            self._queue.put_nowait(message)
            return True
        except asyncio.QueueFull:
            log.warning("⚠️ Queue full for connection %s, dropping %s", self.id, message.get("event"))
            return False

    def start(self, on_failure: Callable[["PushConnection", BroadcastDeliveryFailure], None]) -> None:
        if self._writer is None:
            self._writer = asyncio.create_task(self._run(on_failure), name=f"ws-writer-{self.id}")

    async def _run(self, on_failure) -> None:
        while True:
            message = await self._queue.get()
            try:
                await self.websocket.send_json(message)
            except Exception as exc:
                self.closed = True
                self._discard_pending()
                on_failure(self, BroadcastDeliveryFailure(self.id, exc))
                return
            finally:
                self._queue.task_done()

    def _discard_pending(self) -> None:
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            self._queue.task_done()

    async def join(self) -> None:
        """Wait until everything queued so far has been written (or dropped)."""
        await self._queue.join()

    def stop(self) -> Optional[asyncio.Task]:
        self.closed = True
        self._discard_pending()
        writer = self._writer
        if writer is not None and not writer.done() and writer is not asyncio.current_task():
            writer.cancel()
        return writer


# --------------------------------------------------------
# 2) REGISTRY
# --------------------------------------------------------
class ConnectionRegistry:
    """Live push-channel members. Created once per service, owned by the hub."""

    def __init__(self):
        self._members: Set[PushConnection] = set()

    def add(self, conn: PushConnection) -> None:
        self._members.add(conn)

    def discard(self, conn: PushConnection) -> bool:
        if conn in self._members:
            self._members.discard(conn)
            return True
        return False

    def snapshot(self) -> Tuple[PushConnection, ...]:
        return tuple(self._members)

    def __len__(self) -> int:
        return len(self._members)

    def __contains__(self, conn: object) -> bool:
        return conn in self._members

    def __iter__(self) -> Iterator[PushConnection]:
        return iter(self.snapshot())


# --------------------------------------------------------
# 3) HUB
# --------------------------------------------------------
class BroadcastHub:
    def __init__(self, registry: Optional[ConnectionRegistry] = None, queue_size: int = 100):
        self.registry = registry if registry is not None else ConnectionRegistry()
        self.queue_size = queue_size

    @property
    def connection_count(self) -> int:
        return len(self.registry)

    def connect(self, websocket: WebSocket) -> PushConnection:
        """
        Register an accepted socket. The handshake is queued before the
        connection becomes visible to broadcast(), so it is always the first
        envelope the client receives and nothing older is replayed.
        """
        conn = PushConnection(websocket, queue_size=self.queue_size)
        conn.enqueue(BroadcastEvent(HANDSHAKE_EVENT, {"message": HANDSHAKE_MESSAGE}).to_message())
        self.registry.add(conn)
        conn.start(self._on_delivery_failure)
        log.info("✅ Push client %s connected (total=%d)", conn.id, len(self.registry))
        return conn

    async def disconnect(self, conn: PushConnection) -> None:
        removed = self.registry.discard(conn)
        writer = conn.stop()
        if writer is not None:
            await asyncio.gather(writer, return_exceptions=True)
        if removed:
            log.info("❌ Push client %s disconnected (total=%d)", conn.id, len(self.registry))

    def broadcast(self, event: str, data: Dict[str, Any]) -> BroadcastEvent:
        """Queue one envelope for every open member. Never raises because of a client."""
        envelope = BroadcastEvent(event, dict(data))
        message = envelope.to_message()
        delivered = 0
        for conn in self.registry.snapshot():
            if not conn.is_open:
                self.registry.discard(conn)
                conn.stop()
                log.info("Dropped closed push client %s (total=%d)", conn.id, len(self.registry))
                continue
            if conn.enqueue(message):
                delivered += 1
        log.debug("📡 %s queued for %d client(s)", event, delivered)
        return envelope

    def _on_delivery_failure(self, conn: PushConnection, failure: BroadcastDeliveryFailure) -> None:
        self.registry.discard(conn)
        log.warning("Push delivery failed, removing client %s: %s", conn.id, failure.cause)

    async def drain(self) -> None:
        """Wait until every queued envelope has been written."""
        await asyncio.gather(*(conn.join() for conn in self.registry.snapshot()))

    async def close(self) -> None:
        writers = [conn.stop() for conn in self.registry.snapshot()]
        for conn in self.registry.snapshot():
            self.registry.discard(conn)
        await asyncio.gather(*(w for w in writers if w is not None), return_exceptions=True)
        log.info("🛑 Broadcast hub closed")
