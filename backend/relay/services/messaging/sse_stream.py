# backend/relay/services/messaging/sse_stream.py
"""
Client Stream Handler: one per open SSE connection.

State machine: OPEN -> CLOSING -> CLOSED, never backwards.

- OPEN: registered, draining its sink and yielding frames to the transport.
- CLOSING: entered when the client disconnects (the generator is cancelled
  or closed) or when the hub cancels the connection after a failed write.
- CLOSED: registry entry gone, sink drained, close hook called. Terminal.

Frames are yielded as bytes so EventSourceResponse writes them verbatim.
"""

from __future__ import annotations

from enum import Enum
import logging
from typing import AsyncGenerator, Callable, Optional

from .registry import Connection, ConnectionRegistry

logger = logging.getLogger(__name__)

STREAM_HEADERS = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class StreamState(str, Enum):
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class ClientStream:
    """Writes dispatched frames to one client and owns its teardown."""

    def __init__(
        self,
        connection: Connection,
        registry: ConnectionRegistry,
        on_closed: Optional[Callable[[], None]] = None,
    ) -> None:
        self._connection = connection
        self._registry = registry
        self._on_closed = on_closed
        self._state = StreamState.OPEN

    @classmethod
    def open(
        cls,
        registry: ConnectionRegistry,
        *,
        queue_size: int,
        on_closed: Optional[Callable[[], None]] = None,
    ) -> "ClientStream":
        """Create a connection, register it, and return its OPEN stream."""
        connection = Connection.create(queue_size)
        registry.register(connection)
        logger.info(
            "[SSE-STREAM] Client connected",
            extra={"connection_id": connection.connection_id, "total": len(registry)},
        )
        return cls(connection, registry, on_closed=on_closed)

    @property
    def connection_id(self) -> str:
        return self._connection.connection_id

    @property
    def state(self) -> StreamState:
        return self._state

    async def frames(self) -> AsyncGenerator[bytes, None]:
        """Yield framed events until the connection is closed from either side."""
        try:
            while self._state is StreamState.OPEN:
                frame = await self._connection.sink.get()
                if frame is None or self._connection.is_cancelled:
                    break
                yield frame.encode("utf-8")
        finally:
            self.close()

    def close(self) -> None:
        """
        Tear the connection down. Idempotent.

        Runs synchronously so the registry entry and the sink are released in
        the same step as the cancellation signal.
        """
        if self._state is not StreamState.OPEN:
            return
        self._state = StreamState.CLOSING
        self._registry.unregister(self._connection.connection_id)
        self._connection.cancel()
        while not self._connection.sink.empty():
            self._connection.sink.get_nowait()
        self._state = StreamState.CLOSED
        logger.info(
            "[SSE-STREAM] Client disconnected",
            extra={"connection_id": self._connection.connection_id, "total": len(self._registry)},
        )
        if self._on_closed is not None:
            self._on_closed()
