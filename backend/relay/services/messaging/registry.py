# backend/relay/services/messaging/registry.py
"""
Connection Registry: the one piece of shared mutable state in the relay.

Thread-safe: the connection map is protected by a lock, and iteration always
runs over a snapshot taken under it, so connections may register or leave
while a broadcast is in progress.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
import threading
from typing import Callable, Dict, Optional, Tuple
import uuid

from relay.core.exceptions import DeliveryException

logger = logging.getLogger(__name__)

_CLOSE = None


@dataclass(eq=False)
class Connection:
    """
    One open client stream.

    Attributes:
        connection_id: Unique identifier for this connection.
        sink: Bounded queue of framed text the client's stream drains.
        cancelled: Cancellation signal, set once when the connection is torn down.
    """

    connection_id: str
    sink: "asyncio.Queue[Optional[str]]"
    cancelled: asyncio.Event = field(default_factory=asyncio.Event)

    @classmethod
    def create(cls, queue_size: int) -> "Connection":
        return cls(connection_id=uuid.uuid4().hex, sink=asyncio.Queue(maxsize=queue_size))

    @property
    def is_cancelled(self) -> bool:
        return self.cancelled.is_set()

    def deliver(self, frame: str) -> None:
        """
        Hand a frame to the sink without blocking.

        Raises:
            DeliveryException: If the connection is cancelled or its sink is full
        """
        if self.cancelled.is_set():
            raise DeliveryException("Connection is closed", details={"connection_id": self.connection_id})
        try:
            self.sink.put_nowait(frame)
        except asyncio.QueueFull as exc:
            raise DeliveryException(
                "Connection sink is full", details={"connection_id": self.connection_id}
            ) from exc

    def cancel(self) -> None:
        """
        Fire the cancellation signal and wake the stream draining the sink.

        Idempotent. Pending frames are discarded when the sink is full so the
        close marker always fits.
        """
        if self.cancelled.is_set():
            return
        self.cancelled.set()
        try:
            self.sink.put_nowait(_CLOSE)
        except asyncio.QueueFull:
            while not self.sink.empty():
                self.sink.get_nowait()
            self.sink.put_nowait(_CLOSE)


class ConnectionRegistry:
    """Maps connection ids to live connections, in registration order."""

    def __init__(self) -> None:
        self._connections: Dict[str, Connection] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._connections)

    def __contains__(self, connection_id: object) -> bool:
        with self._lock:
            return connection_id in self._connections

    def register(self, connection: Connection) -> str:
        with self._lock:
            self._connections[connection.connection_id] = connection
            total = len(self._connections)
        logger.debug(
            "[SSE-REGISTRY] Connection registered",
            extra={"connection_id": connection.connection_id, "total": total},
        )
        return connection.connection_id

    def unregister(self, connection_id: str) -> Optional[Connection]:
        """Remove a connection; returns it, or None if it was already gone."""
        with self._lock:
            connection = self._connections.pop(connection_id, None)
            total = len(self._connections)
        if connection is not None:
            logger.debug(
                "[SSE-REGISTRY] Connection unregistered",
                extra={"connection_id": connection_id, "total": total},
            )
        return connection

    def snapshot(self) -> Tuple[Connection, ...]:
        """Current connections (snapshot, no lock held on return)."""
        with self._lock:
            return tuple(self._connections.values())

    def for_each(self, fn: Callable[[Connection], None]) -> None:
        for connection in self.snapshot():
            fn(connection)
