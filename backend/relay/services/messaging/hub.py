# backend/relay/services/messaging/hub.py
"""
Broadcast Hub: fans each committed message out to every registered connection.

Delivery never blocks: a frame is handed to each connection's bounded sink
with put_nowait. A connection whose sink is full or already closed is
unregistered and cancelled on the spot, and the failure stops there, so one
slow or dead client never stalls delivery to the others.
"""

from __future__ import annotations

import logging

from relay.core.exceptions import DeliveryException

from .events import MessageEvent, format_frame
from .registry import Connection, ConnectionRegistry

logger = logging.getLogger(__name__)


class BroadcastHub:
    def __init__(self, registry: ConnectionRegistry) -> None:
        self._registry = registry
        self._dispatched = 0
        self._dropped = 0

    def get_stats(self) -> dict[str, int]:
        return {
            "connections": len(self._registry),
            "dispatched": self._dispatched,
            "dropped": self._dropped,
        }

    def dispatch(self, event: MessageEvent) -> int:
        """
        Deliver one event to every connection, in registration order.

        Returns:
            Number of connections the frame was handed to
        """
        frame = format_frame(event)
        delivered = 0

        def _deliver(connection: Connection) -> None:
            nonlocal delivered
            try:
                connection.deliver(frame)
                delivered += 1
            except DeliveryException as exc:
                self._drop(connection, exc.message)

        self._registry.for_each(_deliver)
        self._dispatched += 1
        logger.debug(
            "[SSE-HUB] Dispatched message",
            extra={"message_id": event.id, "delivered": delivered},
        )
        return delivered

    def close_all(self, reason: str = "shutdown") -> int:
        """Cancel and unregister every connection; returns how many were closed."""
        closed = 0
        for connection in self._registry.snapshot():
            self._registry.unregister(connection.connection_id)
            connection.cancel()
            closed += 1
        if closed:
            logger.info(f"[SSE-HUB] Closed {closed} connections ({reason})")
        return closed

    def _drop(self, connection: Connection, reason: str) -> None:
        self._registry.unregister(connection.connection_id)
        connection.cancel()
        self._dropped += 1
        logger.info(
            f"[SSE-HUB] Dropping connection {connection.connection_id}: {reason}",
            extra={"connection_id": connection.connection_id},
        )
