"""Unit tests for the broadcast hub."""

from datetime import datetime, timezone

from relay.services.messaging.events import MessageEvent, format_frame
from relay.services.messaging.hub import BroadcastHub
from relay.services.messaging.registry import Connection, ConnectionRegistry


def _event(message_id: str) -> MessageEvent:
    return MessageEvent(
        id=message_id,
        username="alice",
        content=f"message {message_id}",
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


def _drain(connection: Connection) -> list:
    frames = []
    while not connection.sink.empty():
        frames.append(connection.sink.get_nowait())
    return frames


def test_dispatch_delivers_identical_frame_to_every_connection() -> None:
    registry = ConnectionRegistry()
    hub = BroadcastHub(registry)
    connections = [Connection.create(10) for _ in range(3)]
    for connection in connections:
        registry.register(connection)

    delivered = hub.dispatch(_event("m1"))

    assert delivered == 3
    expected = format_frame(_event("m1"))
    for connection in connections:
        assert _drain(connection) == [expected]


def test_dispatch_preserves_order_per_connection() -> None:
    registry = ConnectionRegistry()
    hub = BroadcastHub(registry)
    connection = Connection.create(10)
    registry.register(connection)

    for message_id in ("m1", "m2", "m3"):
        hub.dispatch(_event(message_id))

    assert _drain(connection) == [format_frame(_event(m)) for m in ("m1", "m2", "m3")]


def test_dispatch_with_no_connections_is_a_no_op() -> None:
    hub = BroadcastHub(ConnectionRegistry())

    assert hub.dispatch(_event("m1")) == 0
    assert hub.get_stats() == {"connections": 0, "dispatched": 1, "dropped": 0}


def test_full_connection_is_dropped_without_affecting_others() -> None:
    registry = ConnectionRegistry()
    hub = BroadcastHub(registry)
    slow = Connection.create(1)
    healthy = Connection.create(10)
    registry.register(slow)
    registry.register(healthy)

    hub.dispatch(_event("m1"))
    delivered = hub.dispatch(_event("m2"))

    assert delivered == 1
    assert slow.is_cancelled
    assert slow.connection_id not in registry
    assert healthy.connection_id in registry
    assert _drain(healthy) == [format_frame(_event("m1")), format_frame(_event("m2"))]
    assert hub.get_stats()["dropped"] == 1


def test_cancelled_connection_still_registered_is_dropped() -> None:
    registry = ConnectionRegistry()
    hub = BroadcastHub(registry)
    connection = Connection.create(10)
    registry.register(connection)
    connection.cancel()

    assert hub.dispatch(_event("m1")) == 0
    assert len(registry) == 0


def test_close_all_cancels_and_unregisters() -> None:
    registry = ConnectionRegistry()
    hub = BroadcastHub(registry)
    connections = [Connection.create(10) for _ in range(2)]
    for connection in connections:
        registry.register(connection)

    assert hub.close_all(reason="test") == 2
    assert len(registry) == 0
    assert all(c.is_cancelled for c in connections)
    assert hub.close_all() == 0
