# backend/relay/services/messaging/__init__.py
"""
Messaging services package.

Architecture:
- One shared change-feed subscription per process (WatcherSupervisor)
- Committed inserts fan out through the BroadcastHub to every registered
  connection
- Each SSE client drains its own bounded sink (ClientStream)

    writer -> store -> change feed -> watcher -> hub -> registry -> streams
"""

from relay.services.messaging.change_feed import (
    ChangeFeed,
    FeedSubscription,
    MemoryChangeFeed,
    PostgresChangeFeed,
)
from relay.services.messaging.events import MessageEvent, format_frame, parse_notification
from relay.services.messaging.hub import BroadcastHub
from relay.services.messaging.registry import Connection, ConnectionRegistry
from relay.services.messaging.sse_stream import STREAM_HEADERS, ClientStream, StreamState
from relay.services.messaging.store import MessageStore
from relay.services.messaging.supervisor import WatcherSupervisor
from relay.services.messaging.watcher import ChangeWatcher

__all__ = [
    # Change feeds
    "ChangeFeed",
    "FeedSubscription",
    "MemoryChangeFeed",
    "PostgresChangeFeed",
    # Events
    "MessageEvent",
    "format_frame",
    "parse_notification",
    # Fan-out
    "BroadcastHub",
    "Connection",
    "ConnectionRegistry",
    "WatcherSupervisor",
    "ChangeWatcher",
    # SSE
    "STREAM_HEADERS",
    "ClientStream",
    "StreamState",
    # Writer side
    "MessageStore",
]
