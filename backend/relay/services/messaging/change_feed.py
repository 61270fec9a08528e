# backend/relay/services/messaging/change_feed.py
"""
Change feeds: live streams of insert notifications from the message store.

Two backends share one interface:

- PostgresChangeFeed: a dedicated asyncpg connection per subscription running
  LISTEN on the channel the insert trigger NOTIFYs. Separate from the
  SQLAlchemy pool, since pooled connections are recycled and a LISTEN must
  stay on one session.
- MemoryChangeFeed: in-process fan-out for stores without native
  notifications (SQLite in development and tests). The store announces each
  committed insert to it.

Both deliver raw payload strings through a FeedSubscription, which adapts the
callback style of asyncpg listeners into an async iterator.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
import asyncio
from contextlib import asynccontextmanager
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Set, Union

import asyncpg

from relay.core.exceptions import ChangeFeedError

logger = logging.getLogger(__name__)

_CLOSED = object()


class FeedSubscription:
    """
    Queue-backed async iterator over one channel's payloads.

    Iteration waits (no polling) for the next payload. It ends when the
    subscription is closed and raises ChangeFeedError when the feed fails.
    If ``probe`` is given and nothing arrives for ``probe_interval`` seconds,
    the probe is awaited; a probe that raises ChangeFeedError fails the
    subscription, one that returns means the feed is merely quiet.
    """

    def __init__(
        self,
        channel: str,
        *,
        probe: Optional[Callable[[], Awaitable[None]]] = None,
        probe_interval: Optional[float] = None,
    ) -> None:
        self.channel = channel
        self._queue: asyncio.Queue[Union[str, BaseException, object]] = asyncio.Queue()
        self._probe = probe
        self._probe_interval = probe_interval if probe is not None else None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, payload: str) -> None:
        if not self._closed:
            self._queue.put_nowait(payload)

    def fail(self, error: BaseException) -> None:
        if not self._closed:
            self._queue.put_nowait(error)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> "FeedSubscription":
        return self

    async def __anext__(self) -> str:
        probe = self._probe
        while True:
            if probe is None or self._probe_interval is None:
                item = await self._queue.get()
            else:
                try:
                    item = await asyncio.wait_for(self._queue.get(), timeout=self._probe_interval)
                except asyncio.TimeoutError:
                    await probe()
                    continue

            if item is _CLOSED:
                raise StopAsyncIteration
            if isinstance(item, BaseException):
                raise item
            return item  # type: ignore[return-value]


class ChangeFeed(ABC):
    """Source of insert notifications for one store."""

    # True when the database itself announces committed inserts
    native_notifications: bool = False

    @abstractmethod
    def listen(self, channel: str) -> Any:
        """
        Async context manager yielding a FeedSubscription for ``channel``.

        The subscription is live (notifications are being captured) once the
        context is entered, and all resources are released on exit.

        Raises:
            ChangeFeedError: If the subscription cannot be established
        """

    async def announce_insert(self, channel: str, payload: str) -> None:
        """
        Called by the store after an insert commits.

        Feeds whose store announces inserts natively (a database trigger)
        ignore this.
        """


class MemoryChangeFeed(ChangeFeed):
    """In-process change feed for stores without native notifications."""

    def __init__(self) -> None:
        self._subscriptions: Dict[str, Set[FeedSubscription]] = {}

    def subscriber_count(self, channel: str) -> int:
        return len(self._subscriptions.get(channel, ()))

    @asynccontextmanager
    async def listen(self, channel: str) -> AsyncIterator[FeedSubscription]:
        subscription = FeedSubscription(channel)
        self._subscriptions.setdefault(channel, set()).add(subscription)
        logger.debug(f"[FEED] Memory subscription opened on {channel}")
        try:
            yield subscription
        finally:
            subscription.close()
            subscribers = self._subscriptions.get(channel)
            if subscribers is not None:
                subscribers.discard(subscription)
                if not subscribers:
                    del self._subscriptions[channel]
            logger.debug(f"[FEED] Memory subscription closed on {channel}")

    async def announce_insert(self, channel: str, payload: str) -> None:
        for subscription in list(self._subscriptions.get(channel, ())):
            subscription.push(payload)

    def fail(self, channel: str, error: BaseException) -> None:
        """Fail every live subscription on ``channel`` (store went away)."""
        for subscription in list(self._subscriptions.get(channel, ())):
            subscription.fail(error)


class PostgresChangeFeed(ChangeFeed):
    """
    LISTEN/NOTIFY change feed over a dedicated asyncpg connection.

    A dropped connection surfaces as ChangeFeedError through the termination
    listener; a connection that dies silently is caught by the periodic
    ``SELECT 1`` probe while the channel is quiet.
    """

    native_notifications = True

    def __init__(
        self,
        dsn: str,
        *,
        connect_timeout: float = 5.0,
        close_timeout: float = 5.0,
        probe_interval: Optional[float] = 30.0,
    ) -> None:
        self._dsn = dsn
        self._connect_timeout = connect_timeout
        self._close_timeout = close_timeout
        self._probe_interval = probe_interval

    async def _connect(self) -> asyncpg.Connection:
        try:
            return await asyncpg.connect(self._dsn, timeout=self._connect_timeout)
        except (OSError, asyncio.TimeoutError, asyncpg.PostgresError) as exc:
            raise ChangeFeedError(f"LISTEN connection failed: {exc}") from exc

    async def _close(self, connection: asyncpg.Connection) -> None:
        if connection.is_closed():
            return
        try:
            await asyncio.wait_for(connection.close(), timeout=self._close_timeout)
        except (OSError, asyncio.TimeoutError, asyncpg.PostgresError) as exc:
            logger.warning(f"[FEED] LISTEN connection did not close cleanly, terminating: {exc}")
            connection.terminate()

    @asynccontextmanager
    async def listen(self, channel: str) -> AsyncIterator[FeedSubscription]:
        connection = await self._connect()

        async def _probe() -> None:
            try:
                await asyncio.wait_for(connection.fetchval("SELECT 1"), timeout=self._connect_timeout)
            except (OSError, asyncio.TimeoutError, asyncpg.PostgresError) as exc:
                raise ChangeFeedError(f"LISTEN connection probe failed: {exc}") from exc
            logger.debug(f"[FEED] Channel {channel} quiet, connection alive")

        subscription = FeedSubscription(
            channel,
            probe=_probe if self._probe_interval else None,
            probe_interval=self._probe_interval,
        )

        def _on_notification(_conn: Any, _pid: int, _channel: str, payload: str) -> None:
            subscription.push(payload)

        def _on_termination(_conn: Any) -> None:
            logger.warning(f"[FEED] LISTEN connection for {channel} terminated")
            subscription.fail(ChangeFeedError("LISTEN connection terminated"))

        try:
            connection.add_termination_listener(_on_termination)
            await connection.add_listener(channel, _on_notification)
        except (OSError, asyncpg.PostgresError) as exc:
            await self._close(connection)
            raise ChangeFeedError(f"LISTEN {channel} failed: {exc}") from exc

        logger.info(f"[FEED] Listening on channel {channel}")
        try:
            yield subscription
        finally:
            subscription.close()
            connection.remove_termination_listener(_on_termination)
            await self._close(connection)
            logger.info(f"[FEED] Stopped listening on channel {channel}")
