# backend/relay/services/messaging/watcher.py
"""
Change Watcher: committed inserts as an async stream of MessageEvents.

Usage (cancellation is mandatory, so always close the generator):

    async with aclosing(watcher.subscribe()) as events:
        async for event in events:
            ...

Cancelling the consuming task closes the underlying feed connection within
the feed's close timeout.
"""

from __future__ import annotations

import logging
from typing import AsyncGenerator, Callable, Optional

from relay.core.exceptions import ChangeFeedError, WatcherException

from .change_feed import ChangeFeed
from .events import MessageEvent, parse_notification

logger = logging.getLogger(__name__)


class ChangeWatcher:
    """Subscribes to the store's insertion feed and yields normalized events."""

    def __init__(self, feed: ChangeFeed, channel: str) -> None:
        self._feed = feed
        self._channel = channel

    @property
    def channel(self) -> str:
        return self._channel

    async def subscribe(
        self,
        on_ready: Optional[Callable[[], None]] = None,
    ) -> AsyncGenerator[MessageEvent, None]:
        """
        Yield every insert committed after the subscription is established.

        Args:
            on_ready: Called once the feed is live, before the first event

        Raises:
            WatcherException: If the feed errors or ends while still iterated
        """
        try:
            async with self._feed.listen(self._channel) as subscription:
                logger.info(f"[WATCHER] Subscribed to {self._channel}")
                if on_ready is not None:
                    on_ready()
                async for payload in subscription:
                    event = parse_notification(payload)
                    if event is None:
                        continue
                    logger.debug(
                        "[WATCHER] Insert observed",
                        extra={"message_id": event.id, "channel": self._channel},
                    )
                    yield event
        except ChangeFeedError as exc:
            logger.error(f"[WATCHER] Change feed failed on {self._channel}: {exc}")
            raise WatcherException(
                f"Change feed failed: {exc}", details={"channel": self._channel}
            ) from exc

        raise WatcherException("Change feed closed unexpectedly", details={"channel": self._channel})
