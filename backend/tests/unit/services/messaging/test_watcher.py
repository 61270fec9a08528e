"""Unit tests for the change watcher."""

import asyncio
from contextlib import aclosing, asynccontextmanager
from datetime import datetime, timezone

import pytest

from relay.core.exceptions import ChangeFeedError, WatcherException
from relay.services.messaging.change_feed import ChangeFeed, MemoryChangeFeed
from relay.services.messaging.events import MessageEvent, build_insert_notification
from relay.services.messaging.watcher import ChangeWatcher

CHANNEL = "message_inserts"


def _event(message_id: str) -> MessageEvent:
    return MessageEvent(
        id=message_id,
        username="alice",
        content="hi",
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


class _UnreachableFeed(ChangeFeed):
    @asynccontextmanager
    async def listen(self, channel: str):
        raise ChangeFeedError("connection refused")
        yield  # pragma: no cover


@pytest.mark.asyncio
async def test_subscribe_yields_inserts_and_skips_other_operations() -> None:
    feed = MemoryChangeFeed()
    watcher = ChangeWatcher(feed, CHANNEL)
    ready = asyncio.Event()

    async with aclosing(watcher.subscribe(on_ready=ready.set)) as events:
        first = asyncio.ensure_future(events.__anext__())
        await asyncio.wait_for(ready.wait(), timeout=1)

        await feed.announce_insert(CHANNEL, '{"operation": "update", "record": {}}')
        await feed.announce_insert(CHANNEL, "garbage")
        await feed.announce_insert(CHANNEL, build_insert_notification(_event("m1")))
        await feed.announce_insert(CHANNEL, build_insert_notification(_event("m2")))

        assert await asyncio.wait_for(first, timeout=1) == _event("m1")
        assert await asyncio.wait_for(events.__anext__(), timeout=1) == _event("m2")

    assert feed.subscriber_count(CHANNEL) == 0


@pytest.mark.asyncio
async def test_subscribe_ignores_other_channels() -> None:
    feed = MemoryChangeFeed()
    watcher = ChangeWatcher(feed, CHANNEL)
    ready = asyncio.Event()

    async with aclosing(watcher.subscribe(on_ready=ready.set)) as events:
        pending = asyncio.ensure_future(events.__anext__())
        await asyncio.wait_for(ready.wait(), timeout=1)
        await feed.announce_insert("other_channel", build_insert_notification(_event("x")))
        await feed.announce_insert(CHANNEL, build_insert_notification(_event("m1")))

        assert (await asyncio.wait_for(pending, timeout=1)).id == "m1"


@pytest.mark.asyncio
async def test_feed_error_surfaces_as_watcher_exception() -> None:
    feed = MemoryChangeFeed()
    watcher = ChangeWatcher(feed, CHANNEL)
    ready = asyncio.Event()

    async with aclosing(watcher.subscribe(on_ready=ready.set)) as events:
        pending = asyncio.ensure_future(events.__anext__())
        await asyncio.wait_for(ready.wait(), timeout=1)
        feed.fail(CHANNEL, ChangeFeedError("connection lost"))

        with pytest.raises(WatcherException, match="connection lost"):
            await asyncio.wait_for(pending, timeout=1)

    assert feed.subscriber_count(CHANNEL) == 0


@pytest.mark.asyncio
async def test_unreachable_feed_raises_before_ready() -> None:
    watcher = ChangeWatcher(_UnreachableFeed(), CHANNEL)
    ready_calls = []

    with pytest.raises(WatcherException) as exc_info:
        async for _item in watcher.subscribe(on_ready=lambda: ready_calls.append(True)):
            pass

    assert exc_info.value.details == {"channel": CHANNEL}
    assert ready_calls == []


@pytest.mark.asyncio
async def test_cancelling_consumer_releases_subscription() -> None:
    feed = MemoryChangeFeed()
    watcher = ChangeWatcher(feed, CHANNEL)
    ready = asyncio.Event()

    async def _consume() -> None:
        async with aclosing(watcher.subscribe(on_ready=ready.set)) as events:
            async for _item in events:
                pass

    consumer = asyncio.ensure_future(_consume())
    await asyncio.wait_for(ready.wait(), timeout=1)
    assert feed.subscriber_count(CHANNEL) == 1

    consumer.cancel()
    with pytest.raises(asyncio.CancelledError):
        await consumer

    assert feed.subscriber_count(CHANNEL) == 0
