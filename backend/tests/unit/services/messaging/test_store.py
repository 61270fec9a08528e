"""Unit tests for the message store (persist, then announce)."""

import asyncio
import json

import pytest

from relay.core.exceptions import PersistException, RepositoryException, StoreUnavailableException
from relay.database import build_session_factory, create_db_engine, init_schema
from relay.repositories.message_repository import MessageRepository
from relay.services.messaging.change_feed import MemoryChangeFeed
from relay.services.messaging.store import MessageStore

CHANNEL = "message_inserts"


@pytest.fixture
def engine():
    db_engine = create_db_engine("sqlite+pysqlite:///:memory:")
    init_schema(db_engine, CHANNEL)
    yield db_engine
    db_engine.dispose()


def _count(session_factory) -> int:
    db = session_factory()
    try:
        return MessageRepository(db).count()
    finally:
        db.close()


@pytest.mark.asyncio
async def test_insert_persists_then_announces(engine) -> None:
    feed = MemoryChangeFeed()
    session_factory = build_session_factory(engine)
    store = MessageStore(session_factory, feed, CHANNEL)

    async with feed.listen(CHANNEL) as subscription:
        event = await store.insert("alice", "hello")
        payload = json.loads(await asyncio.wait_for(subscription.__anext__(), timeout=1))

    assert payload["operation"] == "insert"
    assert payload["record"]["id"] == event.id
    assert payload["record"]["username"] == "alice"
    assert payload["record"]["content"] == "hello"
    assert _count(session_factory) == 1

    db = session_factory()
    try:
        stored = MessageRepository(db).get_by_id(event.id)
        assert stored is not None and stored.content == "hello"
    finally:
        db.close()


@pytest.mark.asyncio
async def test_announcements_follow_commit_order(engine) -> None:
    feed = MemoryChangeFeed()
    store = MessageStore(build_session_factory(engine), feed, CHANNEL)

    async with feed.listen(CHANNEL) as subscription:
        events = await asyncio.gather(*(store.insert("alice", f"m{i}") for i in range(5)))
        announced = [json.loads(await subscription.__anext__())["record"]["id"] for _ in events]

    assert announced == [e.id for e in events]


@pytest.mark.asyncio
async def test_persist_failure_announces_nothing(engine, monkeypatch) -> None:
    feed = MemoryChangeFeed()
    session_factory = build_session_factory(engine)
    store = MessageStore(session_factory, feed, CHANNEL)

    def broken_create(self, **kwargs):
        raise RepositoryException("disk full")

    async with feed.listen(CHANNEL) as subscription:
        with monkeypatch.context() as patch:
            patch.setattr(MessageRepository, "create_message", broken_create)
            with pytest.raises(PersistException):
                await store.insert("alice", "lost")

        event = await store.insert("alice", "kept")
        first = json.loads(await asyncio.wait_for(subscription.__anext__(), timeout=1))

    # The first thing announced is the message that actually committed
    assert first["record"]["id"] == event.id
    assert _count(session_factory) == 1


@pytest.mark.asyncio
async def test_ping_reports_unreachable_store(engine, monkeypatch) -> None:
    store = MessageStore(build_session_factory(engine), MemoryChangeFeed(), CHANNEL)
    await store.ping()

    def broken_ping(self) -> None:
        raise RepositoryException("no route to host")

    monkeypatch.setattr(MessageRepository, "ping", broken_ping)
    with pytest.raises(StoreUnavailableException):
        await store.ping()
