# backend/relay/services/messaging/store.py
"""
Message store: the writer's side of the durable store.

Inserts run on a worker thread through the repository and commit before
anything is announced. The change feed then carries the insert to the
watcher; the submitting request and the streams never talk directly.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import AsyncContextManager

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from relay.core.exceptions import PersistException, RepositoryException, StoreUnavailableException
from relay.repositories.message_repository import MessageRepository

from .change_feed import ChangeFeed
from .events import MessageEvent, build_insert_notification

logger = logging.getLogger(__name__)


class MessageStore:
    def __init__(self, session_factory: sessionmaker, feed: ChangeFeed, channel: str) -> None:
        self._session_factory = session_factory
        self._feed = feed
        self._channel = channel
        # The trigger announces Postgres inserts at commit; for in-process
        # feeds, commit + announce must happen as one step to keep commit order.
        self._announce_lock: AsyncContextManager[object] = (
            contextlib.nullcontext() if feed.native_notifications else asyncio.Lock()
        )

    async def insert(self, username: str, content: str) -> MessageEvent:
        """
        Persist a message and announce it on the change feed.

        Raises:
            PersistException: If the write fails (nothing is announced)
        """
        async with self._announce_lock:
            try:
                event = await asyncio.to_thread(self._insert_sync, username, content)
            except RepositoryException as exc:
                logger.error(f"[STORE] Failed to persist message: {exc}")
                raise PersistException("Failed to persist message") from exc
            await self._feed.announce_insert(self._channel, build_insert_notification(event))

        logger.info("[STORE] Message persisted", extra={"message_id": event.id})
        return event

    async def ping(self) -> None:
        """
        Raises:
            StoreUnavailableException: If the store cannot be reached
        """
        try:
            await asyncio.to_thread(self._ping_sync)
        except RepositoryException as exc:
            logger.error(f"[STORE] Store ping failed: {exc}")
            raise StoreUnavailableException("Message store is unreachable") from exc

    def _insert_sync(self, username: str, content: str) -> MessageEvent:
        db = self._session_factory()
        try:
            repo = MessageRepository(db)
            message = repo.create_message(username=username, content=content)
            db.commit()
            return MessageEvent.from_model(message)
        except RepositoryException:
            db.rollback()
            raise
        except SQLAlchemyError as exc:
            db.rollback()
            raise RepositoryException(f"Commit failed: {exc}") from exc
        finally:
            db.close()

    def _ping_sync(self) -> None:
        db = self._session_factory()
        try:
            MessageRepository(db).ping()
        finally:
            db.close()
