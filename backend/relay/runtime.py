# backend/relay/runtime.py
"""
Process-scoped relay state.

One RelayRuntime is created per application and stored on ``app.state``.
It owns the engine, the change feed, and the single hub/registry/supervisor
set shared by every request; routes reach it through dependencies.
"""

from __future__ import annotations

import asyncio
from contextlib import aclosing
import logging
from typing import AsyncGenerator, Optional

from sqlalchemy.engine import Engine

from .core.config import Settings
from .core.exceptions import StoreUnavailableException
from .database import build_session_factory, create_db_engine, init_schema
from .services.message_service import MessageService
from .services.messaging.change_feed import ChangeFeed, MemoryChangeFeed, PostgresChangeFeed
from .services.messaging.hub import BroadcastHub
from .services.messaging.registry import ConnectionRegistry
from .services.messaging.sse_stream import ClientStream
from .services.messaging.store import MessageStore
from .services.messaging.supervisor import WatcherSupervisor
from .services.messaging.watcher import ChangeWatcher

logger = logging.getLogger(__name__)


def build_change_feed(runtime_settings: Settings) -> ChangeFeed:
    """LISTEN/NOTIFY for PostgreSQL, in-process announcements otherwise."""
    if runtime_settings.is_postgres:
        return PostgresChangeFeed(
            runtime_settings.listen_dsn,
            connect_timeout=runtime_settings.feed_connect_timeout,
            close_timeout=runtime_settings.feed_close_timeout,
            probe_interval=runtime_settings.feed_probe_interval,
        )
    return MemoryChangeFeed()


class RelayRuntime:
    def __init__(
        self,
        runtime_settings: Settings,
        *,
        engine: Optional[Engine] = None,
        feed: Optional[ChangeFeed] = None,
    ) -> None:
        self.settings = runtime_settings
        self._owns_engine = engine is None
        self.engine = engine if engine is not None else create_db_engine(runtime_settings.database_url)
        self.session_factory = build_session_factory(self.engine)
        self.feed = feed if feed is not None else build_change_feed(runtime_settings)

        channel = runtime_settings.message_channel
        self.registry = ConnectionRegistry()
        self.hub = BroadcastHub(self.registry)
        self.watcher = ChangeWatcher(self.feed, channel)
        self.supervisor = WatcherSupervisor(
            self.watcher,
            self.hub,
            self.registry,
            ready_timeout=runtime_settings.watcher_ready_timeout,
            backoff_initial=runtime_settings.watcher_backoff_initial,
            backoff_max=runtime_settings.watcher_backoff_max,
            max_retries=runtime_settings.watcher_max_retries,
            idle_shutdown=runtime_settings.watcher_idle_shutdown,
            stop_timeout=runtime_settings.feed_close_timeout,
        )
        self.store = MessageStore(self.session_factory, self.feed, channel)

    async def start(self) -> None:
        """
        Bootstrap the schema and check the store is reachable.

        Raises:
            StoreUnavailableException: If the store or its change feed cannot be reached
        """
        await asyncio.to_thread(init_schema, self.engine, self.settings.message_channel)
        await self.store.ping()
        if not self.settings.watcher_idle_shutdown:
            await self.supervisor.ensure_running()
        logger.info(
            "[RELAY] Runtime started",
            extra={
                "dialect": self.engine.dialect.name,
                "channel": self.settings.message_channel,
            },
        )

    async def stop(self) -> None:
        self.hub.close_all(reason="shutdown")
        await self.supervisor.stop()
        if self._owns_engine:
            self.engine.dispose()
        logger.info("[RELAY] Runtime stopped")

    def message_service(self) -> MessageService:
        return MessageService(
            self.store,
            username_max_length=self.settings.username_max_length,
            content_max_length=self.settings.content_max_length,
        )

    async def stream_frames(self) -> AsyncGenerator[bytes, None]:
        """
        Body of one SSE response.

        The connection is registered when the response starts iterating, not
        when the route returns, so a response that is never sent leaves
        nothing behind in the registry.
        """
        stream = ClientStream.open(
            self.registry,
            queue_size=self.settings.sse_queue_size,
            on_closed=self.supervisor.release,
        )
        try:
            await self.supervisor.ensure_running()
            async with aclosing(stream.frames()) as frames:
                async for frame in frames:
                    yield frame
        except StoreUnavailableException as exc:
            logger.error(
                f"[SSE-STREAM] Closing stream, change feed unavailable: {exc.message}",
                extra={"connection_id": stream.connection_id},
            )
        finally:
            stream.close()
