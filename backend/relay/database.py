# backend/relay/database.py
"""
Database engine, session factory, and metadata for the message store.

The engine and session factory are created by the relay runtime at startup
and handed to the components that need them; nothing here opens a connection
at import time.
"""

from __future__ import annotations

from datetime import datetime
import logging
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeMeta, declarative_base, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from .core.exceptions import StoreUnavailableException

logger = logging.getLogger(__name__)

Base: DeclarativeMeta = declarative_base()

_POSTGRES_POOL_KWARGS: dict[str, Any] = {
    "pool_size": 5,
    "max_overflow": 10,
    "pool_timeout": 10,
    "pool_recycle": 1800,
    "pool_pre_ping": True,
    "future": True,
}


def create_db_engine(url: str) -> Engine:
    """Create the store engine with pooling suited to the dialect."""
    if url.startswith("sqlite"):
        kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False}, "future": True}
        if ":memory:" in url or url in ("sqlite://", "sqlite+pysqlite://"):
            # One shared connection, otherwise every checkout sees an empty database
            kwargs["poolclass"] = StaticPool
        engine = create_engine(url, **kwargs)
    else:
        engine = create_engine(
            url,
            poolclass=QueuePool,
            connect_args={"connect_timeout": 10, "application_name": "chat_relay"},
            **_POSTGRES_POOL_KWARGS,
        )

    @event.listens_for(engine, "connect")
    def receive_connect(dbapi_connection: Any, connection_record: Any) -> None:
        connection_record.info["connect_time"] = datetime.now()
        logger.debug("Database connection established")

    return engine


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


def _notify_trigger_ddl(channel: str) -> list[str]:
    return [
        f"""
        CREATE OR REPLACE FUNCTION notify_message_insert()
        RETURNS TRIGGER
        AS $$
        BEGIN
            PERFORM pg_notify(
                '{channel}',
                json_build_object(
                    'operation', lower(TG_OP),
                    'record', json_build_object(
                        'id', NEW.id,
                        'username', NEW.username,
                        'content', NEW.content,
                        'created_at', NEW.created_at
                    )
                )::text
            );
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql;
        """,
        "DROP TRIGGER IF EXISTS message_insert_notify ON messages;",
        """
        CREATE TRIGGER message_insert_notify
        AFTER INSERT ON messages
        FOR EACH ROW
        EXECUTE FUNCTION notify_message_insert();
        """,
    ]


def init_schema(engine: Engine, channel: str) -> None:
    """
    Create the messages table and, on PostgreSQL, the insert NOTIFY trigger.

    NOTIFY is delivered only when the inserting transaction commits, so
    listeners observe inserts in commit order and never see rolled-back rows.

    Raises:
        StoreUnavailableException: If the store cannot be reached
    """
    from . import models  # noqa: F401  (registers the table on Base.metadata)

    try:
        Base.metadata.create_all(bind=engine)
        if engine.dialect.name == "postgresql":
            with engine.begin() as connection:
                for statement in _notify_trigger_ddl(channel):
                    connection.exec_driver_sql(statement)
            logger.info("[STORE] Insert NOTIFY trigger installed on channel %s", channel)
    except SQLAlchemyError as exc:
        logger.error(f"[STORE] Schema bootstrap failed: {exc}")
        raise StoreUnavailableException(
            "Message store is unreachable", details={"dialect": engine.dialect.name}
        ) from exc
