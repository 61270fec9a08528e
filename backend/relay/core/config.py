# backend/relay/core/config.py
import logging
import os
from pathlib import Path
import re
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


def is_running_tests() -> bool:
    """
    Detect if code is running under pytest.

    PYTEST_CURRENT_TEST is set automatically by pytest during test runs, and is
    not expected to be present in production environments.
    """
    return os.getenv("PYTEST_CURRENT_TEST") is not None


# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = Path(__file__).parent.parent.parent / ".env"  # Goes up to backend/.env
    logger.debug(f"[CONFIG] Looking for .env at: {env_path}")
    load_dotenv(env_path)


_CHANNEL_PATTERN = re.compile(r"^[a-z_][a-z0-9_]{0,62}$")


class Settings(BaseSettings):
    environment: str = "development"
    log_level: str = Field(default="INFO", description="Root log level")

    # Durable store
    database_url: str = Field(
        default="sqlite+pysqlite:///./relay.db",
        description="SQLAlchemy URL of the message store",
    )
    listen_database_url: Optional[str] = Field(
        default=None,
        description="Optional URL for the LISTEN connection (bypasses transaction poolers)",
    )
    message_channel: str = Field(
        default="message_inserts",
        description="NOTIFY channel the insert trigger publishes on",
    )

    # SSE streaming
    sse_ping_interval: int = Field(default=15, description="SSE keep-alive comment interval in seconds")
    sse_queue_size: int = Field(default=100, description="Max frames buffered per connection")

    # Change watcher supervision
    watcher_ready_timeout: float = 5.0
    watcher_backoff_initial: float = 0.5
    watcher_backoff_max: float = 30.0
    watcher_max_retries: int = 5
    watcher_idle_shutdown: bool = Field(
        default=True,
        description="Stop the change-feed subscription while no stream is connected",
    )

    # Change feed connection
    feed_probe_interval: float = Field(
        default=30.0, description="Seconds without notifications before probing the LISTEN connection"
    )
    feed_connect_timeout: float = 5.0
    feed_close_timeout: float = 5.0

    # Submission limits (a row must fit in one NOTIFY payload)
    username_max_length: int = 64
    content_max_length: int = 2000

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("message_channel")
    @classmethod
    def _validate_channel(cls, value: str) -> str:
        normalized = value.strip().lower()
        if not _CHANNEL_PATTERN.match(normalized):
            raise ValueError(f"message_channel must be a plain SQL identifier, got {value!r}")
        return normalized

    @field_validator("sse_queue_size", "watcher_max_retries")
    @classmethod
    def _validate_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    @property
    def is_postgres(self) -> bool:
        """Whether the store supports native LISTEN/NOTIFY."""
        return self.database_url.split(":", 1)[0].split("+", 1)[0] in ("postgresql", "postgres")

    @property
    def listen_dsn(self) -> str:
        """
        DSN for the dedicated asyncpg LISTEN connection.

        SQLAlchemy URLs carry a driver suffix (``postgresql+psycopg2://``)
        that asyncpg does not understand, so it is stripped here.
        """
        url = self.listen_database_url or self.database_url
        scheme, sep, rest = url.partition("://")
        if not sep:
            return url
        return f"postgres://{rest}" if scheme.split("+", 1)[0] in ("postgresql", "postgres") else url


settings = Settings()
