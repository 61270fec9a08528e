# backend/tests/conftest.py
"""
Pytest configuration for the relay.

Every test runs against an in-memory SQLite store with the in-process change
feed, so no database server is needed.
"""

import os
import sys

# Set the store BEFORE any relay imports, the module-level app reads it
os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ.setdefault("CI", "true")

# Add the backend directory to Python path so imports work
backend_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, backend_dir)

from typing import Iterator

from fastapi.testclient import TestClient
import pytest

from relay.core.config import Settings
from relay.main import create_app
from relay.runtime import RelayRuntime


@pytest.fixture
def relay_settings() -> Settings:
    return Settings(
        database_url="sqlite+pysqlite:///:memory:",
        sse_ping_interval=600,
        sse_queue_size=10,
        watcher_ready_timeout=2.0,
        watcher_backoff_initial=0.01,
        watcher_backoff_max=0.05,
        watcher_max_retries=3,
        feed_close_timeout=1.0,
    )


@pytest.fixture
def runtime(relay_settings: Settings) -> Iterator[RelayRuntime]:
    relay_runtime = RelayRuntime(relay_settings)
    yield relay_runtime
    relay_runtime.engine.dispose()


@pytest.fixture
def client(runtime: RelayRuntime) -> Iterator[TestClient]:
    app = create_app(runtime=runtime)
    with TestClient(app) as test_client:
        yield test_client
