# backend/relay/main.py
"""
Chat relay application.

    POST /api/send-messages   persist a message
    GET  /api/stream-messages SSE stream of newly committed messages
    GET  /health              liveness and fan-out status
"""

from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import AsyncGenerator, Optional

from fastapi import FastAPI

from .core.config import Settings, is_running_tests, settings
from .core.exceptions import StoreUnavailableException
from .errors import register_error_handlers
from .routes.v1 import health as health_v1, messages as messages_v1
from .runtime import RelayRuntime

API_TITLE = "Chat Relay"
API_DESCRIPTION = "Persists chat messages and streams every new one to connected clients over SSE."
API_VERSION = "1.0.0"

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def app_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle application startup/shutdown without deprecated events."""
    runtime: RelayRuntime = app.state.relay
    logger.info(f"{API_TITLE} starting up...")
    logger.info(f"Environment: {runtime.settings.environment}")
    if is_running_tests():
        logger.info("Running under pytest (test mode active)")

    try:
        await runtime.start()
    except StoreUnavailableException as exc:
        logger.critical(f"Message store unavailable at startup, refusing to serve: {exc.message}")
        raise

    try:
        yield
    finally:
        logger.info(f"{API_TITLE} shutting down...")
        await runtime.stop()


def create_app(
    runtime_settings: Optional[Settings] = None,
    *,
    runtime: Optional[RelayRuntime] = None,
) -> FastAPI:
    app = FastAPI(
        title=API_TITLE,
        description=API_DESCRIPTION,
        version=API_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=app_lifespan,
    )
    app.state.relay = runtime if runtime is not None else RelayRuntime(runtime_settings or settings)

    # Register unified error envelope handlers
    register_error_handlers(app)

    app.include_router(messages_v1.router, prefix="/api")
    app.include_router(health_v1.router)
    return app


app = create_app()
