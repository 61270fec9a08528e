# backend/relay/routes/v1/health.py
"""
Health check endpoint for monitoring and load balancer probes.
"""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from ...dependencies import get_runtime
from ...runtime import RelayRuntime
from ...schemas.message_responses import HealthResponse

SERVICE_NAME = "chat-relay"

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
def health_check(runtime: RelayRuntime = Depends(get_runtime)) -> HealthResponse:
    """
    Health check endpoint.

    Reports open streams and whether the shared change-feed subscription
    is currently running.
    """
    return HealthResponse(
        status="healthy",
        service=SERVICE_NAME,
        environment=runtime.settings.environment,
        timestamp=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        connections=len(runtime.registry),
        watcher="running" if runtime.supervisor.is_running else "idle",
    )
