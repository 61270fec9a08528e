# backend/relay/dependencies.py
"""FastAPI dependencies resolving the process-scoped relay runtime."""

from fastapi import Depends, Request

from .runtime import RelayRuntime
from .services.message_service import MessageService


def get_runtime(request: Request) -> RelayRuntime:
    runtime: RelayRuntime = request.app.state.relay
    return runtime


def get_message_service(runtime: RelayRuntime = Depends(get_runtime)) -> MessageService:
    """Get message service instance."""
    return runtime.message_service()
