# backend/relay/schemas/message_responses.py
"""
Response schemas for the relay.
"""

from typing import Literal

from pydantic import ConfigDict, Field

from ._strict_base import StrictModel


class SendMessageResponse(StrictModel):
    """Response after a message is persisted."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True, populate_by_name=True)

    success: bool = True
    message_id: str = Field(..., serialization_alias="messageId", description="Id of the stored message")


class HealthResponse(StrictModel):
    status: str
    service: str
    environment: str
    timestamp: str
    connections: int = Field(..., description="Open SSE streams on this process")
    watcher: Literal["running", "idle"]
