# backend/relay/schemas/message_requests.py
"""
Request schemas for the relay.

Length limits are configurable, so they are enforced by MessageService
rather than here.
"""

from pydantic import Field

from ._strict_base import StrictRequestModel


class SendMessageRequest(StrictRequestModel):
    """A chat message submission."""

    username: str = Field(..., min_length=1, description="Display name of the author")
    content: str = Field(..., min_length=1, description="Message body")


# Ensure models are fully built for FastAPI dependency resolution in tests.
SendMessageRequest.model_rebuild()
