# backend/relay/schemas/__init__.py
"""Request and response schemas for the relay API."""

from .message_requests import SendMessageRequest
from .message_responses import HealthResponse, SendMessageResponse

__all__ = ["SendMessageRequest", "SendMessageResponse", "HealthResponse"]
