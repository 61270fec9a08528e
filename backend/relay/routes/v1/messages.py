# backend/relay/routes/v1/messages.py
"""
Messages routes

All business logic delegated to MessageService and the relay runtime.

Endpoints:
    POST /send-messages - Persist a message (delivery happens via the change feed)
    GET /stream-messages - SSE stream of every message committed after connecting
"""

import logging

from fastapi import APIRouter, Body, Depends, status
from sse_starlette.sse import EventSourceResponse

from ...core.exceptions import DomainException, StoreUnavailableException
from ...dependencies import get_message_service, get_runtime
from ...runtime import RelayRuntime
from ...schemas.message_requests import SendMessageRequest
from ...schemas.message_responses import SendMessageResponse
from ...services.message_service import MessageService
from ...services.messaging.sse_stream import STREAM_HEADERS

logger = logging.getLogger(__name__)

# No prefix here, added when mounting in main.py
router = APIRouter(tags=["messages-v1"])


@router.post(
    "/send-messages",
    response_model=SendMessageResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"description": "Missing, empty or malformed username/content"},
        500: {"description": "Message could not be persisted"},
    },
)
async def send_message(
    payload: SendMessageRequest = Body(...),
    service: MessageService = Depends(get_message_service),
) -> SendMessageResponse:
    """
    Persist a chat message.

    Returns as soon as the row is committed. Open streams receive it through
    the store's change feed, not from this request.
    """
    try:
        event = await service.submit(payload.username, payload.content)
    except DomainException as e:
        raise e.to_http_exception()
    return SendMessageResponse(message_id=event.id)


@router.get(
    "/stream-messages",
    responses={
        200: {"description": "SSE stream established"},
        503: {"description": "Change feed unavailable"},
    },
)
async def stream_messages(runtime: RelayRuntime = Depends(get_runtime)) -> EventSourceResponse:
    """
    SSE endpoint for real-time messages.

    Each frame is ``data: {"id","username","content","createdAt"}``. No
    backlog is replayed on connect. Keep-alive comments are sent while idle.
    """
    try:
        await runtime.supervisor.ensure_running()
    except StoreUnavailableException as e:
        logger.error(f"[SSE] Refusing stream: {e.message}")
        raise e.to_http_exception()
    # The body registers the connection; if it never runs, let the pump go idle
    runtime.supervisor.release_later()

    logger.info("[SSE] Stream requested", extra={"open_streams": len(runtime.registry)})
    return EventSourceResponse(
        runtime.stream_frames(),
        headers=dict(STREAM_HEADERS),
        ping=runtime.settings.sse_ping_interval,
        media_type="text/event-stream",
    )
