# backend/relay/services/message_service.py
"""
Message Service for the relay.

Handles the submit path: normalizes and validates a submission, then hands
it to the store. Delivery to streams happens only through the change feed,
never from here.
"""

import logging
from typing import Any

from ..core.exceptions import ValidationException
from .messaging.events import NOTIFY_PAYLOAD_LIMIT, MessageEvent, insert_notification_size
from .messaging.store import MessageStore

logger = logging.getLogger(__name__)


class MessageService:
    def __init__(
        self,
        store: MessageStore,
        *,
        username_max_length: int = 64,
        content_max_length: int = 2000,
    ) -> None:
        self.store = store
        self.username_max_length = username_max_length
        self.content_max_length = content_max_length

    def _clean(self, field: str, value: Any, max_length: int) -> str:
        if not isinstance(value, str):
            raise ValidationException(f"{field} must be a string", details={"field": field})
        cleaned = value.strip()
        if not cleaned:
            raise ValidationException(f"{field} is required", details={"field": field})
        if len(cleaned) > max_length:
            raise ValidationException(
                f"{field} exceeds {max_length} characters",
                details={"field": field, "max_length": max_length},
            )
        try:
            cleaned.encode("utf-8")
        except UnicodeEncodeError as exc:
            raise ValidationException(f"{field} is not valid text", details={"field": field}) from exc
        return cleaned

    async def submit(self, username: Any, content: Any) -> MessageEvent:
        """
        Validate and persist one message.

        Character limits alone do not bound the insert notification (a
        character can take up to 4 bytes, a control character escapes to 6),
        so the encoded envelope is checked against the NOTIFY payload limit
        too.

        Args:
            username: Display name of the author
            content: Message body

        Returns:
            The committed message

        Raises:
            ValidationException: If either field is missing, empty or too long
            PersistException: If the store rejects the write
        """
        clean_username = self._clean("username", username, self.username_max_length)
        clean_content = self._clean("content", content, self.content_max_length)

        payload_size = insert_notification_size(clean_username, clean_content)
        if payload_size >= NOTIFY_PAYLOAD_LIMIT:
            raise ValidationException(
                "message is too large for one insert notification",
                details={"bytes": payload_size, "limit": NOTIFY_PAYLOAD_LIMIT},
            )

        event = await self.store.insert(clean_username, clean_content)
        logger.info(
            "[MESSAGES] Message submitted",
            extra={"message_id": event.id, "content_length": len(clean_content)},
        )
        return event
