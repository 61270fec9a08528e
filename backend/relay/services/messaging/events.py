# backend/relay/services/messaging/events.py
"""
Normalized message events and their wire format.

A committed insert reaches the relay as a change-feed notification envelope:

    {"operation": "insert", "record": {"id", "username", "content", "created_at"}}

The watcher turns insert envelopes into MessageEvent objects; the hub renders
each MessageEvent as one SSE frame:

    data: {"id":"...","username":"...","content":"...","createdAt":"..."}\\n\\n
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import json
import logging
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional

if TYPE_CHECKING:
    from relay.models.message import Message

logger = logging.getLogger(__name__)

INSERT_OPERATION = "insert"

# pg_notify rejects payloads of 8000 bytes or more
NOTIFY_PAYLOAD_LIMIT = 8000

# Longest id and created_at the insert trigger emits
_SIZING_ID = "f" * 32
_SIZING_CREATED_AT = "2000-01-01T00:00:00.000000+00:00"


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything the relay writes is UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """ISO-8601 UTC with millisecond precision and a ``Z`` suffix."""
    return _as_utc(value).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _parse_timestamp(raw: Any) -> datetime:
    if isinstance(raw, datetime):
        return _as_utc(raw)
    if not isinstance(raw, str):
        raise ValueError(f"created_at must be a timestamp string, got {type(raw).__name__}")
    return _as_utc(datetime.fromisoformat(raw.replace("Z", "+00:00")))


@dataclass(frozen=True)
class MessageEvent:
    """Transient copy of a committed message, held only for delivery."""

    id: str
    username: str
    content: str
    created_at: datetime

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "MessageEvent":
        """
        Build an event from a stored row as carried in a notification.

        Raises:
            ValueError: If a field is missing or has the wrong type
        """
        try:
            message_id = record["id"]
            username = record["username"]
            content = record["content"]
            created_at = record["created_at"]
        except KeyError as exc:
            raise ValueError(f"record is missing field {exc.args[0]!r}") from exc
        for name, value in (("id", message_id), ("username", username), ("content", content)):
            if not isinstance(value, str):
                raise ValueError(f"{name} must be a string")
        return cls(
            id=message_id,
            username=username,
            content=content,
            created_at=_parse_timestamp(created_at),
        )

    @classmethod
    def from_model(cls, message: "Message") -> "MessageEvent":
        return cls(
            id=str(message.id),
            username=str(message.username),
            content=str(message.content),
            created_at=_parse_timestamp(message.created_at),
        )

    def to_record(self) -> Dict[str, str]:
        """Row shape used inside notification envelopes."""
        return {
            "id": self.id,
            "username": self.username,
            "content": self.content,
            "created_at": _as_utc(self.created_at).isoformat(),
        }

    def to_wire(self) -> Dict[str, str]:
        """Exactly the fields clients receive."""
        return {
            "id": self.id,
            "username": self.username,
            "content": self.content,
            "createdAt": format_timestamp(self.created_at),
        }


def format_frame(event: MessageEvent) -> str:
    """Render one event as an SSE ``data:`` frame."""
    payload = json.dumps(event.to_wire(), separators=(",", ":"), ensure_ascii=False)
    return f"data: {payload}\n\n"


def build_insert_notification(event: MessageEvent) -> str:
    """Envelope equivalent to what the PostgreSQL insert trigger emits."""
    return json.dumps({"operation": INSERT_OPERATION, "record": event.to_record()})


def insert_notification_size(username: str, content: str) -> int:
    """
    UTF-8 byte size of the envelope the insert trigger sends for a message.

    Rendered the way json_build_object does it: non-ASCII characters kept
    raw, control characters escaped, `` : `` and ``, `` separators.
    """
    envelope = {
        "operation": INSERT_OPERATION,
        "record": {
            "id": _SIZING_ID,
            "username": username,
            "content": content,
            "created_at": _SIZING_CREATED_AT,
        },
    }
    return len(json.dumps(envelope, ensure_ascii=False, separators=(", ", " : ")).encode("utf-8"))


def parse_notification(payload: str) -> Optional[MessageEvent]:
    """
    Decode a change-feed payload.

    Returns:
        The MessageEvent for insert envelopes, None for anything else
        (other operations or malformed payloads, which are logged)
    """
    try:
        envelope = json.loads(payload)
    except (TypeError, json.JSONDecodeError) as e:
        logger.warning(f"[WATCHER] Invalid JSON in notification: {e}")
        return None

    if not isinstance(envelope, dict):
        logger.warning("[WATCHER] Notification is not an object, skipping")
        return None

    if envelope.get("operation") != INSERT_OPERATION:
        logger.debug(
            "[WATCHER] Ignoring non-insert notification",
            extra={"operation": envelope.get("operation")},
        )
        return None

    record = envelope.get("record")
    if not isinstance(record, dict):
        logger.warning("[WATCHER] Insert notification without a record, skipping")
        return None

    try:
        return MessageEvent.from_record(record)
    except ValueError as e:
        logger.warning(f"[WATCHER] Malformed insert record: {e}")
        return None
