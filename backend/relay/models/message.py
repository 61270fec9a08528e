# backend/relay/models/message.py
"""
Message model for the chat relay.

Messages are immutable once written; the relay never updates or deletes them.
"""

from datetime import datetime, timezone
import uuid

from sqlalchemy import Column, DateTime, String, Text

from ..database import Base


def generate_message_id() -> str:
    return uuid.uuid4().hex


class Message(Base):
    """A persisted chat message."""

    __tablename__ = "messages"

    id = Column(String(32), primary_key=True, default=generate_message_id)
    username = Column(String(64), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
        default=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self) -> str:
        return f"<Message {self.id} from {self.username!r}>"
