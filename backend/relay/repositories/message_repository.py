# backend/relay/repositories/message_repository.py
"""
Message Repository for the chat relay.

Data access for persisted messages. Does NOT commit; the caller owns the
transaction.
"""

import logging
from typing import Optional

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.message import Message

logger = logging.getLogger(__name__)


class MessageRepository:
    """Repository for message data access."""

    def __init__(self, db: Session):
        self.db = db
        self.logger = logging.getLogger(__name__)

    def create_message(self, *, username: str, content: str) -> Message:
        """
        Add a message and flush it so its id and created_at are populated.

        Raises:
            RepositoryException: If the insert fails
        """
        try:
            message = Message(username=username, content=content)
            self.db.add(message)
            self.db.flush()
            return message
        except IntegrityError as exc:
            self.logger.error("Integrity error creating message: %s", exc, exc_info=True)
            self.db.rollback()
            raise RepositoryException(f"Integrity constraint violated: {exc}") from exc
        except SQLAlchemyError as e:
            self.logger.error(f"Error creating message: {str(e)}")
            self.db.rollback()
            raise RepositoryException(f"Failed to create message: {str(e)}") from e

    def get_by_id(self, message_id: str) -> Optional[Message]:
        try:
            return self.db.get(Message, message_id)
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting message by id {message_id}: {str(e)}")
            raise RepositoryException(f"Failed to retrieve message: {str(e)}") from e

    def count(self) -> int:
        try:
            return int(self.db.query(Message).count())
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to count messages: {str(e)}") from e

    def ping(self) -> None:
        """Round-trip a trivial query to prove the store is reachable."""
        try:
            self.db.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            raise RepositoryException(f"Store ping failed: {str(e)}") from e
