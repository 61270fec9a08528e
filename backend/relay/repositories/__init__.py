"""
Repository layer for the message store.

Repositories own all SQLAlchemy queries; transaction boundaries belong to
the caller (the message store).
"""

from .message_repository import MessageRepository

__all__ = ["MessageRepository"]
