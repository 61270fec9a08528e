"""
Database models for the message relay.
"""

from .message import Message

__all__ = ["Message"]
