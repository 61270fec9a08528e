# backend/relay/core/exceptions.py
"""
Domain-specific exceptions for the message relay.

These exceptions carry a message, a machine-readable code and optional
details, and know how to convert themselves into an HTTPException at the
API layer.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status


class DomainException(Exception):
    """Base exception for all relay errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    public_message: str = "Internal server error"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        """Convert to an HTTPException whose body is ``{"error": ...}``."""
        return HTTPException(
            status_code=self.status_code,
            detail={"error": self.public_message},
        )


class ValidationException(DomainException):
    """Raised when a submission payload is missing or empty."""

    status_code = status.HTTP_400_BAD_REQUEST
    public_message = "Invalid input"


class PersistException(DomainException):
    """Raised when a valid message could not be written to the store."""

    public_message = "Failed to persist message"


class StoreUnavailableException(DomainException):
    """Raised when the durable store or its change feed cannot be reached."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    public_message = "Store unavailable"


class WatcherException(DomainException):
    """
    Raised when the store's change feed fails mid-subscription.

    Fatal to the current subscription; the caller resubscribes or gives up.
    """


class DeliveryException(DomainException):
    """Raised when a frame cannot be handed to a connection's sink."""


class ChangeFeedError(Exception):
    """Low-level failure of a change-feed connection (connect, listen, probe)."""


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations.
    """
