"""Centralized error definitions for mailinlet.

Usage:
    from mailinlet.errors import MailInletError, handle_error

    try:
        messages = receiver.receive()
    except MailInletError as e:
        print(handle_error(e))
"""

from __future__ import annotations

from mailinlet.errors.user_messages import (
    format_error_for_user,
    get_recovery_suggestion,
    get_user_message,
)


# =============================================================================
# Base Error
# =============================================================================


class MailInletError(Exception):
    """Base exception for all mailinlet errors.

    Attributes:
        code: Error code for categorization
        recoverable: Whether retrying the poll may succeed
        details: Additional error details for debugging
    """

    code: str = "MAILINLET_ERROR"
    default_message: str = "An unexpected error occurred"
    recoverable: bool = True

    def __init__(
        self,
        message: str | None = None,
        *,
        user_message: str | None = None,
        details: dict | None = None,
    ) -> None:
        self.message = message or self.default_message
        self._user_message = user_message
        self.details = details or {}
        super().__init__(self.message)

    @property
    def user_message(self) -> str:
        """Get user-friendly message."""
        if self._user_message:
            return self._user_message
        return get_user_message(self)

    @property
    def recovery_suggestion(self) -> str:
        return get_recovery_suggestion(self)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "code": self.code,
            "message": self.message,
            "user_message": self.user_message,
            "recoverable": self.recoverable,
            "details": self.details,
        }


# =============================================================================
# Receiver Errors
# =============================================================================


class ConfigurationError(MailInletError):
    """Endpoint is misconfigured or the configured folder does not exist."""

    code = "CONFIGURATION_ERROR"
    default_message = "Configuration error"
    recoverable = False


class MailConnectionError(MailInletError):
    """Session, store or folder could not be opened."""

    code = "CONNECTION_ERROR"
    default_message = "Connection to the mail server failed"


class ProtocolError(MailInletError):
    """Search, fetch, flag or delete request failed on the server."""

    code = "PROTOCOL_ERROR"
    default_message = "Mail protocol operation failed"


class FilterError(MailInletError):
    """Selector predicate failed or did not yield a boolean."""

    code = "FILTER_ERROR"
    default_message = "Message selector failed"
    recoverable = False


class ExtractionError(MailInletError):
    """Message content could not be materialized."""

    code = "EXTRACTION_ERROR"
    default_message = "Failed to extract message content"

    def __init__(self, message_ref: str, *, message: str | None = None) -> None:
        self.message_ref = message_ref
        super().__init__(
            message or f"Failed to extract content from {message_ref}",
            details={"message": message_ref},
        )


# =============================================================================
# Error Handler
# =============================================================================


def handle_error(error: Exception) -> str:
    """Return a user-friendly message with recovery suggestion."""
    return format_error_for_user(error)


def is_recoverable(error: Exception) -> bool:
    """Check if an error is potentially recoverable by polling again."""
    if isinstance(error, MailInletError):
        return error.recoverable
    return False


__all__ = [
    "MailInletError",
    "ConfigurationError",
    "MailConnectionError",
    "ProtocolError",
    "FilterError",
    "ExtractionError",
    "handle_error",
    "is_recoverable",
]
