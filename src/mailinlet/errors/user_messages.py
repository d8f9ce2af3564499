"""User-friendly error messages for mailinlet.

Maps error codes to human-readable messages and recovery suggestions so the
CLI never has to print raw transport errors.

Privacy Note:
- Error messages NEVER include message content
- Store URLs are rendered with the password masked
"""

from __future__ import annotations

from typing import Any


# =============================================================================
# Error Message Catalog
# =============================================================================

ERROR_MESSAGES: dict[str, str] = {
    "CONFIGURATION_ERROR": "The mail endpoint configuration is invalid.",
    "CONNECTION_ERROR": "Could not connect to the mail server.",
    "PROTOCOL_ERROR": "The mail server rejected a request.",
    "FILTER_ERROR": "The message selector could not be evaluated.",
    "EXTRACTION_ERROR": "Could not read the content of a received message.",
    "MAILINLET_ERROR": "An unexpected error occurred. Please try again.",
    "UNKNOWN_ERROR": "Something went wrong. Please try again.",
}


# =============================================================================
# Recovery Suggestions
# =============================================================================

RECOVERY_SUGGESTIONS: dict[str, str] = {
    "CONFIGURATION_ERROR": "Check the store URL, protocol and folder name.",
    "CONNECTION_ERROR": "Verify host, port and credentials, then retry the poll.",
    "PROTOCOL_ERROR": "Retry on the next poll. If it persists, check server capabilities.",
    "FILTER_ERROR": "Make sure the selector returns True or False for every message.",
    "EXTRACTION_ERROR": "The whole batch was discarded; it will be retried on the next poll.",
    "MAILINLET_ERROR": "If this persists, please report the issue.",
    "UNKNOWN_ERROR": "Retry the poll. Report if the issue continues.",
}


# =============================================================================
# Helper Functions
# =============================================================================


def _code_for(error: Any) -> str:
    if hasattr(error, "code"):
        return error.code
    if isinstance(error, str):
        return error
    return type(error).__name__.upper()


def get_user_message(error: Any) -> str:
    """Get user-friendly message for an error.

    Args:
        error: The error (can be Exception or error code string)

    Returns:
        User-friendly error message
    """
    return ERROR_MESSAGES.get(_code_for(error), ERROR_MESSAGES["UNKNOWN_ERROR"])


def get_recovery_suggestion(error: Any) -> str:
    """Get recovery suggestion for an error."""
    return RECOVERY_SUGGESTIONS.get(_code_for(error), RECOVERY_SUGGESTIONS["UNKNOWN_ERROR"])


def format_error_for_user(error: Any) -> str:
    """Format a complete user-friendly error message."""
    message = get_user_message(error)
    suggestion = get_recovery_suggestion(error)

    return f"{message}\n\nSuggestion: {suggestion}"


def format_error_for_cli(error: Any) -> str:
    """Format error for CLI output, including non-sensitive details."""
    message = get_user_message(error)
    suggestion = get_recovery_suggestion(error)
    code = getattr(error, "code", "ERROR")

    lines = [
        f"Error [{code}]: {message}",
        "",
        f"Suggestion: {suggestion}",
    ]

    details = getattr(error, "details", None)
    if details:
        lines.append("")
        lines.append("Details:")
        for key, value in details.items():
            # Don't expose sensitive details
            if key not in ("content", "password", "token"):
                lines.append(f"  {key}: {value}")

    return "\n".join(lines)


__all__ = [
    "ERROR_MESSAGES",
    "RECOVERY_SUGGESTIONS",
    "get_user_message",
    "get_recovery_suggestion",
    "format_error_for_user",
    "format_error_for_cli",
]
