"""Generic, client-safe messages for swarmsync errors.

Responses sent back to webhook senders and API callers only ever carry the
messages in this catalog. Diagnostic detail (upstream bodies, decryption
failures, stack traces) stays in the server log.
"""

from __future__ import annotations

from typing import Any


# =============================================================================
# Error Message Catalog
# =============================================================================

ERROR_MESSAGES: dict[str, str] = {
    "SWARMSYNC_ERROR": "An unexpected error occurred",
    # Request errors
    "VALIDATION_ERROR": "Invalid request",
    "AUTH_ERROR": "Unauthorized",
    "NOT_FOUND": "Not found",
    # Store errors
    "RECORD_NOT_FOUND": "Record not found",
    "DUPLICATE_RECORD": "Record already exists",
    "STALE_RECORD": "Record changed by a newer operation",
    # Upstream errors
    "UPSTREAM_ERROR": "The swarm host returned an error",
    "POLL_TIMEOUT": "The operation is still running",
    "DEADLINE_EXCEEDED": "The operation is still running",
    "OPERATION_CANCELLED": "The operation was cancelled",
    # Vault errors
    "ENCRYPTION_ERROR": "Failed to protect credential",
    "DECRYPTION_ERROR": "Failed to read credential",
    # Configuration errors
    "CONFIGURATION_ERROR": "Service is misconfigured",
}

DEFAULT_MESSAGE = ERROR_MESSAGES["SWARMSYNC_ERROR"]


def get_user_message(error: Exception) -> str:
    """Return the client-safe message for an error."""
    code = getattr(error, "code", None)
    if code and code in ERROR_MESSAGES:
        return ERROR_MESSAGES[code]
    return DEFAULT_MESSAGE


def format_error_response(error: Exception, status: int | None = None) -> dict[str, Any]:
    """Build the generic ``{success, status, message}`` response envelope."""
    resolved_status = status
    if resolved_status is None:
        resolved_status = getattr(error, "status_code", 500)
    return {
        "success": False,
        "status": resolved_status,
        "message": get_user_message(error),
    }


__all__ = [
    "ERROR_MESSAGES",
    "DEFAULT_MESSAGE",
    "get_user_message",
    "format_error_response",
]
