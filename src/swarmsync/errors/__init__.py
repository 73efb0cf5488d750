"""Centralized error definitions for swarmsync.

Every error raised by the orchestration layer derives from ``SwarmSyncError``
and carries the HTTP status it maps to, so webhook handlers and the CLI can
turn any failure into the generic ``{success, status, message}`` envelope
without leaking diagnostic detail.

Usage:
    from swarmsync.errors import AuthError, SwarmSyncError

    try:
        service.verify(...)
    except SwarmSyncError as e:
        return e.to_response()
"""

from __future__ import annotations

from typing import Any

from swarmsync.errors.user_messages import (
    format_error_response,
    get_user_message,
)


# =============================================================================
# Base Error
# =============================================================================


class SwarmSyncError(Exception):
    """Base exception for all swarmsync errors.

    Attributes:
        code: Error code for categorization
        status_code: HTTP status the error maps to
        details: Additional error details for server-side logs only
    """

    code: str = "SWARMSYNC_ERROR"
    default_message: str = "An unexpected error occurred"
    status_code: int = 500

    def __init__(
        self,
        message: str | None = None,
        *,
        details: dict | None = None,
    ) -> None:
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    @property
    def user_message(self) -> str:
        """Get the client-safe message."""
        return get_user_message(self)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "code": self.code,
            "message": self.message,
            "status_code": self.status_code,
            "details": self.details,
        }

    def to_response(self) -> dict[str, Any]:
        """Convert to the generic response envelope."""
        return format_error_response(self)


# =============================================================================
# Request Errors
# =============================================================================


class ValidationError(SwarmSyncError):
    """Inbound request or call arguments are missing or malformed."""

    code = "VALIDATION_ERROR"
    default_message = "Invalid request"
    status_code = 400


class AuthError(SwarmSyncError):
    """Signature or credential verification failed."""

    code = "AUTH_ERROR"
    default_message = "Unauthorized"
    status_code = 401


class NotFoundError(SwarmSyncError):
    """A requested swarm or repository does not exist."""

    code = "NOT_FOUND"
    default_message = "Not found"
    status_code = 404


# =============================================================================
# Store Errors
# =============================================================================


class StoreError(SwarmSyncError):
    """Base error for persistence operations."""

    code = "STORE_ERROR"
    default_message = "Persistence operation failed"


class RecordNotFoundError(StoreError, NotFoundError):
    """Record addressed by key does not exist."""

    code = "RECORD_NOT_FOUND"
    default_message = "Record not found"
    status_code = 404


class DuplicateRecordError(StoreError):
    """Unique key already taken."""

    code = "DUPLICATE_RECORD"
    default_message = "Record already exists"
    status_code = 409


class StaleRecordError(StoreError):
    """Conditional write rejected because the correlation id moved on."""

    code = "STALE_RECORD"
    default_message = "Record changed by a newer operation"
    status_code = 409


# =============================================================================
# Upstream Errors
# =============================================================================


class UpstreamError(SwarmSyncError):
    """The swarm host answered with a non-2xx status or was unreachable."""

    code = "UPSTREAM_ERROR"
    default_message = "Swarm host request failed"
    status_code = 502

    def __init__(
        self,
        message: str | None = None,
        *,
        upstream_status: int | None = None,
        details: dict | None = None,
    ) -> None:
        super().__init__(message, details=details)
        self.upstream_status = upstream_status
        if upstream_status is not None:
            self.status_code = upstream_status


class PollTimeoutError(SwarmSyncError):
    """Polling or backoff exhausted without a terminal answer."""

    code = "POLL_TIMEOUT"
    default_message = "Operation still running"
    status_code = 408


class DeadlineExceededError(PollTimeoutError):
    """Caller-supplied deadline elapsed."""

    code = "DEADLINE_EXCEEDED"
    default_message = "Deadline exceeded"


class OperationCancelledError(SwarmSyncError):
    """Caller signalled cancellation of a wait."""

    code = "OPERATION_CANCELLED"
    default_message = "Operation cancelled"
    status_code = 499


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(SwarmSyncError):
    """Missing or invalid configuration or key material."""

    code = "CONFIGURATION_ERROR"
    default_message = "Configuration error"


# =============================================================================
# Vault Errors
# =============================================================================


class EncryptionError(SwarmSyncError):
    """Raised when a value cannot be sealed."""

    code = "ENCRYPTION_ERROR"
    default_message = "Encryption failed"

    def __init__(self, field_name: str, message: str | None = None) -> None:
        self.field_name = field_name
        super().__init__(
            message or f"Failed to encrypt field: {field_name}",
            details={"field": field_name},
        )


class DecryptionError(SwarmSyncError):
    """Raised when decryption fails (wrong key, corrupted data, or tampered)."""

    code = "DECRYPTION_ERROR"
    default_message = "Decryption failed"

    def __init__(self, field_name: str, message: str | None = None) -> None:
        self.field_name = field_name
        super().__init__(
            message or f"Failed to decrypt field: {field_name}",
            details={"field": field_name},
        )


# =============================================================================
# Error Handler
# =============================================================================


def error_response(error: Exception) -> tuple[dict[str, Any], int]:
    """Map any exception onto a response envelope and HTTP status."""
    if isinstance(error, SwarmSyncError):
        return error.to_response(), error.status_code
    return format_error_response(error, status=500), 500


__all__ = [
    "SwarmSyncError",
    "ValidationError",
    "AuthError",
    "NotFoundError",
    "StoreError",
    "RecordNotFoundError",
    "DuplicateRecordError",
    "StaleRecordError",
    "UpstreamError",
    "PollTimeoutError",
    "DeadlineExceededError",
    "OperationCancelledError",
    "ConfigurationError",
    "EncryptionError",
    "DecryptionError",
    "error_response",
]
