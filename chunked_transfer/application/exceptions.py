"""
Core transfer exceptions for the chunked_transfer application.

This module defines a hierarchy of custom exceptions to allow for granular
error handling and clear separation of failure domains. Every error carries
an ErrorKind, which is what the retry loops inspect, plus the context needed
to identify the responsible object, part or byte range.
"""

import enum
from typing import Optional


class ErrorKind(enum.Enum):
    """Classification used to decide whether a failure is retried."""

    VALIDATION = "validation"
    STATE = "state"
    TRANSIENT = "transient"
    PERMANENT = "permanent"


class TransferError(Exception):
    """Base exception for all component-specific errors."""

    kind = ErrorKind.PERMANENT

    def __init__(
        self,
        message: str,
        *,
        object_id: Optional[str] = None,
        part_index: Optional[int] = None,
        byte_range: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.object_id = object_id
        self.part_index = part_index
        self.byte_range = byte_range

    def with_context(
        self,
        object_id: Optional[str] = None,
        part_index: Optional[int] = None,
        byte_range: Optional[str] = None,
    ) -> "TransferError":
        """Fill in context that is not already set and return self."""
        if self.object_id is None:
            self.object_id = object_id
        if self.part_index is None:
            self.part_index = part_index
        if self.byte_range is None:
            self.byte_range = byte_range
        return self

    def __str__(self) -> str:
        context = []
        if self.object_id is not None:
            context.append(f"object={self.object_id}")
        if self.part_index is not None:
            context.append(f"part={self.part_index}")
        if self.byte_range is not None:
            context.append(f"range={self.byte_range}")
        if not context:
            return self.message
        return f"{self.message} ({', '.join(context)})"


# --- Configuration Errors ---

class ConfigurationError(TransferError):
    """Raised for errors related to application configuration."""

    kind = ErrorKind.VALIDATION


# --- Caller Errors ---

class ValidationError(TransferError):
    """Raised for invalid input, always before any network call is made."""

    kind = ErrorKind.VALIDATION


class StateError(TransferError):
    """Raised when an operation is invalid for the object's lifecycle state."""

    kind = ErrorKind.STATE


# --- Infrastructure Errors ---

class TransientTransferError(TransferError):
    """A network, timeout or server-side failure that may succeed on retry."""

    kind = ErrorKind.TRANSIENT


class LocationExpiredError(TransientTransferError):
    """Raised when a time-limited download location is no longer valid."""
    pass


class PermanentTransferError(TransferError):
    """Raised for remote permission, not-found or malformed-response errors."""

    kind = ErrorKind.PERMANENT


class RetriesExhaustedError(TransferError):
    """Raised when a part or range keeps failing after every retry."""

    kind = ErrorKind.PERMANENT


class CloseTimeoutError(TransferError):
    """Raised when the remote service does not report closure in time."""

    kind = ErrorKind.PERMANENT
