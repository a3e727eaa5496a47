# turbo_upload/exceptions.py
"""
Error taxonomy for upload operations.
"""

from typing import Optional

# Statuses worth another attempt; anything else non-2xx is final.
RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}


class UploadError(Exception):
    """Base class for every error raised by turbo_upload."""


class ValidationError(UploadError):
    """Pre-flight check failed before any network call."""


class InvalidTransition(UploadError):
    """A file state change that the state machine does not allow."""

    def __init__(self, filename: str, current: str, requested: str):
        self.filename = filename
        self.current = current
        self.requested = requested
        super().__init__(f"{filename}: cannot move from '{current}' to '{requested}'")


class TransportError(UploadError):
    """Network failure or non-2xx response from the storage service."""

    def __init__(self, operation: str, filename: str, message: str, status: Optional[int] = None):
        self.operation = operation
        self.filename = filename
        self.status = status
        self.message = message
        prefix = f"HTTP {status}: " if status is not None else ""
        super().__init__(f"{operation} failed for {filename}: {prefix}{message}")

    @property
    def retryable(self) -> bool:
        return self.status is None or self.status in RETRYABLE_STATUS_CODES


class FinalizeError(TransportError):
    """The bytes were uploaded but the server could not assemble the file."""

    @classmethod
    def from_transport(cls, exc: TransportError) -> "FinalizeError":
        return cls(exc.operation, exc.filename, exc.message, status=exc.status)


class UploadCancelled(UploadError):
    """The queue was stopped while this operation was in flight."""


class SourceReadError(UploadError):
    """The local file could not be read, or is shorter than when it was queued."""
