"""Domain exceptions for the Screen Answerer relay.

This module defines pure domain exceptions with no framework dependencies.
The API layer maps each class to an HTTP status and a ``{error, message}``
body; nothing in here knows about HTTP.

Exception Hierarchy:
    - DomainError: Base exception for all domain errors
        - MissingInputError: Required question, image or credential absent
        - InvalidUploadError: Upload is not an acceptable image
        - InvalidCredentialFormatError: Credential fails strict format check
        - LocalThrottleRejectedError: Per-client cool-down still running
        - LocalQuotaRejectedError: Global call quota exhausted for the window
        - StorageError: Scratch file could not be written, read or deleted
            - UploadTooLargeError: Upload exceeds the per-file byte limit
        - UpstreamError: Terminal failure reported by the inference API
            - UpstreamAuthRejectedError: Credential rejected upstream
            - UpstreamTransientError: Temporary overload, safe to retry
                - UpstreamQuotaExceededError: Upstream rate limit / quota
"""

from __future__ import annotations


class DomainError(Exception):
    """Base exception for all domain errors.

    Attributes:
        error: Short, stable label surfaced as the ``error`` field of
            JSON error responses.
        message: Human-readable explanation.
    """

    error = "Request failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.error
        super().__init__(self.message)


class MissingInputError(DomainError):
    """Raised when a required question, image or API key is absent."""

    error = "Missing input"


class InvalidUploadError(DomainError):
    """Raised when an uploaded file is not an image the relay accepts."""

    error = "Invalid upload"


class InvalidCredentialFormatError(DomainError):
    """Raised when an API key does not match the expected key format."""

    error = "Invalid API key format"


class LocalThrottleRejectedError(DomainError):
    """Raised when a client calls again inside its cool-down window.

    Attributes:
        retry_after: Seconds until the client may call again.
    """

    error = "Rate limit exceeded"

    def __init__(self, message: str | None = None, retry_after: float = 0.0) -> None:
        super().__init__(message or "Please wait before sending another request")
        self.retry_after = retry_after


class LocalQuotaRejectedError(DomainError):
    """Raised when the global outbound call quota is exhausted.

    Attributes:
        retry_after: Seconds until the current quota window resets.
    """

    error = "Quota limit reached"

    def __init__(self, message: str | None = None, retry_after: float = 0.0) -> None:
        super().__init__(message or "API quota limit approaching, please try again later")
        self.retry_after = retry_after


class StorageError(DomainError):
    """Raised when a scratch file cannot be written, read or deleted.

    Deletion failures are logged and never change the user-visible
    response; write failures abort the request.
    """

    error = "Storage error"


class UploadTooLargeError(StorageError):
    """Raised when an upload exceeds the configured per-file limit.

    Attributes:
        limit_bytes: Configured maximum size.
    """

    error = "File too large"

    def __init__(self, limit_bytes: int) -> None:
        super().__init__(f"Uploaded image exceeds the {limit_bytes:,} byte limit")
        self.limit_bytes = limit_bytes


class UpstreamError(DomainError):
    """Raised when the inference API fails in a way that is not retried.

    Attributes:
        status_code: Upstream HTTP status, if the failure had one.
    """

    error = "Upstream error"

    def __init__(self, message: str | None = None, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class UpstreamAuthRejectedError(UpstreamError):
    """Raised when the inference API rejects the supplied API key."""

    error = "API key error"


class UpstreamTransientError(UpstreamError):
    """Raised for temporary upstream overload; the retry executor retries it."""

    error = "Upstream unavailable"


class UpstreamQuotaExceededError(UpstreamTransientError):
    """Raised when the inference API reports a rate limit or exhausted quota."""

    error = "API quota exceeded"


__all__ = [
    "DomainError",
    "InvalidCredentialFormatError",
    "InvalidUploadError",
    "LocalQuotaRejectedError",
    "LocalThrottleRejectedError",
    "MissingInputError",
    "StorageError",
    "UploadTooLargeError",
    "UpstreamAuthRejectedError",
    "UpstreamError",
    "UpstreamQuotaExceededError",
    "UpstreamTransientError",
]
