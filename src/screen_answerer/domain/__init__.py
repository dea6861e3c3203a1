"""Domain layer for the Screen Answerer relay.

Pure models and business rules with no dependencies on frameworks,
infrastructure, or external libraries.
"""

from screen_answerer.domain.entities import (
    AnswerResult,
    ClientThrottleState,
    Decision,
    MonitorResult,
    QuotaWindow,
    StoredUpload,
    TrackedFile,
    UpstreamPrompt,
    mime_type_for,
    parse_answer_lines,
    validate_api_key_format,
)
from screen_answerer.domain.exceptions import (
    DomainError,
    InvalidCredentialFormatError,
    InvalidUploadError,
    LocalQuotaRejectedError,
    LocalThrottleRejectedError,
    MissingInputError,
    StorageError,
    UploadTooLargeError,
    UpstreamAuthRejectedError,
    UpstreamError,
    UpstreamQuotaExceededError,
    UpstreamTransientError,
)

__all__ = [
    "AnswerResult",
    "ClientThrottleState",
    "Decision",
    "DomainError",
    "InvalidCredentialFormatError",
    "InvalidUploadError",
    "LocalQuotaRejectedError",
    "LocalThrottleRejectedError",
    "MissingInputError",
    "MonitorResult",
    "QuotaWindow",
    "StorageError",
    "StoredUpload",
    "TrackedFile",
    "UploadTooLargeError",
    "UpstreamAuthRejectedError",
    "UpstreamError",
    "UpstreamPrompt",
    "UpstreamQuotaExceededError",
    "UpstreamTransientError",
    "mime_type_for",
    "parse_answer_lines",
    "validate_api_key_format",
]
