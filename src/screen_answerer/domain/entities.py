"""Domain entities for the Screen Answerer relay.

Pure data holders and business rules with no framework or I/O
dependencies.

Key Entities:
    - TrackedFile: Reference-counted bookkeeping entry for a scratch file
    - ClientThrottleState: Last accepted call time for one client
    - QuotaWindow: Global outbound call counter for the current window
    - StoredUpload: An uploaded image persisted to the scratch directory
    - UpstreamPrompt: Text plus optional inline image sent to the model
    - AnswerResult / MonitorResult: Parsed answers returned by use cases
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

from screen_answerer.domain.exceptions import InvalidCredentialFormatError

API_KEY_PATTERN = re.compile(r"^AIza[0-9A-Za-z_-]{35}$")
"""Shape of a Google AI Studio API key."""

MARKUP_PREFIXES = ("*", "#")
"""Line prefixes treated as markdown bullets or headings."""


class Decision(StrEnum):
    """Outcome of a governor check."""

    ALLOWED = "allowed"
    LIMITED = "limited"


@dataclass(slots=True)
class TrackedFile:
    """Registry entry for one in-flight scratch file.

    Attributes:
        path: Unique key; the file's path on disk.
        registered_at: Clock reading at first registration (seconds).
        reference_count: Consumers currently depending on the file.
    """

    path: str
    registered_at: float
    reference_count: int = 1

    @property
    def in_progress(self) -> bool:
        return self.reference_count > 0


@dataclass(slots=True)
class ClientThrottleState:
    """Last accepted outbound call for one client."""

    client_id: str
    last_call_at: float


@dataclass(slots=True)
class QuotaWindow:
    """Global call counter for one fixed reset interval."""

    window_start: float
    count: int = 0


@dataclass(slots=True, frozen=True)
class StoredUpload:
    """An uploaded image written to the scratch directory.

    Attributes:
        path: Location of the stored file.
        original_filename: Client-supplied name, if any.
        content_type: Client-declared MIME type.
        size_bytes: Bytes written.
    """

    path: Path
    original_filename: str | None
    content_type: str | None
    size_bytes: int


@dataclass(slots=True, frozen=True)
class UpstreamPrompt:
    """Prompt for one ``generateContent`` call.

    Attributes:
        text: Instruction text.
        image_bytes: Raw image bytes sent inline, if any.
        mime_type: MIME type of ``image_bytes`` (``image/png`` or ``image/jpeg``).
    """

    text: str
    image_bytes: bytes | None = None
    mime_type: str | None = None

    def __post_init__(self) -> None:
        if self.image_bytes is not None and not self.mime_type:
            msg = "mime_type is required when image_bytes is set"
            raise ValueError(msg)


@dataclass(slots=True, frozen=True)
class AnswerResult:
    answers: list[str] = field(default_factory=list)


@dataclass(slots=True, frozen=True)
class MonitorResult:
    detected: bool
    answers: list[str] | None = None
    message: str | None = None


def mime_type_for(path: str | Path) -> str:
    """Infer the MIME type sent upstream from a file's extension."""
    return "image/png" if Path(path).suffix.lower() == ".png" else "image/jpeg"


def parse_answer_lines(raw: str, *, filter_markup: bool) -> list[str]:
    """Split a model reply into ordered answer lines.

    Lines are trimmed and empty lines dropped. With ``filter_markup`` lines
    starting with a markdown bullet or heading marker are dropped as well.

    Example:
        >>> parse_answer_lines(" 4 \\n\\n* note", filter_markup=True)
        ['4']
    """
    lines = (line.strip() for line in raw.split("\n"))
    return [
        line
        for line in lines
        if line and not (filter_markup and line.startswith(MARKUP_PREFIXES))
    ]


def validate_api_key_format(api_key: str) -> str:
    """Return ``api_key`` unchanged if it has the shape of a Gemini key.

    Raises:
        InvalidCredentialFormatError: If the key does not match
            ``API_KEY_PATTERN``.
    """
    if not API_KEY_PATTERN.fullmatch(api_key):
        raise InvalidCredentialFormatError("Please provide a valid Gemini API key")
    return api_key


__all__ = [
    "API_KEY_PATTERN",
    "AnswerResult",
    "ClientThrottleState",
    "Decision",
    "MARKUP_PREFIXES",
    "MonitorResult",
    "QuotaWindow",
    "StoredUpload",
    "TrackedFile",
    "UpstreamPrompt",
    "mime_type_for",
    "parse_answer_lines",
    "validate_api_key_format",
]
