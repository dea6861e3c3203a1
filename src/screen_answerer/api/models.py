"""Request and response models for the REST API.

Pydantic v2 models for the JSON bodies the browser client sends and
receives. Multipart uploads are read straight from the form and never pass
through these models.

Key Models:
    - QuestionPayload: JSON / urlencoded body of the question endpoints
    - AnswerResponse, MonitorResponse: Successful results
    - ErrorResponse: ``{"error": ..., "message": ...}`` body of every failure
    - HealthResponse: Diagnostics for ``GET /health``
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class QuestionPayload(BaseModel):
    """Non-multipart body of the question endpoints.

    Field names follow the browser client (``apiKey`` is camel case).
    """

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    question: str | None = Field(None, description="Typed quiz question")
    apiKey: str | None = Field(None, description="Gemini API key")  # noqa: N815
    model: str | None = Field(None, description="Model override")


class AnswerResponse(BaseModel):
    answers: list[str] = Field(..., description="Answer lines in reply order")


class MonitorResponse(BaseModel):
    """Result of ``/monitor_screen``.

    ``answers`` is present only when a question was detected, ``message``
    only when none was.
    """

    model_config = ConfigDict(extra="forbid")

    detected: bool = Field(..., description="Whether the image shows a quiz question")
    answers: list[str] | None = Field(None, description="Answer lines")
    message: str | None = Field(None, description="Explanation when nothing was detected")


class ErrorResponse(BaseModel):
    """Response model for error responses.

    Attributes:
        error: Short, stable error label.
        message: Human-readable explanation.
    """

    model_config = ConfigDict(extra="forbid")

    error: str = Field(..., description="Error label")
    message: str | None = Field(None, description="Error details")


class HealthResponse(BaseModel):
    status: str = Field(..., description="Service status")
    version: str = Field(..., description="API version")
    tracked_files: int = Field(..., ge=0, description="Files currently held by requests")
    governor: dict[str, Any] = Field(..., description="Quota and throttle counters")


@dataclass(slots=True, frozen=True)
class RequestContext:
    """Context for tracking API requests.

    Attributes:
        request_id: Unique request identifier (UUID string).
        client_ip: Client IP address; also the throttling key.
        user_agent: User-Agent header value. None if not present.
    """

    request_id: str
    client_ip: str
    user_agent: str | None = None


__all__ = [
    "AnswerResponse",
    "ErrorResponse",
    "HealthResponse",
    "MonitorResponse",
    "QuestionPayload",
    "RequestContext",
]
