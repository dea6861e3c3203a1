"""Reusable test utilities for the Screen Answerer tests.

Fakes for the time source, the backoff sleep and the upstream inference
client, plus assertion helpers for the ``{"error", "message"}`` body.
"""

from __future__ import annotations

import io
from dataclasses import dataclass
from typing import Any

from httpx import Response
from PIL import Image

from screen_answerer.core.registry import TemporaryFileRegistry
from screen_answerer.domain.entities import UpstreamPrompt

VALID_API_KEY = "AIza" + "A1b2C3d4E5" * 3 + "_-xyz"


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Async sleep replacement that records delays instead of waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@dataclass(slots=True)
class InferenceCall:
    prompt: UpstreamPrompt
    api_key: str
    model: str | None


class StubInferenceClient:
    """In-process stand-in for the Gemini client.

    Replies are consumed in order; an exception instance in ``replies`` is
    raised instead of returned. Once the list is empty ``default_reply`` is
    used.
    """

    def __init__(self, replies: list[str | BaseException] | None = None) -> None:
        self.replies: list[str | BaseException] = list(replies or [])
        self.default_reply = "4"
        self.calls: list[InferenceCall] = []
        self.on_call: Any = None

    async def generate_content(
        self,
        prompt: UpstreamPrompt,
        *,
        api_key: str,
        model: str | None = None,
    ) -> str:
        self.calls.append(InferenceCall(prompt=prompt, api_key=api_key, model=model))
        if self.on_call is not None:
            self.on_call(prompt)
        reply = self.replies.pop(0) if self.replies else self.default_reply
        if isinstance(reply, BaseException):
            raise reply
        return reply


class CountingRegistry(TemporaryFileRegistry):
    """Registry that records the outcome of every ``try_delete`` call."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.delete_results: list[bool] = []

    def try_delete(self, path: Any) -> bool:
        result = super().try_delete(path)
        self.delete_results.append(result)
        return result


def make_png_bytes(size: tuple[int, int] = (8, 8)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color=(200, 30, 30)).save(buffer, format="PNG")
    return buffer.getvalue()


def assert_error_response(
    response: Response, expected_status: int, expected_error: str
) -> dict[str, Any]:
    """Assert an error response has the expected status and ``error`` label."""
    assert response.status_code == expected_status, response.text
    data = response.json()
    assert data["error"] == expected_error
    return data
