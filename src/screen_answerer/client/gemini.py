"""Asynchronous client for the Gemini ``generateContent`` REST API.

This is the relay's only outbound collaborator: it takes a prompt (text,
optionally with one inline image) plus a model identifier and API key,
and returns the model's text or raises a classified domain error.

Key behaviors:
    - Uses httpx.AsyncClient with connection pooling, created lazily
    - The caller's API key travels in the ``x-goog-api-key`` header
    - HTTP failures are classified into auth, quota, transient and other
      domain errors so the retry executor and the API layer can act on them
    - Every call emits a ``gemini_request`` structured event

Thread safety:
    Safe for concurrent use from multiple async tasks on one event loop.
"""

from __future__ import annotations

import base64
import json
import logging
import time
import types
import uuid
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any

import httpx

from screen_answerer.domain.entities import UpstreamPrompt
from screen_answerer.domain.exceptions import (
    MissingInputError,
    UpstreamAuthRejectedError,
    UpstreamError,
    UpstreamQuotaExceededError,
    UpstreamTransientError,
)
from screen_answerer.telemetry.structured_logging import log_request_event

logger = logging.getLogger(__name__)

_AUTH_MARKERS = ("API_KEY_INVALID", "API key not valid")
_QUOTA_MARKERS = ("RESOURCE_EXHAUSTED",)
_TRANSIENT_STATUSES = frozenset(
    {
        HTTPStatus.INTERNAL_SERVER_ERROR,
        HTTPStatus.BAD_GATEWAY,
        HTTPStatus.SERVICE_UNAVAILABLE,
        HTTPStatus.GATEWAY_TIMEOUT,
    }
)


@dataclass(slots=True, frozen=True)
class GeminiClientConfig:
    """Configuration for the asynchronous Gemini client.

    Attributes:
        base_url: API root, e.g. ``https://generativelanguage.googleapis.com/v1beta``.
        default_model: Model used when a call does not name one.
        timeout: Read timeout in seconds for one call.
        transport: Custom httpx transport (tests use ``httpx.MockTransport``).
    """

    base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    default_model: str = "gemini-2.0-flash-lite"
    timeout: float = 30.0
    transport: httpx.AsyncBaseTransport | None = field(default=None, repr=False)


class AsyncGeminiClient:
    """Async client for ``models/{model}:generateContent``.

    Lifecycle:
        - Initialize with ``__init__()`` or use as async context manager
        - The httpx client is created lazily on first use
        - Call ``close()`` or exit the context manager to release connections
    """

    __slots__ = ("client", "config")

    def __init__(self, config: GeminiClientConfig | None = None) -> None:
        self.config = config or GeminiClientConfig()
        self.client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> AsyncGeminiClient:
        await self._ensure_client()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: types.TracebackType | None,
    ) -> None:
        await self.close()

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self.client is None:
            self.client = httpx.AsyncClient(
                base_url=self.config.base_url,
                timeout=httpx.Timeout(connect=5.0, read=self.config.timeout, write=10.0, pool=5.0),
                transport=self.config.transport,
            )
        return self.client

    async def close(self) -> None:
        """Close the httpx client. Safe to call multiple times."""
        if self.client:
            await self.client.aclose()
            self.client = None

    async def generate_content(
        self,
        prompt: UpstreamPrompt,
        *,
        api_key: str,
        model: str | None = None,
    ) -> str:
        """Send ``prompt`` to ``model`` and return the reply text.

        Args:
            prompt: Instruction text plus optional inline image.
            api_key: Caller's Gemini API key.
            model: Model identifier. None uses ``config.default_model``.

        Returns:
            Concatenated text parts of the first candidate.

        Raises:
            MissingInputError: If ``api_key`` is empty.
            UpstreamAuthRejectedError: Key rejected (401/403, API_KEY_INVALID).
            UpstreamQuotaExceededError: 429 or RESOURCE_EXHAUSTED.
            UpstreamTransientError: 5xx overload or network failure.
            UpstreamError: Any other failure, including empty candidates.
        """
        if not api_key:
            raise MissingInputError("API key is required")

        client = await self._ensure_client()
        model_str = model or self.config.default_model
        request_id = str(uuid.uuid4())
        start_time = time.perf_counter()

        try:
            response = await client.post(
                f"/models/{model_str}:generateContent",
                json=_build_payload(prompt),
                headers={"x-goog-api-key": api_key},
            )
        except httpx.RequestError as exc:
            self._log_call(model_str, request_id, start_time, "error", type(exc).__name__, str(exc))
            logger.warning("Request error calling %s: %s", model_str, exc)
            raise UpstreamTransientError(f"Request to Gemini failed: {exc!s}") from exc

        if response.is_error:
            error = _classify_error(response)
            self._log_call(
                model_str,
                request_id,
                start_time,
                "error",
                type(error).__name__,
                error.message,
                response.status_code,
            )
            logger.warning(
                "Gemini returned %s for %s: %s", response.status_code, model_str, error.message
            )
            raise error

        try:
            data = response.json()
        except json.JSONDecodeError as exc:
            self._log_call(model_str, request_id, start_time, "error", "JSONDecodeError", str(exc))
            raise UpstreamError("Gemini returned a malformed response") from exc

        text = _extract_text(data)
        self._log_call(model_str, request_id, start_time, "success", status_code=response.status_code)
        return text

    def _log_call(
        self,
        model: str,
        request_id: str,
        start_time: float,
        status: str,
        error_type: str | None = None,
        error_message: str | None = None,
        status_code: int | None = None,
    ) -> None:
        event: dict[str, Any] = {
            "event": "gemini_request",
            "operation": "generate_content",
            "status": status,
            "model": model,
            "request_id": request_id,
            "latency_ms": round((time.perf_counter() - start_time) * 1000, 3),
            "upstream_status": status_code,
        }
        if error_type:
            event["error_type"] = error_type
            event["error_message"] = error_message
        log_request_event(event)


def _build_payload(prompt: UpstreamPrompt) -> dict[str, Any]:
    parts: list[dict[str, Any]] = [{"text": prompt.text}]
    if prompt.image_bytes is not None:
        parts.append(
            {
                "inline_data": {
                    "mime_type": prompt.mime_type,
                    "data": base64.b64encode(prompt.image_bytes).decode("ascii"),
                }
            }
        )
    return {"contents": [{"parts": parts}]}


def _extract_text(data: Any) -> str:
    if not isinstance(data, dict):
        msg = f"Expected dict response, got {type(data).__name__}"
        raise UpstreamError(msg)
    candidates = data.get("candidates") or []
    if not candidates:
        reason = (data.get("promptFeedback") or {}).get("blockReason")
        suffix = f" (blocked: {reason})" if reason else ""
        raise UpstreamError(f"Gemini returned no candidates{suffix}")
    parts = (candidates[0].get("content") or {}).get("parts") or []
    return "".join(part.get("text", "") for part in parts if isinstance(part, dict))


def _classify_error(response: httpx.Response) -> UpstreamError:
    """Map an error response to the matching domain exception."""
    status_code = response.status_code
    body = response.text
    message = body
    upstream_status = ""
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
        message = payload["error"].get("message") or body
        upstream_status = payload["error"].get("status") or ""

    haystack = f"{upstream_status} {body}"
    match status_code:
        case 429:
            return UpstreamQuotaExceededError(message, status_code=status_code)
        case 401 | 403:
            return UpstreamAuthRejectedError(message, status_code=status_code)
        case _ if any(marker in haystack for marker in _QUOTA_MARKERS):
            return UpstreamQuotaExceededError(message, status_code=status_code)
        case 400 if any(marker in haystack for marker in _AUTH_MARKERS):
            return UpstreamAuthRejectedError(message, status_code=status_code)
        case _ if status_code in _TRANSIENT_STATUSES:
            return UpstreamTransientError(message, status_code=status_code)
        case _:
            return UpstreamError(message, status_code=status_code)


__all__ = ["AsyncGeminiClient", "GeminiClientConfig"]
