"""
Tests for AsyncGeminiClient using httpx.MockTransport.

No network access: every response is produced by an in-process handler.
"""

from __future__ import annotations

import base64
import json

import httpx
import pytest

from screen_answerer.client.gemini import AsyncGeminiClient, GeminiClientConfig
from screen_answerer.domain.entities import UpstreamPrompt
from screen_answerer.domain.exceptions import (
    MissingInputError,
    UpstreamAuthRejectedError,
    UpstreamError,
    UpstreamQuotaExceededError,
    UpstreamTransientError,
)
from tests.helpers import VALID_API_KEY


def _reply(text: str) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def _error(status: str, message: str) -> dict:
    return {"error": {"status": status, "message": message}}


def make_client(handler) -> AsyncGeminiClient:
    config = GeminiClientConfig(
        base_url="https://gemini.test/v1beta",
        default_model="gemini-test",
        transport=httpx.MockTransport(handler),
    )
    return AsyncGeminiClient(config)


class TestGenerateContent:
    """Successful calls."""

    @pytest.mark.asyncio
    async def test_returns_text_and_sends_key_header(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=_reply("4"))

        async with make_client(handler) as client:
            text = await client.generate_content(UpstreamPrompt(text="2+2"), api_key=VALID_API_KEY)

        assert text == "4"
        request = seen[0]
        assert request.url.path == "/v1beta/models/gemini-test:generateContent"
        assert request.headers["x-goog-api-key"] == VALID_API_KEY
        body = json.loads(request.content)
        assert body == {"contents": [{"parts": [{"text": "2+2"}]}]}

    @pytest.mark.asyncio
    async def test_model_override_changes_path(self):
        paths: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.path)
            return httpx.Response(200, json=_reply("ok"))

        async with make_client(handler) as client:
            await client.generate_content(
                UpstreamPrompt(text="hi"), api_key=VALID_API_KEY, model="gemini-other"
            )

        assert paths == ["/v1beta/models/gemini-other:generateContent"]

    @pytest.mark.asyncio
    async def test_image_is_sent_inline_as_base64(self):
        """The image travels as an ``inline_data`` part after the text."""
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json=_reply("B"))

        prompt = UpstreamPrompt(text="answer", image_bytes=b"\x89PNG", mime_type="image/png")
        async with make_client(handler) as client:
            await client.generate_content(prompt, api_key=VALID_API_KEY)

        parts = bodies[0]["contents"][0]["parts"]
        assert parts[0] == {"text": "answer"}
        assert parts[1]["inline_data"]["mime_type"] == "image/png"
        assert base64.b64decode(parts[1]["inline_data"]["data"]) == b"\x89PNG"

    @pytest.mark.asyncio
    async def test_multiple_parts_are_concatenated(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={"candidates": [{"content": {"parts": [{"text": "A\n"}, {"text": "B"}]}}]},
            )

        async with make_client(handler) as client:
            text = await client.generate_content(UpstreamPrompt(text="q"), api_key=VALID_API_KEY)
        assert text == "A\nB"

    @pytest.mark.asyncio
    async def test_empty_key_is_rejected_before_sending(self):
        calls: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json=_reply("4"))

        async with make_client(handler) as client:
            with pytest.raises(MissingInputError):
                await client.generate_content(UpstreamPrompt(text="q"), api_key="")
        assert calls == []

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        client = make_client(lambda request: httpx.Response(200, json=_reply("4")))
        await client.generate_content(UpstreamPrompt(text="q"), api_key=VALID_API_KEY)
        await client.close()
        await client.close()
        assert client.client is None


class TestErrorClassification:
    """HTTP failures map to domain errors the retry executor understands."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("status_code", "payload", "expected"),
        [
            (429, _error("RESOURCE_EXHAUSTED", "Quota exceeded"), UpstreamQuotaExceededError),
            (400, _error("INVALID_ARGUMENT", "API key not valid. API_KEY_INVALID"), UpstreamAuthRejectedError),
            (403, _error("PERMISSION_DENIED", "Forbidden"), UpstreamAuthRejectedError),
            (401, _error("UNAUTHENTICATED", "No key"), UpstreamAuthRejectedError),
            (503, _error("UNAVAILABLE", "The model is overloaded"), UpstreamTransientError),
            (500, _error("INTERNAL", "Internal error"), UpstreamTransientError),
            (404, _error("NOT_FOUND", "models/x is not found"), UpstreamError),
        ],
    )
    async def test_status_mapping(self, status_code, payload, expected):
        async with make_client(lambda request: httpx.Response(status_code, json=payload)) as client:
            with pytest.raises(expected) as exc_info:
                await client.generate_content(UpstreamPrompt(text="q"), api_key=VALID_API_KEY)
        assert exc_info.value.status_code == status_code
        assert exc_info.value.message == payload["error"]["message"]

    @pytest.mark.asyncio
    async def test_resource_exhausted_without_429_is_quota(self):
        payload = _error("RESOURCE_EXHAUSTED", "Resource has been exhausted")
        async with make_client(lambda request: httpx.Response(400, json=payload)) as client:
            with pytest.raises(UpstreamQuotaExceededError):
                await client.generate_content(UpstreamPrompt(text="q"), api_key=VALID_API_KEY)

    @pytest.mark.asyncio
    async def test_plain_text_error_body(self):
        async with make_client(lambda request: httpx.Response(418, text="teapot")) as client:
            with pytest.raises(UpstreamError) as exc_info:
                await client.generate_content(UpstreamPrompt(text="q"), api_key=VALID_API_KEY)
        assert exc_info.value.message == "teapot"

    @pytest.mark.asyncio
    async def test_no_candidates_is_upstream_error(self):
        payload = {"candidates": [], "promptFeedback": {"blockReason": "SAFETY"}}
        async with make_client(lambda request: httpx.Response(200, json=payload)) as client:
            with pytest.raises(UpstreamError, match="blocked: SAFETY"):
                await client.generate_content(UpstreamPrompt(text="q"), api_key=VALID_API_KEY)

    @pytest.mark.asyncio
    async def test_malformed_json_is_upstream_error(self):
        async with make_client(lambda request: httpx.Response(200, text="not json")) as client:
            with pytest.raises(UpstreamError, match="malformed"):
                await client.generate_content(UpstreamPrompt(text="q"), api_key=VALID_API_KEY)

    @pytest.mark.asyncio
    async def test_network_failure_is_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with make_client(handler) as client:
            with pytest.raises(UpstreamTransientError, match="connection refused"):
                await client.generate_content(UpstreamPrompt(text="q"), api_key=VALID_API_KEY)
