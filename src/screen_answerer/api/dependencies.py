"""Dependency injection for FastAPI endpoints.

Core components are created once during lifespan startup and stored here
through ``set_dependencies``; routes obtain them (and the use cases built
from them) through FastAPI ``Depends``. Tests call ``set_dependencies``
directly with fakes.

Dependency Flow:
    1. Lifespan startup builds registry, governor, retry executor, upload
       store and upstream client
    2. set_dependencies() stores the instances
    3. get_*() functions retrieve them (503 if not initialized)
    4. get_*_use_case() functions construct use cases per request

The module also owns request parsing for the question endpoints, which
accept multipart forms (with an optional ``image`` file), urlencoded forms
and JSON bodies with the same field names.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass
from typing import Annotated, Any

from fastapi import Depends, HTTPException, Request, status
from pydantic import ValidationError
from starlette.datastructures import UploadFile

from screen_answerer.api.limits import MAX_FORM_FILES, MAX_JSON_BODY_BYTES
from screen_answerer.api.models import QuestionPayload, RequestContext
from screen_answerer.application.interfaces import InferenceClientInterface
from screen_answerer.application.use_cases import (
    AnswerQuestionUseCase,
    MonitorScreenUseCase,
)
from screen_answerer.core.config import settings
from screen_answerer.core.governor import CallGovernor
from screen_answerer.core.registry import TemporaryFileRegistry
from screen_answerer.core.resilience import RetryExecutor
from screen_answerer.domain.entities import StoredUpload, validate_api_key_format
from screen_answerer.domain.exceptions import MissingInputError
from screen_answerer.infrastructure.uploads import UploadStore

logger = logging.getLogger(__name__)

_FORM_CONTENT_TYPES = ("multipart/form-data", "application/x-www-form-urlencoded")

# Global instances (initialized in lifespan)
_registry: TemporaryFileRegistry | None = None
_governor: CallGovernor | None = None
_retry: RetryExecutor | None = None
_client: InferenceClientInterface | None = None
_store: UploadStore | None = None


def set_dependencies(
    registry: TemporaryFileRegistry,
    governor: CallGovernor,
    retry: RetryExecutor,
    client: InferenceClientInterface,
    store: UploadStore,
) -> None:
    """Set global dependencies (called during lifespan startup).

    Args:
        registry: Reference-counted tracker of in-flight scratch files.
        governor: Per-client cool-down and global quota guard.
        retry: Backoff executor for upstream calls.
        client: Upstream inference client.
        store: Scratch storage for uploaded images.
    """
    global _registry, _governor, _retry, _client, _store
    _registry = registry
    _governor = governor
    _retry = retry
    _client = client
    _store = store


def validate_dependencies() -> dict[str, bool]:
    """Report which dependencies have been initialized."""
    return {
        "registry": _registry is not None,
        "governor": _governor is not None,
        "retry": _retry is not None,
        "client": _client is not None,
        "store": _store is not None,
    }


def _not_initialized(name: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={"error": "Service unavailable", "message": f"{name} not initialized"},
    )


def get_registry() -> TemporaryFileRegistry:
    if _registry is None:
        raise _not_initialized("File registry")
    return _registry


def get_governor() -> CallGovernor:
    if _governor is None:
        raise _not_initialized("Call governor")
    return _governor


def get_retry_executor() -> RetryExecutor:
    if _retry is None:
        raise _not_initialized("Retry executor")
    return _retry


def get_client() -> InferenceClientInterface:
    if _client is None:
        raise _not_initialized("Inference client")
    return _client


def get_upload_store() -> UploadStore:
    if _store is None:
        raise _not_initialized("Upload store")
    return _store


def get_request_context(request: Request) -> RequestContext:
    """Extract (or reuse) the request context stored on ``request.state``.

    The same context instance is reused for the lifetime of one request, so
    middleware, route handlers and error handlers log the same request_id.
    """
    from slowapi.util import get_remote_address

    ctx: RequestContext | None = getattr(request.state, "request_context", None)
    if ctx is None:
        ctx = RequestContext(
            request_id=str(uuid.uuid4()),
            client_ip=get_remote_address(request),
            user_agent=request.headers.get("user-agent"),
        )
        request.state.request_context = ctx
    return ctx


def get_answer_use_case(
    client: Annotated[InferenceClientInterface, Depends(get_client)],
    governor: Annotated[CallGovernor, Depends(get_governor)],
    registry: Annotated[TemporaryFileRegistry, Depends(get_registry)],
    retry: Annotated[RetryExecutor, Depends(get_retry_executor)],
) -> AnswerQuestionUseCase:
    return AnswerQuestionUseCase(client=client, governor=governor, registry=registry, retry=retry)


def get_monitor_use_case(
    client: Annotated[InferenceClientInterface, Depends(get_client)],
    governor: Annotated[CallGovernor, Depends(get_governor)],
    registry: Annotated[TemporaryFileRegistry, Depends(get_registry)],
    retry: Annotated[RetryExecutor, Depends(get_retry_executor)],
) -> MonitorScreenUseCase:
    return MonitorScreenUseCase(client=client, governor=governor, registry=registry, retry=retry)


@dataclass(slots=True, frozen=True)
class QuestionInput:
    """Validated input of one question request.

    Attributes:
        question: Typed question text, if any.
        api_key: Credential to forward upstream.
        model: Model override, if any.
        upload: Stored screenshot, if one was sent.
    """

    question: str | None
    api_key: str
    model: str | None
    upload: StoredUpload | None


async def read_question_input(
    request: Request,
    store: UploadStore,
    *,
    require_image: bool = False,
    strict_key: bool = False,
) -> QuestionInput:
    """Parse, validate and (if present) store the input of a question request.

    Text fields are validated before the image is written to disk, so a
    request with a missing or malformed credential never touches the
    scratch directory.

    Args:
        request: Incoming request (multipart, urlencoded or JSON).
        store: Scratch storage the uploaded image is streamed into.
        require_image: Reject requests without an ``image`` file.
        strict_key: Require the credential to have the Gemini key format.

    Raises:
        MissingInputError: Required question, image or credential absent.
        InvalidCredentialFormatError: ``strict_key`` and the key is malformed.
        InvalidUploadError, UploadTooLargeError, StorageError: The image
            could not be stored.
        HTTPException: The body could not be parsed.
    """
    content_type = request.headers.get("content-type", "").lower()
    if content_type.startswith(_FORM_CONTENT_TYPES):
        async with request.form(max_files=MAX_FORM_FILES) as form:
            image = form.get("image")
            fields = QuestionPayload(
                question=_form_text(form.get("question")),
                apiKey=_form_text(form.get("apiKey")),
                model=_form_text(form.get("model")),
            )
            image = image if isinstance(image, UploadFile) and image.filename else None
            api_key = _validate_fields(
                request,
                fields,
                has_image=image is not None,
                require_image=require_image,
                strict_key=strict_key,
            )
            upload = await store.save(image) if image is not None else None
    else:
        fields = await _parse_json_payload(request)
        api_key = _validate_fields(
            request,
            fields,
            has_image=False,
            require_image=require_image,
            strict_key=strict_key,
        )
        upload = None

    return QuestionInput(
        question=fields.question or None,
        api_key=api_key,
        model=fields.model or None,
        upload=upload,
    )


def resolve_api_key(request: Request, body_key: str | None) -> str | None:
    """Pick the credential: ``X-API-Key`` header, then body, then server key."""
    return request.headers.get("x-api-key") or body_key or settings.gemini.api_key or None


def _validate_fields(
    request: Request,
    fields: QuestionPayload,
    *,
    has_image: bool,
    require_image: bool,
    strict_key: bool,
) -> str:
    if require_image and not has_image:
        raise MissingInputError("No image provided")
    if not has_image and not fields.question:
        raise MissingInputError("No question or image provided")
    api_key = resolve_api_key(request, fields.apiKey)
    if not api_key:
        raise MissingInputError("API key is required")
    if strict_key:
        validate_api_key_format(api_key)
    return api_key


def _form_text(value: Any) -> str | None:
    return value if isinstance(value, str) else None


async def _parse_json_payload(request: Request) -> QuestionPayload:
    body_bytes = await request.body()
    if not body_bytes:
        return QuestionPayload()
    if len(body_bytes) > MAX_JSON_BODY_BYTES:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail={
                "error": "Request too large",
                "message": f"Request body exceeds {MAX_JSON_BODY_BYTES:,} bytes",
            },
        )
    try:
        payload = json.loads(body_bytes)
    except json.JSONDecodeError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "Invalid request", "message": f"Invalid JSON body: {exc.msg}"},
        ) from exc
    if not isinstance(payload, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "Invalid request", "message": "JSON body must be an object"},
        )
    try:
        return QuestionPayload.model_validate(payload)
    except ValidationError as exc:
        first = exc.errors()[0]
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error": "Invalid request",
                "message": f"{first.get('msg', 'Invalid value')} at {list(first.get('loc', []))}",
            },
        ) from exc


__all__ = [
    "QuestionInput",
    "get_answer_use_case",
    "get_client",
    "get_governor",
    "get_monitor_use_case",
    "get_registry",
    "get_request_context",
    "get_retry_executor",
    "get_upload_store",
    "read_question_input",
    "resolve_api_key",
    "set_dependencies",
    "validate_dependencies",
]
