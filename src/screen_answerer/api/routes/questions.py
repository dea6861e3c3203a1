"""Question routes: the three endpoints the browser client calls.

Endpoints:
    POST /process_question
        - Body: multipart (``image`` and/or ``question``, ``apiKey``, ``model``)
          or JSON / urlencoded (``question``, ``apiKey``, ``model``)
        - Response: AnswerResponse; markdown bullet and heading lines dropped

    POST /monitor_screen
        - Body: multipart with ``image`` (required) and ``apiKey``
        - Response: MonitorResponse (``detected`` plus answers or message)

    POST /process_question_with_key
        - Body: as /process_question; the key must look like a Gemini key
        - Response: AnswerResponse; reply lines returned unfiltered

The credential is read from the ``X-API-Key`` header, then the ``apiKey``
field, then the server's configured fallback key. All three endpoints are
covered by the per-IP request limit and by the call governor.

Request Flow:
    1. Parse the body, validate required fields and the key format
    2. Stream the image (if any) into scratch storage and verify it
    3. Execute the use case (governor, file hold, retried upstream call)
    4. Return the parsed answer lines
"""

from __future__ import annotations

import logging
import time

from fastapi import APIRouter, Depends, HTTPException, Request

from screen_answerer.api.dependencies import (
    QuestionInput,
    get_answer_use_case,
    get_monitor_use_case,
    get_request_context,
    get_upload_store,
    read_question_input,
)
from screen_answerer.api.error_handlers import handle_route_errors
from screen_answerer.api.middleware import limiter
from screen_answerer.api.models import AnswerResponse, MonitorResponse, RequestContext
from screen_answerer.application.use_cases import AnswerQuestionUseCase, MonitorScreenUseCase
from screen_answerer.core.config import settings
from screen_answerer.infrastructure.uploads import UploadStore
from screen_answerer.telemetry.structured_logging import log_request_event

logger = logging.getLogger(__name__)

router = APIRouter()


def _log_success(operation: str, ctx: RequestContext, start_time: float, **extra: object) -> None:
    log_request_event(
        {
            "event": "api_request",
            "operation": operation,
            "status": "success",
            "request_id": ctx.request_id,
            "client_ip": ctx.client_ip,
            "latency_ms": round((time.perf_counter() - start_time) * 1000, 3),
            **{k: v for k, v in extra.items() if v is not None},
        }
    )


async def _answer(
    request: Request,
    use_case: AnswerQuestionUseCase,
    store: UploadStore,
    *,
    operation: str,
    strict_key: bool,
    filter_markup: bool,
) -> AnswerResponse:
    ctx = get_request_context(request)
    start_time = time.perf_counter()
    data: QuestionInput | None = None
    handle_error = handle_route_errors(
        ctx,
        operation,
        start_time=start_time,
        event_builder=lambda: {
            "model": data.model if data else None,
            "has_image": data.upload is not None if data else None,
        },
    )

    try:
        data = await read_question_input(request, store, strict_key=strict_key)
        result = await use_case.execute(
            client_id=ctx.client_ip,
            api_key=data.api_key,
            question=data.question,
            upload=data.upload,
            model=data.model,
            filter_markup=filter_markup,
        )
    except HTTPException:
        raise
    except Exception as exc:
        handle_error(exc)

    _log_success(
        operation,
        ctx,
        start_time,
        model=data.model,
        has_image=data.upload is not None,
        answers=len(result.answers),
    )
    return AnswerResponse(answers=result.answers)


@router.post("/process_question", tags=["Questions"], response_model=AnswerResponse)
@limiter.limit(settings.api.request_limit)
async def process_question(
    request: Request,
    use_case: AnswerQuestionUseCase = Depends(get_answer_use_case),  # noqa: B008
    store: UploadStore = Depends(get_upload_store),  # noqa: B008
) -> AnswerResponse:
    """Answer a typed question or a question screenshot.

    Raises:
        HTTPException: 400 missing input or invalid image, 413 image too
            large, 429 throttled or quota exhausted, 401 key rejected
            upstream, 502/503 upstream failure, 500 anything else.
    """
    return await _answer(
        request,
        use_case,
        store,
        operation="process_question",
        strict_key=False,
        filter_markup=True,
    )


@router.post("/process_question_with_key", tags=["Questions"], response_model=AnswerResponse)
@limiter.limit(settings.api.request_limit)
async def process_question_with_key(
    request: Request,
    use_case: AnswerQuestionUseCase = Depends(get_answer_use_case),  # noqa: B008
    store: UploadStore = Depends(get_upload_store),  # noqa: B008
) -> AnswerResponse:
    """Answer a question with a caller-supplied key and optional model.

    The key is checked against the Gemini key format before the image is
    stored and before the governor is consulted; a malformed key never
    reaches the upstream API.
    """
    return await _answer(
        request,
        use_case,
        store,
        operation="process_question_with_key",
        strict_key=True,
        filter_markup=False,
    )


@router.post(
    "/monitor_screen",
    tags=["Questions"],
    response_model=MonitorResponse,
    response_model_exclude_none=True,
)
@limiter.limit(settings.api.request_limit)
async def monitor_screen(
    request: Request,
    use_case: MonitorScreenUseCase = Depends(get_monitor_use_case),  # noqa: B008
    store: UploadStore = Depends(get_upload_store),  # noqa: B008
) -> MonitorResponse:
    """Detect whether a screenshot shows a quiz question and answer it.

    Returns ``{"detected": false, "message": ...}`` when the model finds no
    question (or detection fails), otherwise ``{"detected": true,
    "answers": [...]}``.
    """
    ctx = get_request_context(request)
    start_time = time.perf_counter()
    data: QuestionInput | None = None
    handle_error = handle_route_errors(
        ctx,
        "monitor_screen",
        "Failed to process screen capture",
        start_time=start_time,
        event_builder=lambda: {"model": data.model if data else None},
    )

    try:
        data = await read_question_input(request, store, require_image=True)
        if data.upload is None:
            raise RuntimeError("Expected a stored upload for monitor_screen")
        result = await use_case.execute(
            client_id=ctx.client_ip,
            upload=data.upload,
            api_key=data.api_key,
            model=data.model,
        )
    except HTTPException:
        raise
    except Exception as exc:
        handle_error(exc)

    _log_success(
        "monitor_screen",
        ctx,
        start_time,
        model=data.model,
        detected=result.detected,
        answers=len(result.answers) if result.answers is not None else None,
    )
    return MonitorResponse(
        detected=result.detected,
        answers=result.answers,
        message=result.message,
    )


__all__ = ["router"]
