"""Shared error handling utilities for route handlers.

Route handlers pass every exception they catch to the function returned by
``handle_route_errors``, which logs it, emits an ``api_request`` structured
event and raises an ``HTTPException`` whose detail is the
``{"error": ..., "message": ...}`` body the browser client expects.

Error Handling Strategy:
    - Input errors (missing input, bad upload, malformed key) -> 400
    - Upload over the size limit -> 413
    - Local throttle / quota rejection -> 429 with Retry-After
    - Upstream credential rejected -> 401
    - Upstream quota exhausted after retries -> 429
    - Upstream overload after retries -> 503
    - Other upstream failures -> 502
    - Anything else -> 500 with the raw error text
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable
from typing import NoReturn

from fastapi import HTTPException, status

from screen_answerer.api.limits import MIN_RETRY_AFTER_SECONDS
from screen_answerer.api.models import RequestContext
from screen_answerer.domain.exceptions import (
    InvalidCredentialFormatError,
    InvalidUploadError,
    LocalQuotaRejectedError,
    LocalThrottleRejectedError,
    MissingInputError,
    UploadTooLargeError,
    UpstreamAuthRejectedError,
    UpstreamError,
    UpstreamQuotaExceededError,
    UpstreamTransientError,
)
from screen_answerer.telemetry.structured_logging import log_request_event

logger = logging.getLogger(__name__)

AUTH_REJECTED_MESSAGE = "Invalid API key provided. Please check your API key and try again."
QUOTA_EXCEEDED_MESSAGE = "API quota limit reached. Please try again later."


def handle_route_errors(
    ctx: RequestContext,
    operation_name: str,
    failure_label: str = "Failed to process question",
    *,
    start_time: float | None = None,
    event_builder: Callable[[], dict[str, object]] | None = None,
) -> Callable[[Exception], NoReturn]:
    """Create an error handler function for route handlers.

    Args:
        ctx: Request context with request_id for logging.
        operation_name: Name of the operation (e.g. "process_question").
        failure_label: ``error`` label of unexpected (500) failures.
        start_time: ``time.perf_counter()`` at request start, for latency.
        event_builder: Returns extra fields for the structured event.

    Returns:
        Function that takes an exception and raises HTTPException.

    Example:
        >>> handle_error = handle_route_errors(ctx, "monitor_screen")
        >>> try:
        ...     result = await use_case.execute(...)
        ... except Exception as exc:
        ...     handle_error(exc)
    """

    def _build_event(**extra: object) -> dict[str, object]:
        event: dict[str, object] = {
            "event": "api_request",
            "operation": operation_name,
            "status": "error",
            "request_id": ctx.request_id,
            "client_ip": ctx.client_ip,
        }
        if start_time is not None:
            event["latency_ms"] = round((time.perf_counter() - start_time) * 1000, 3)
        if event_builder:
            try:
                additional = event_builder() or {}
            except Exception as builder_exc:  # pragma: no cover - defensive
                logger.warning(
                    "event_builder_failed: request_id=%s, error=%s", ctx.request_id, builder_exc
                )
            else:
                event.update({k: v for k, v in additional.items() if v is not None})
        event.update({k: v for k, v in extra.items() if v is not None})
        return event

    def _fail(
        exc: Exception,
        http_status: int,
        error: str,
        message: str,
        *,
        level: int = logging.WARNING,
        headers: dict[str, str] | None = None,
    ) -> NoReturn:
        logger.log(
            level,
            "%s_failed: request_id=%s, status=%d, error_type=%s, error=%s",
            operation_name,
            ctx.request_id,
            http_status,
            type(exc).__name__,
            exc,
        )
        log_request_event(
            _build_event(
                error_type=type(exc).__name__,
                error_message=str(exc),
                http_status=http_status,
                upstream_status=getattr(exc, "status_code", None),
            )
        )
        raise HTTPException(
            status_code=http_status,
            detail={"error": error, "message": message},
            headers=headers,
        ) from exc

    def handle_error(exc: Exception) -> NoReturn:
        """Handle exception and raise appropriate HTTPException."""
        match exc:
            case HTTPException():
                raise exc

            case LocalThrottleRejectedError(retry_after=retry_after) | LocalQuotaRejectedError(
                retry_after=retry_after
            ):
                _fail(
                    exc,
                    status.HTTP_429_TOO_MANY_REQUESTS,
                    exc.error,
                    exc.message,
                    headers=_retry_after_header(retry_after),
                )

            case MissingInputError() | InvalidUploadError() | InvalidCredentialFormatError():
                _fail(exc, status.HTTP_400_BAD_REQUEST, exc.error, exc.message)

            case UploadTooLargeError():
                _fail(exc, status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, exc.error, exc.message)

            case UpstreamAuthRejectedError():
                _fail(exc, status.HTTP_401_UNAUTHORIZED, exc.error, AUTH_REJECTED_MESSAGE)

            case UpstreamQuotaExceededError():
                _fail(exc, status.HTTP_429_TOO_MANY_REQUESTS, exc.error, QUOTA_EXCEEDED_MESSAGE)

            case UpstreamTransientError():
                _fail(
                    exc,
                    status.HTTP_503_SERVICE_UNAVAILABLE,
                    exc.error,
                    exc.message,
                    level=logging.ERROR,
                )

            case UpstreamError():
                _fail(exc, status.HTTP_502_BAD_GATEWAY, exc.error, exc.message, level=logging.ERROR)

            case _:
                logger.exception(
                    "unexpected_error_%s: request_id=%s, error_type=%s",
                    operation_name,
                    ctx.request_id,
                    type(exc).__name__,
                )
                _fail(
                    exc,
                    status.HTTP_500_INTERNAL_SERVER_ERROR,
                    failure_label,
                    str(exc),
                    level=logging.ERROR,
                )

    return handle_error


def _retry_after_header(retry_after: float) -> dict[str, str]:
    return {"Retry-After": str(max(MIN_RETRY_AFTER_SECONDS, math.ceil(retry_after)))}


__all__ = ["handle_route_errors"]
