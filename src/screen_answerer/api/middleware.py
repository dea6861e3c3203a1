"""Middleware and error handlers for the API.

Key Features:
    - Rate Limiting: Coarse per-IP request limit on the question routes (slowapi)
    - CORS: Any origin, GET/POST, ``Content-Type`` and ``X-API-Key`` headers
    - Structured Logging: One ``http_request`` event per request
    - Error Handling: Every failure rendered as ``{"error": ..., "message": ...}``

Middleware Stack:
    1. StructuredLoggingMiddleware: Logs all HTTP requests
    2. CORSMiddleware: Handles cross-origin requests
    3. Rate Limiting: Per-endpoint limits via @limiter.limit decorator
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from fastapi import Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from screen_answerer.api.dependencies import get_request_context
from screen_answerer.api.models import ErrorResponse
from screen_answerer.core.config import settings
from screen_answerer.telemetry.structured_logging import log_request_event

if TYPE_CHECKING:
    from fastapi import FastAPI

logger = logging.getLogger(__name__)

# Initialize rate limiter
limiter = Limiter(key_func=get_remote_address)

RATE_LIMIT_MESSAGE = "Too many requests from this IP, please try again later."


class StructuredLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware that emits an ``http_request`` event for every request.

    Events are written in a ``finally`` block, so failed requests are
    logged too; exceptions still propagate to the exception handlers.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        start_time = time.perf_counter()
        status_code: int | None = None
        error_type: str | None = None
        error_message: str | None = None
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        except Exception as exc:
            status_code = getattr(exc, "status_code", status.HTTP_500_INTERNAL_SERVER_ERROR)
            error_type = type(exc).__name__
            error_message = str(exc)
            raise
        finally:
            ctx = get_request_context(request)
            event: dict[str, Any] = {
                "event": "http_request",
                "request_id": ctx.request_id,
                "client_ip": ctx.client_ip,
                "path": request.url.path,
                "method": request.method,
                "status_code": status_code,
                "latency_ms": round((time.perf_counter() - start_time) * 1000, 3),
            }
            if error_type:
                event["error_type"] = error_type
                event["error_message"] = error_message
            log_request_event(event)


def setup_middleware(app: FastAPI) -> None:
    """Configure middleware for the FastAPI application.

    Args:
        app: FastAPI application instance to configure.
    """
    # Structured logging must run first to capture the full lifecycle
    app.add_middleware(StructuredLoggingMiddleware)

    app.state.limiter = limiter

    cors_origins = settings.api.origins
    allow_origins = (
        [origin.strip() for origin in cors_origins.split(",")] if cors_origins != "*" else ["*"]
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "X-API-Key"],
    )


def _error_content(error: str, message: str | None = None) -> dict[str, Any]:
    return ErrorResponse(error=error, message=message).model_dump(exclude_none=True)


def setup_exception_handlers(app: FastAPI) -> None:
    """Configure global exception handlers.

    Registers handlers for:
    - HTTPException (body from ``detail``)
    - RequestValidationError (422)
    - RateLimitExceeded (429)
    - Exception (500 - catch-all)

    Args:
        app: FastAPI application instance.
    """

    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        """Render ``HTTPException`` as ``{"error", "message"}``.

        Route handlers put that dict in ``detail`` directly; string details
        (from Starlette itself, e.g. 404 or 405) become the ``error`` label.
        """
        if isinstance(exc.detail, dict):
            content = _error_content(
                str(exc.detail.get("error", "Request failed")), exc.detail.get("message")
            )
        else:
            content = _error_content(str(exc.detail))
        return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)

    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        ctx = get_request_context(request)
        error_details = exc.errors()
        logger.warning("validation_error: request_id=%s, errors=%s", ctx.request_id, error_details)
        if error_details:
            first_error = error_details[0]
            error_msg = (
                f"{first_error.get('msg', 'Invalid request')} at {first_error.get('loc', [])}"
            )
        else:
            error_msg = "Invalid request parameters"
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
            content=_error_content("Validation error", error_msg),
        )

    async def rate_limit_exception_handler(
        request: Request, exc: RateLimitExceeded
    ) -> JSONResponse:
        ctx = get_request_context(request)
        logger.warning(
            "rate_limit_exceeded: request_id=%s, client_ip=%s, limit=%s",
            ctx.request_id,
            ctx.client_ip,
            exc.detail,
        )
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content=_error_content("Too many requests", RATE_LIMIT_MESSAGE),
            headers={"Retry-After": "60"},
        )

    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for exceptions no route handler translated."""
        ctx = get_request_context(request)
        logger.exception(
            "unhandled_exception: request_id=%s, error_type=%s, error=%s",
            ctx.request_id,
            type(exc).__name__,
            str(exc),
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=_error_content("Internal server error", str(exc)),
        )

    app.exception_handler(StarletteHTTPException)(http_exception_handler)
    app.exception_handler(RequestValidationError)(validation_exception_handler)
    app.exception_handler(RateLimitExceeded)(rate_limit_exception_handler)
    app.exception_handler(Exception)(global_exception_handler)


__all__ = [
    "StructuredLoggingMiddleware",
    "limiter",
    "setup_exception_handlers",
    "setup_middleware",
]
