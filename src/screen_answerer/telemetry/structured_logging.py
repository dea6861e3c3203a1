"""Structured logging utilities for the Screen Answerer relay.

This module provides JSON-based structured logging for request, upstream
and file-lifecycle events. All events are written in JSON Lines (JSONL)
format so they can be grepped or loaded into any log tooling.

Log File Configuration:
    - Location: ``<LOG_DIR>/requests.jsonl`` (default ``logs/requests.jsonl``)
    - Format: JSON Lines (one JSON object per line)
    - Encoding: UTF-8
    - Rotation: Not implemented

Event Schema:
    All events should include:
        - event: Event type identifier (``http_request``, ``api_request``,
          ``gemini_request``, ``file_lifecycle``)
        - timestamp: ISO 8601 timestamp (auto-injected if missing)
        - Additional fields: request_id, operation, status, latency_ms, ...
"""

from __future__ import annotations

import functools
import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import TypeAdapter

REQUEST_LOGGER_NAME = "screen_answerer.requests"


@functools.cache
def _get_request_logger() -> logging.Logger:
    """Return the non-propagating JSONL logger, creating its file handler once.

    Side effects:
        Creates the log directory if it doesn't exist.
    """
    from screen_answerer.core.config import settings

    request_logger = logging.getLogger(REQUEST_LOGGER_NAME)
    if not request_logger.handlers:
        logs_dir = Path(settings.logging.dir)
        logs_dir.mkdir(parents=True, exist_ok=True)
        request_logger.setLevel(logging.INFO)
        handler = logging.FileHandler(logs_dir / "requests.jsonl", encoding="utf-8")
        handler.setFormatter(logging.Formatter("%(message)s"))
        request_logger.addHandler(handler)
        request_logger.propagate = False
    return request_logger


def _json_default(value: Any) -> Any:
    """Fallback serializer for datetime, Path and other objects."""
    match value:
        case datetime():
            return TypeAdapter(datetime).dump_python(value, mode="json")
        case Path():
            return str(value)
        case _:
            return str(value)


def log_request_event(event: dict[str, Any]) -> None:
    """Emit a structured event as one JSON line.

    Automatically injects ``timestamp`` if not present (mutates ``event``).

    Example:
        >>> log_request_event({
        ...     "event": "api_request",
        ...     "operation": "process_question",
        ...     "status": "success",
        ...     "latency_ms": 812.4,
        ... })
    """
    event.setdefault("timestamp", datetime.now(UTC).isoformat())
    _get_request_logger().info(json.dumps(event, default=_json_default))


__all__ = ["REQUEST_LOGGER_NAME", "log_request_event"]
