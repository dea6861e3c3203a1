"""Telemetry helpers (structured JSONL logging)."""

from screen_answerer.telemetry.structured_logging import log_request_event

__all__ = ["log_request_event"]
