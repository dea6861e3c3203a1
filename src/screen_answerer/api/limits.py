"""Shared API guardrail constants."""

from __future__ import annotations

# Request payload limits
MAX_JSON_BODY_BYTES = 1024 * 1024
MAX_FORM_FILES = 1

# Retry-After floor for local rejections, in whole seconds
MIN_RETRY_AFTER_SECONDS = 1

__all__ = [
    "MAX_FORM_FILES",
    "MAX_JSON_BODY_BYTES",
    "MIN_RETRY_AFTER_SECONDS",
]
