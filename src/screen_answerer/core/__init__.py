"""Core request-lifecycle helpers for the Screen Answerer relay."""

from screen_answerer.core.governor import CallGovernor
from screen_answerer.core.registry import TemporaryFileRegistry
from screen_answerer.core.resilience import RetryExecutor, is_transient

__all__ = [
    "CallGovernor",
    "RetryExecutor",
    "TemporaryFileRegistry",
    "is_transient",
]
