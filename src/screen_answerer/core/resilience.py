"""Retry with jittered exponential backoff for upstream inference calls."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
)
from tenacity.wait import wait_base

from screen_answerer.domain.exceptions import DomainError, UpstreamTransientError

if TYPE_CHECKING:
    from screen_answerer.core.config import RetryConfig

logger = logging.getLogger(__name__)

_T = TypeVar("_T")

TRANSIENT_SIGNATURES = (
    "429",
    "rate limit",
    "quota",
    "resource exhausted",
    "resource has been exhausted",
)


def is_transient(exc: BaseException) -> bool:
    """Return True if ``exc`` signals temporary upstream overload.

    Classified domain errors are trusted by type; anything else is matched
    against known rate-limit / quota signatures in its message.
    """
    if isinstance(exc, UpstreamTransientError):
        return True
    if isinstance(exc, DomainError):
        return False
    text = str(exc).lower()
    return any(signature in text for signature in TRANSIENT_SIGNATURES)


class wait_jittered_exponential(wait_base):  # noqa: N801 - tenacity naming
    """Wait ``initial * 2**k * jitter`` seconds before retry ``k`` (0-based).

    ``jitter`` is drawn uniformly from ``[low, high]`` and the result is
    capped at ``maximum``.
    """

    def __init__(
        self,
        initial: float = 1.0,
        maximum: float = 10.0,
        jitter: tuple[float, float] = (0.8, 1.2),
        rng: random.Random | None = None,
    ) -> None:
        self.initial = initial
        self.maximum = maximum
        self.jitter = jitter
        self._rng = rng or random.Random()

    def __call__(self, retry_state: RetryCallState) -> float:
        exponent = max(retry_state.attempt_number - 1, 0)
        low, high = self.jitter
        delay = self.initial * (2**exponent) * self._rng.uniform(low, high)
        return min(delay, self.maximum)


class RetryExecutor:
    """Runs one async unit of work with bounded retries on transient failure.

    Terminal errors propagate immediately. Transient errors are retried up
    to ``max_retries`` times with non-blocking sleeps; after that the last
    error propagates. The executor knows nothing about quotas or files.
    """

    __slots__ = ("max_retries", "initial_delay", "max_delay", "jitter", "_sleep", "_rng")

    def __init__(
        self,
        max_retries: int = 3,
        initial_delay: float = 1.0,
        max_delay: float = 10.0,
        jitter: tuple[float, float] = (0.8, 1.2),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self._sleep = sleep
        self._rng = rng or random.Random()

    @classmethod
    def from_config(cls, config: RetryConfig, **kwargs: object) -> RetryExecutor:
        return cls(
            max_retries=config.max_retries,
            initial_delay=config.initial_delay_seconds,
            max_delay=config.max_delay_seconds,
            jitter=(config.jitter_min, config.jitter_max),
            **kwargs,  # type: ignore[arg-type]
        )

    async def execute(self, operation: Callable[[], Awaitable[_T]]) -> _T:
        """Await ``operation()``, retrying transient failures with backoff.

        ``operation`` is any zero-argument callable returning an awaitable,
        including a plain lambda wrapping a coroutine call.

        Raises:
            Exception: The terminal error, or the last transient error once
                retries are exhausted.
        """
        retrying = AsyncRetrying(
            sleep=self._sleep,
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_jittered_exponential(
                initial=self.initial_delay,
                maximum=self.max_delay,
                jitter=self.jitter,
                rng=self._rng,
            ),
            retry=retry_if_exception(is_transient),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await operation()
        # reraise=True means the loop only ends by returning or raising
        raise RuntimeError("retry loop ended without an outcome")  # pragma: no cover


__all__ = [
    "TRANSIENT_SIGNATURES",
    "RetryExecutor",
    "is_transient",
    "wait_jittered_exponential",
]
