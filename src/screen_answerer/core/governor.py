"""Outbound call governor: per-client cool-down plus a global call quota.

Two independent guards sit in front of every call to the inference API:

    - Client throttle: a client may make one accepted call per cool-down
      window (default 5 s). The last-call timestamp only moves on an
      accepted call.
    - Global quota: at most ``quota_limit`` calls (default 50) are
      dispatched per fixed reset interval (default 60 s). A call is counted
      when it is reserved, in the same step as the quota check, so slow
      in-flight calls count against the quota and concurrent requests
      cannot overrun it.

The quota window resets at fixed boundaries rather than sliding, so a burst
straddling a boundary can reach up to twice the nominal limit.

Concurrency:
    Check-and-set sequences contain no ``await`` and are therefore atomic
    under a single asyncio event loop.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Any

from cachetools import TTLCache

from screen_answerer.domain.entities import ClientThrottleState, Decision, QuotaWindow
from screen_answerer.domain.exceptions import (
    LocalQuotaRejectedError,
    LocalThrottleRejectedError,
)

logger = logging.getLogger(__name__)


class CallGovernor:
    """Decides whether an outbound inference call may proceed.

    The per-client map is a ``TTLCache`` whose TTL equals the cool-down:
    an entry disappears exactly when it stops limiting its client, which
    keeps the map bounded without a separate sweep.

    The cache also caps the map at ``max_clients`` entries. Past that cap
    the least recently used entry is evicted, so a flood of distinct client
    ids can end a real client's cool-down early. The global quota still
    bounds upstream calls in that case.

    Attributes:
        cool_down: Minimum seconds between accepted calls from one client.
        quota_limit: Calls allowed per quota window.
        reset_interval: Quota window length in seconds.
    """

    __slots__ = (
        "cool_down",
        "quota_limit",
        "reset_interval",
        "_clock",
        "_clients",
        "_quota",
        "_rejected_throttle",
        "_rejected_quota",
    )

    def __init__(
        self,
        cool_down: float = 5.0,
        quota_limit: int = 50,
        reset_interval: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        max_clients: int = 10_000,
    ) -> None:
        self.cool_down = cool_down
        self.quota_limit = quota_limit
        self.reset_interval = reset_interval
        self._clock = clock
        self._clients: TTLCache[str, ClientThrottleState] = TTLCache(
            maxsize=max_clients, ttl=cool_down, timer=clock
        )
        self._quota = QuotaWindow(window_start=clock())
        self._rejected_throttle = 0
        self._rejected_quota = 0

    # ------------------------------------------------------------------
    # Client throttle
    # ------------------------------------------------------------------

    def check_client_throttle(self, client_id: str) -> Decision:
        """Check-and-set the cool-down for ``client_id``.

        Returns ``LIMITED`` if the client's last accepted call was less than
        ``cool_down`` seconds ago; otherwise records now as the client's
        last call and returns ``ALLOWED``.
        """
        now = self._clock()
        state = self._clients.get(client_id)
        if state is not None and now - state.last_call_at < self.cool_down:
            return Decision.LIMITED
        self._clients[client_id] = ClientThrottleState(client_id=client_id, last_call_at=now)
        return Decision.ALLOWED

    def retry_after_for(self, client_id: str) -> float:
        """Seconds until ``client_id`` leaves its cool-down (0 if not limited)."""
        state = self._clients.get(client_id)
        if state is None:
            return 0.0
        return max(0.0, self.cool_down - (self._clock() - state.last_call_at))

    # ------------------------------------------------------------------
    # Global quota
    # ------------------------------------------------------------------

    def check_global_quota(self) -> Decision:
        """Return ``LIMITED`` once ``quota_limit`` calls were recorded this window."""
        self._roll_window()
        if self._quota.count >= self.quota_limit:
            return Decision.LIMITED
        return Decision.ALLOWED

    def record_call(self) -> int:
        """Count one dispatched call against the quota and return the new count."""
        self._roll_window()
        self._quota.count += 1
        return self._quota.count

    def reset_quota(self) -> None:
        """Start a fresh quota window now."""
        self._quota = QuotaWindow(window_start=self._clock())
        logger.debug("quota_reset")

    def quota_retry_after(self) -> float:
        """Seconds until the current quota window ends."""
        self._roll_window()
        elapsed = self._clock() - self._quota.window_start
        return max(0.0, self.reset_interval - elapsed)

    def _roll_window(self) -> None:
        now = self._clock()
        elapsed = now - self._quota.window_start
        if elapsed >= self.reset_interval:
            windows = int(elapsed // self.reset_interval)
            self._quota = QuotaWindow(
                window_start=self._quota.window_start + windows * self.reset_interval
            )

    async def run_quota_reset(self, interval: float | None = None) -> None:
        """Reset the quota counter every ``interval`` seconds until cancelled."""
        period = interval or self.reset_interval
        logger.info("quota_reset_timer_started interval_s=%.1f limit=%d", period, self.quota_limit)
        while True:
            await asyncio.sleep(period)
            self.reset_quota()

    # ------------------------------------------------------------------
    # Request-level guard
    # ------------------------------------------------------------------

    def admit(self, client_id: str) -> int:
        """Admit one request from ``client_id`` and reserve its first call.

        The quota check has no side effect and runs first, so a quota
        rejection leaves the client's cool-down untouched. Checking both
        guards and counting the call happen in one synchronous step, so
        concurrent requests can never push the count past ``quota_limit``.

        Returns:
            The quota count after the reservation.

        Raises:
            LocalQuotaRejectedError: Global quota exhausted for this window.
            LocalThrottleRejectedError: Client is inside its cool-down.
        """
        self._reject_if_quota_exhausted(client_id)

        if self.check_client_throttle(client_id) is Decision.LIMITED:
            self._rejected_throttle += 1
            retry_after = self.retry_after_for(client_id)
            logger.warning(
                "throttle_rejected: client_id=%s, retry_after_s=%.1f", client_id, retry_after
            )
            raise LocalThrottleRejectedError(retry_after=retry_after)

        return self.record_call()

    def reserve_call(self, client_id: str) -> int:
        """Reserve one more call for an already admitted request.

        Used by multi-stage requests before each stage after the first. The
        client's cool-down is not consulted.

        Raises:
            LocalQuotaRejectedError: Global quota exhausted for this window.
        """
        self._reject_if_quota_exhausted(client_id)
        return self.record_call()

    def _reject_if_quota_exhausted(self, client_id: str) -> None:
        if self.check_global_quota() is Decision.ALLOWED:
            return
        self._rejected_quota += 1
        retry_after = self.quota_retry_after()
        logger.warning(
            "quota_rejected: client_id=%s, count=%d, retry_after_s=%.1f",
            client_id,
            self._quota.count,
            retry_after,
        )
        raise LocalQuotaRejectedError(retry_after=retry_after)

    def stats(self) -> dict[str, Any]:
        """Return a snapshot of governor counters for diagnostics endpoints."""
        self._roll_window()
        self._clients.expire()
        return {
            "quota_count": self._quota.count,
            "quota_limit": self.quota_limit,
            "quota_window_remaining_s": round(self.quota_retry_after(), 3),
            "tracked_clients": len(self._clients),
            "rejected_throttle": self._rejected_throttle,
            "rejected_quota": self._rejected_quota,
        }


__all__ = ["CallGovernor"]
