"""Reference-counted registry of in-flight temporary files.

Several asynchronous stages (quiz detection, then answer extraction) can
depend on the same uploaded screenshot. The registry counts those
consumers so that a stage finishing early never deletes a file another
stage is still reading.

Key behaviors:
    - ``register``/``release`` pairs adjust a per-path reference count
    - ``try_delete`` refuses while the count is non-zero and treats a
      missing file as already deleted
    - ``reap_stale`` drops entries older than the stale threshold whatever
      their count, bounding leakage from consumers that never released
    - ``hold`` wraps register + release + delete in one async context

Concurrency:
    Designed for a single asyncio event loop. No method awaits between
    reading and writing a count, so updates are atomic with respect to
    other coroutines. A multi-threaded caller would need a lock per key.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import replace
from os import PathLike
from pathlib import Path

from screen_answerer.domain.entities import TrackedFile
from screen_answerer.telemetry.structured_logging import log_request_event

logger = logging.getLogger(__name__)

DEFAULT_STALE_THRESHOLD = 5 * 60.0
DEFAULT_REAP_INTERVAL = 60.0

PathType = str | PathLike[str]


class TemporaryFileRegistry:
    """Tracks which scratch files are still needed and by how many consumers.

    Attributes:
        stale_threshold: Age in seconds after which an entry is reaped
            regardless of its reference count.
    """

    __slots__ = ("stale_threshold", "_clock", "_entries")

    def __init__(
        self,
        stale_threshold: float = DEFAULT_STALE_THRESHOLD,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.stale_threshold = stale_threshold
        self._clock = clock
        self._entries: dict[str, TrackedFile] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def register(self, path: PathType) -> int:
        """Add one consumer for ``path`` and return the new reference count."""
        key = _key(path)
        entry = self._entries.get(key)
        if entry is None:
            entry = TrackedFile(path=key, registered_at=self._clock())
            self._entries[key] = entry
        else:
            entry.reference_count += 1
        logger.debug("file_registered path=%s refs=%d", key, entry.reference_count)
        _log_lifecycle("register", key, entry.reference_count)
        return entry.reference_count

    def is_in_progress(self, path: PathType) -> bool:
        entry = self._entries.get(_key(path))
        return entry is not None and entry.in_progress

    def reference_count(self, path: PathType) -> int:
        entry = self._entries.get(_key(path))
        return entry.reference_count if entry else 0

    def release(self, path: PathType) -> int:
        """Drop one consumer for ``path`` and return the remaining count.

        The entry is removed when the count reaches zero. The file itself is
        left alone; call ``try_delete`` to reclaim it.
        """
        key = _key(path)
        entry = self._entries.get(key)
        if entry is None:
            logger.debug("file_release_untracked path=%s", key)
            return 0
        entry.reference_count -= 1
        if entry.reference_count <= 0:
            del self._entries[key]
            logger.debug("file_released path=%s refs=0", key)
            _log_lifecycle("release", key, 0)
            return 0
        logger.debug("file_released path=%s refs=%d", key, entry.reference_count)
        _log_lifecycle("release", key, entry.reference_count)
        return entry.reference_count

    def try_delete(self, path: PathType) -> bool:
        """Delete ``path`` from disk if no consumer still holds it.

        Returns:
            True if the file is gone (deleted now or already missing),
            False if it is still in progress or the delete failed.

        Note:
            Permission and I/O errors are logged as storage errors and
            swallowed: callers proceed regardless, since reclaiming disk is
            best-effort.
        """
        key = _key(path)
        entry = self._entries.get(key)
        if entry is not None and entry.in_progress:
            logger.info(
                "file_delete_skipped path=%s refs=%d", key, entry.reference_count
            )
            return False

        file_path = Path(key)
        try:
            existed = file_path.exists()
            file_path.unlink(missing_ok=True)
        except OSError as exc:
            logger.error("storage_error: delete failed path=%s error=%s", key, exc)
            log_request_event(
                {
                    "event": "file_lifecycle",
                    "action": "delete",
                    "status": "error",
                    "path": key,
                    "error_type": type(exc).__name__,
                    "error_message": str(exc),
                }
            )
            return False

        if existed:
            logger.info("file_deleted path=%s", key)
        else:
            logger.info("file_delete_missing path=%s", key)
        log_request_event(
            {
                "event": "file_lifecycle",
                "action": "delete",
                "status": "success",
                "path": key,
                "existed": existed,
            }
        )
        return True

    def reap_stale(self, max_age: float | None = None) -> list[str]:
        """Forget entries older than ``max_age`` seconds, whatever their count.

        A consumer legitimately holding a file for longer than the threshold
        loses its protection; that bounded risk is accepted to stop crashed
        consumers from pinning entries forever.

        Returns:
            Paths whose entries were removed.
        """
        limit = self.stale_threshold if max_age is None else max_age
        now = self._clock()
        stale = [key for key, entry in self._entries.items() if now - entry.registered_at > limit]
        for key in stale:
            entry = self._entries.pop(key)
            logger.warning(
                "file_entry_reaped path=%s refs=%d age_s=%.1f",
                key,
                entry.reference_count,
                now - entry.registered_at,
            )
        if stale:
            log_request_event(
                {"event": "file_lifecycle", "action": "reap", "status": "success", "paths": stale}
            )
        return stale

    def snapshot(self) -> dict[str, TrackedFile]:
        """Return copies of the current entries keyed by path."""
        return {key: replace(entry) for key, entry in self._entries.items()}

    @asynccontextmanager
    async def hold(self, path: PathType) -> AsyncIterator[None]:
        """Keep ``path`` registered for the duration of the block.

        On exit, on every path including exceptions, releases the reference
        and attempts deletion.

        Example
        -------
        >>> async with registry.hold(upload.path):
        ...     await detect(upload.path)
        ...     await answer(upload.path)
        """
        self.register(path)
        try:
            yield
        finally:
            self.release(path)
            self.try_delete(path)

    async def run_reaper(
        self,
        interval: float = DEFAULT_REAP_INTERVAL,
        after_reap: Callable[[], object] | None = None,
    ) -> None:
        """Reap stale entries every ``interval`` seconds until cancelled.

        Args:
            interval: Seconds between passes.
            after_reap: Optional hook run after each pass (the lifespan uses
                it to sweep orphaned scratch files).
        """
        logger.info(
            "registry_reaper_started interval_s=%.1f threshold_s=%.1f",
            interval,
            self.stale_threshold,
        )
        while True:
            await asyncio.sleep(interval)
            self.reap_stale()
            if after_reap is not None:
                try:
                    after_reap()
                except Exception:
                    logger.exception("registry_reaper_hook_failed")


def _key(path: PathType) -> str:
    return str(path)


def _log_lifecycle(action: str, key: str, refs: int) -> None:
    log_request_event(
        {
            "event": "file_lifecycle",
            "action": action,
            "status": "success",
            "path": key,
            "reference_count": refs,
        }
    )


__all__ = ["DEFAULT_REAP_INTERVAL", "DEFAULT_STALE_THRESHOLD", "TemporaryFileRegistry"]
