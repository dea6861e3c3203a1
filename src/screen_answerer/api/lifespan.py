"""Application lifespan management.

Lifespan Responsibilities:
    - Startup:
        1. Create the scratch upload directory
        2. Build the temporary file registry, call governor, retry executor,
           upload store and Gemini client from settings
        3. Store them for dependency injection
        4. Start the stale-entry reaper and the quota reset timer
    - Shutdown:
        1. Cancel the background tasks
        2. Close the Gemini client's connection pool
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from screen_answerer.api.dependencies import set_dependencies
from screen_answerer.client import AsyncGeminiClient, GeminiClientConfig
from screen_answerer.core.config import settings
from screen_answerer.core.governor import CallGovernor
from screen_answerer.core.registry import TemporaryFileRegistry
from screen_answerer.core.resilience import RetryExecutor
from screen_answerer.infrastructure.uploads import UploadStore

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan_context(app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifespan (startup and shutdown).

    Args:
        app: FastAPI application instance.

    Yields:
        None. Control is yielded to the application for request handling.
    """
    logger.info("LIFESPAN: Starting %s %s", settings.api.title, settings.api.version)

    store = UploadStore(
        directory=settings.upload.directory,
        max_file_bytes=settings.upload.max_file_bytes,
    )
    store.ensure_directory()

    registry = TemporaryFileRegistry(stale_threshold=settings.upload.stale_threshold_seconds)
    governor = CallGovernor(
        cool_down=settings.governor.cool_down_seconds,
        quota_limit=settings.governor.quota_limit,
        reset_interval=settings.governor.quota_reset_interval_seconds,
        max_clients=settings.governor.max_tracked_clients,
    )
    retry = RetryExecutor.from_config(settings.retry)
    client = AsyncGeminiClient(
        GeminiClientConfig(
            base_url=settings.gemini.base_url,
            default_model=settings.gemini.default_model,
            timeout=settings.gemini.timeout,
        )
    )
    logger.info(
        "LIFESPAN: Governor cool_down_s=%.1f quota=%d/%.0fs, retries=%d, upload_dir=%s",
        governor.cool_down,
        governor.quota_limit,
        governor.reset_interval,
        retry.max_retries,
        store.directory,
    )

    set_dependencies(registry, governor, retry, client, store)

    def _sweep_orphans() -> None:
        store.sweep_orphans(
            max_age=settings.upload.stale_threshold_seconds,
            in_use=set(registry.snapshot()),
        )

    tasks = [
        asyncio.create_task(
            registry.run_reaper(settings.upload.reap_interval_seconds, after_reap=_sweep_orphans),
            name="registry-reaper",
        ),
        asyncio.create_task(governor.run_quota_reset(), name="quota-reset"),
    ]
    logger.info("LIFESPAN: Background tasks started")

    try:
        yield
    finally:
        logger.info("LIFESPAN: Shutting down")
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await client.close()
        logger.info("LIFESPAN: Shutdown complete")


__all__ = ["lifespan_context"]
