"""Use cases for the Screen Answerer relay.

Each use case wraps one or two upstream inference calls in the relay's
request-lifecycle guards:

    1. The call governor admits the request (global quota, then per-client
       cool-down) and reserves its first upstream call in the same step. A
       rejection deletes the stored upload and propagates.
    2. The uploaded file is held in the temporary file registry for as long
       as any stage reads it, and released and deleted on every exit path.
    3. Each logical upstream call is counted against the quota once, when
       it is reserved, and dispatched through the retry executor. Later
       stages reserve their own call before running.

Use cases are framework-agnostic: no FastAPI, no httpx.

Key Use Cases:
    - AnswerQuestionUseCase: Typed question or screenshot to answer lines
    - MonitorScreenUseCase: Detect a quiz question, then answer it
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from screen_answerer.domain.entities import (
    AnswerResult,
    MonitorResult,
    StoredUpload,
    UpstreamPrompt,
    mime_type_for,
    parse_answer_lines,
)
from screen_answerer.domain.exceptions import (
    DomainError,
    LocalQuotaRejectedError,
    LocalThrottleRejectedError,
    MissingInputError,
    StorageError,
    UpstreamAuthRejectedError,
    UpstreamQuotaExceededError,
)

if TYPE_CHECKING:
    from pathlib import Path

    from screen_answerer.application.interfaces import InferenceClientInterface
    from screen_answerer.core.governor import CallGovernor
    from screen_answerer.core.registry import TemporaryFileRegistry
    from screen_answerer.core.resilience import RetryExecutor

logger = logging.getLogger(__name__)

TEXT_PROMPT = (
    'Quiz question: "{question}"\n'
    "Provide ONLY the correct answer(s). If there are choices, only pick from them. "
    "Be extremely concise."
)
IMAGE_PROMPT = (
    "Quiz question image. Identify and provide ONLY the correct answer(s). "
    "If there are choices, only pick from them. Be extremely concise."
)
DETECT_PROMPT = "Is this a quiz question image? Answer only yes/no."
NOT_DETECTED_MESSAGE = "No quiz question detected in the image"


class _GovernedInference:
    """Shared plumbing: admission, file holds and counted, retried calls."""

    def __init__(
        self,
        client: InferenceClientInterface,
        governor: CallGovernor,
        registry: TemporaryFileRegistry,
        retry: RetryExecutor,
    ) -> None:
        self._client = client
        self._governor = governor
        self._registry = registry
        self._retry = retry

    def _admit(self, client_id: str, upload: StoredUpload | None) -> None:
        try:
            self._governor.admit(client_id)
        except (LocalQuotaRejectedError, LocalThrottleRejectedError):
            if upload is not None:
                self._registry.try_delete(upload.path)
            raise

    async def _ask(self, prompt: UpstreamPrompt, api_key: str, model: str | None) -> str:
        return await self._retry.execute(
            lambda: self._client.generate_content(prompt, api_key=api_key, model=model)
        )

    async def _ask_about_image(
        self, path: Path, text: str, api_key: str, model: str | None
    ) -> str:
        async with self._registry.hold(path):
            image_bytes = await _read_image(path)
            prompt = UpstreamPrompt(text=text, image_bytes=image_bytes, mime_type=mime_type_for(path))
            return await self._ask(prompt, api_key, model)


class AnswerQuestionUseCase(_GovernedInference):
    """Answer one typed question or one question screenshot."""

    async def execute(
        self,
        *,
        client_id: str,
        api_key: str,
        question: str | None = None,
        upload: StoredUpload | None = None,
        model: str | None = None,
        filter_markup: bool = False,
    ) -> AnswerResult:
        """Run the question through the model and parse the reply.

        An uploaded image takes precedence over ``question`` when both are
        given.

        Args:
            client_id: Throttling key (the caller's IP address).
            api_key: Credential forwarded upstream.
            question: Typed question text.
            upload: Stored screenshot. Deleted before this returns.
            model: Model override. None uses the client default.
            filter_markup: Drop reply lines starting with ``*`` or ``#``.

        Raises:
            MissingInputError: Neither a question nor an image was given.
            LocalQuotaRejectedError, LocalThrottleRejectedError: Governor
                refused the call.
            UpstreamError: The upstream call failed after retries.
        """
        if upload is None and not (question and question.strip()):
            raise MissingInputError("No question or image provided")

        self._admit(client_id, upload)

        if upload is not None:
            raw = await self._ask_about_image(upload.path, IMAGE_PROMPT, api_key, model)
        else:
            prompt = UpstreamPrompt(text=TEXT_PROMPT.format(question=question))
            raw = await self._ask(prompt, api_key, model)

        answers = parse_answer_lines(raw, filter_markup=filter_markup)
        logger.info("question_answered: client_id=%s, answers=%d", client_id, len(answers))
        return AnswerResult(answers=answers)


class MonitorScreenUseCase(_GovernedInference):
    """Two-stage screen check: is there a quiz question, and if so, answer it.

    The request holds the screenshot for both stages, and each stage takes
    its own hold while it reads the file. A stage finishing therefore never
    deletes the file out from under the next one; the file is deleted once,
    when the outer hold is released.
    """

    async def execute(
        self,
        *,
        client_id: str,
        upload: StoredUpload,
        api_key: str,
        model: str | None = None,
    ) -> MonitorResult:
        """Detect and answer a quiz question in ``upload``.

        Raises:
            LocalQuotaRejectedError, LocalThrottleRejectedError: Governor
                refused the call. The quota is checked again before the
                answer stage.
            UpstreamAuthRejectedError: Credential rejected (detection or answer).
            UpstreamQuotaExceededError: Upstream quota exhausted after retries.
            UpstreamError: The answer stage failed.
        """
        self._admit(client_id, upload)

        async with self._registry.hold(upload.path):
            if not await self._detect(upload.path, api_key, model):
                return MonitorResult(detected=False, message=NOT_DETECTED_MESSAGE)

            self._governor.reserve_call(client_id)
            raw = await self._ask_about_image(upload.path, IMAGE_PROMPT, api_key, model)

        answers = parse_answer_lines(raw, filter_markup=False)
        logger.info("screen_answered: client_id=%s, answers=%d", client_id, len(answers))
        return MonitorResult(detected=True, answers=answers)

    async def _detect(self, path: Path, api_key: str, model: str | None) -> bool:
        """Return True if the model says the image shows a quiz question.

        Detection failures count as "no question", except credential and
        quota errors, which would fail the answer stage the same way.
        """
        try:
            reply = await self._ask_about_image(path, DETECT_PROMPT, api_key, model)
        except (UpstreamAuthRejectedError, UpstreamQuotaExceededError):
            raise
        except DomainError as exc:
            logger.warning("quiz_detection_failed: path=%s, error=%s", path, exc)
            return False
        return "yes" in reply.strip().lower()


async def _read_image(path: Path) -> bytes:
    try:
        return await asyncio.to_thread(path.read_bytes)
    except OSError as exc:
        raise StorageError(f"Could not read upload: {exc}") from exc


__all__ = [
    "DETECT_PROMPT",
    "IMAGE_PROMPT",
    "TEXT_PROMPT",
    "AnswerQuestionUseCase",
    "MonitorScreenUseCase",
]
