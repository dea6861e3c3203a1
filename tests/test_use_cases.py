"""
Behavioral tests for the answer and monitor use cases.

Uses the real registry, governor and retry executor with fake time; only
the upstream inference client is stubbed.
"""

import asyncio

import pytest

from screen_answerer.application.use_cases import (
    DETECT_PROMPT,
    IMAGE_PROMPT,
    AnswerQuestionUseCase,
    MonitorScreenUseCase,
)
from screen_answerer.core.governor import CallGovernor
from screen_answerer.domain.entities import AnswerResult, StoredUpload
from screen_answerer.domain.exceptions import (
    LocalQuotaRejectedError,
    LocalThrottleRejectedError,
    MissingInputError,
    UpstreamAuthRejectedError,
    UpstreamError,
    UpstreamQuotaExceededError,
    UpstreamTransientError,
)
from tests.helpers import VALID_API_KEY


@pytest.fixture
def answer_use_case(relay):
    return AnswerQuestionUseCase(relay.client, relay.governor, relay.registry, relay.retry)


@pytest.fixture
def monitor_use_case(relay):
    return MonitorScreenUseCase(relay.client, relay.governor, relay.registry, relay.retry)


@pytest.fixture
def stored_upload(relay, png_bytes):
    """A screenshot already written to the scratch directory."""
    path = relay.upload_dir / "1700000000000-42.png"
    path.write_bytes(png_bytes)
    return StoredUpload(
        path=path, original_filename="shot.png", content_type="image/png", size_bytes=len(png_bytes)
    )


class TestAnswerQuestionUseCase:
    """Typed questions and screenshots."""

    @pytest.mark.asyncio
    async def test_text_question_returns_answer_lines(self, answer_use_case, relay):
        result = await answer_use_case.execute(
            client_id="1.1.1.1", api_key=VALID_API_KEY, question="2+2=?"
        )

        assert result.answers == ["4"]
        call = relay.client.calls[0]
        assert '"2+2=?"' in call.prompt.text
        assert call.prompt.image_bytes is None
        assert call.api_key == VALID_API_KEY

    @pytest.mark.asyncio
    async def test_markup_lines_are_filtered_when_requested(self, answer_use_case, relay):
        relay.client.replies = ["* Answer:\nParis\n# Note\n\n  Lyon  "]
        result = await answer_use_case.execute(
            client_id="a", api_key=VALID_API_KEY, question="Capital?", filter_markup=True
        )
        assert result.answers == ["Paris", "Lyon"]

    @pytest.mark.asyncio
    async def test_markup_lines_are_kept_by_default(self, answer_use_case, relay):
        relay.client.replies = ["* Answer:\nParis"]
        result = await answer_use_case.execute(
            client_id="a", api_key=VALID_API_KEY, question="Capital?"
        )
        assert result.answers == ["* Answer:", "Paris"]

    @pytest.mark.asyncio
    async def test_model_override_is_forwarded(self, answer_use_case, relay):
        await answer_use_case.execute(
            client_id="a", api_key=VALID_API_KEY, question="q", model="gemini-pro"
        )
        assert relay.client.calls[0].model == "gemini-pro"

    @pytest.mark.asyncio
    async def test_image_is_sent_inline_and_deleted(
        self, answer_use_case, relay, stored_upload, png_bytes
    ):
        """The screenshot reaches the model and is gone afterwards."""
        result = await answer_use_case.execute(
            client_id="a", api_key=VALID_API_KEY, upload=stored_upload
        )

        assert result.answers == ["4"]
        prompt = relay.client.calls[0].prompt
        assert prompt.text == IMAGE_PROMPT
        assert prompt.image_bytes == png_bytes
        assert prompt.mime_type == "image/png"
        assert not stored_upload.path.exists()
        assert len(relay.registry) == 0

    @pytest.mark.asyncio
    async def test_image_takes_precedence_over_question(self, answer_use_case, relay, stored_upload):
        await answer_use_case.execute(
            client_id="a", api_key=VALID_API_KEY, question="ignored", upload=stored_upload
        )
        assert relay.client.calls[0].prompt.text == IMAGE_PROMPT

    @pytest.mark.asyncio
    @pytest.mark.parametrize("question", [None, "", "   "])
    async def test_missing_input_is_rejected(self, answer_use_case, relay, question):
        with pytest.raises(MissingInputError):
            await answer_use_case.execute(client_id="a", api_key=VALID_API_KEY, question=question)
        assert relay.client.calls == []
        assert relay.governor.stats()["quota_count"] == 0

    @pytest.mark.asyncio
    async def test_throttled_request_deletes_upload_without_calling(
        self, answer_use_case, relay, stored_upload
    ):
        """A governor rejection still cleans up the stored screenshot."""
        relay.governor.admit("a")

        with pytest.raises(LocalThrottleRejectedError):
            await answer_use_case.execute(client_id="a", api_key=VALID_API_KEY, upload=stored_upload)

        assert relay.client.calls == []
        assert not stored_upload.path.exists()

    @pytest.mark.asyncio
    async def test_quota_rejection_deletes_upload(self, answer_use_case, relay, stored_upload):
        for _ in range(relay.governor.quota_limit):
            relay.governor.record_call()

        with pytest.raises(LocalQuotaRejectedError):
            await answer_use_case.execute(client_id="a", api_key=VALID_API_KEY, upload=stored_upload)

        assert relay.client.calls == []
        assert not stored_upload.path.exists()

    @pytest.mark.asyncio
    async def test_upstream_failure_still_deletes_upload(self, answer_use_case, relay, stored_upload):
        relay.client.replies = [UpstreamError("model not found", status_code=404)]

        with pytest.raises(UpstreamError):
            await answer_use_case.execute(client_id="a", api_key=VALID_API_KEY, upload=stored_upload)

        assert not stored_upload.path.exists()
        assert len(relay.registry) == 0

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried_and_counted_once(self, answer_use_case, relay):
        """Retries happen inside one logical call, so the quota moves by one."""
        relay.client.replies = [UpstreamQuotaExceededError("429"), "4"]

        result = await answer_use_case.execute(client_id="a", api_key=VALID_API_KEY, question="q")

        assert result.answers == ["4"]
        assert len(relay.client.calls) == 2
        assert len(relay.sleep.delays) == 1
        assert relay.governor.stats()["quota_count"] == 1


    @pytest.mark.asyncio
    async def test_concurrent_requests_never_exceed_quota(self, relay, png_bytes):
        """Simultaneous screenshots from distinct clients share one quota slot."""
        governor = CallGovernor(cool_down=5.0, quota_limit=1, reset_interval=60.0, clock=relay.clock)
        use_case = AnswerQuestionUseCase(relay.client, governor, relay.registry, relay.retry)
        uploads = []
        for n in range(5):
            path = relay.upload_dir / f"1700000000000-{n}.png"
            path.write_bytes(png_bytes)
            uploads.append(
                StoredUpload(
                    path=path,
                    original_filename="shot.png",
                    content_type="image/png",
                    size_bytes=len(png_bytes),
                )
            )

        results = await asyncio.gather(
            *(
                use_case.execute(client_id=f"10.0.0.{n}", api_key=VALID_API_KEY, upload=upload)
                for n, upload in enumerate(uploads)
            ),
            return_exceptions=True,
        )

        answered = [r for r in results if isinstance(r, AnswerResult)]
        rejected = [r for r in results if isinstance(r, LocalQuotaRejectedError)]
        assert len(answered) == 1
        assert len(rejected) == 4
        assert governor.stats()["quota_count"] <= governor.quota_limit
        assert len(relay.client.calls) == 1
        assert not any(upload.path.exists() for upload in uploads)


class TestMonitorScreenUseCase:
    """Detection followed by answer extraction."""

    @pytest.mark.asyncio
    async def test_no_question_detected(self, monitor_use_case, relay, stored_upload):
        relay.client.replies = ["No."]

        result = await monitor_use_case.execute(
            client_id="a", upload=stored_upload, api_key=VALID_API_KEY
        )

        assert result.detected is False
        assert result.answers is None
        assert result.message == "No quiz question detected in the image"
        assert len(relay.client.calls) == 1
        assert relay.client.calls[0].prompt.text == DETECT_PROMPT
        assert not stored_upload.path.exists()

    @pytest.mark.asyncio
    async def test_detected_question_is_answered(self, monitor_use_case, relay, stored_upload):
        """The file survives detection and is deleted exactly once at the end."""
        relay.client.replies = ["Yes", "* B\nC"]
        existed_during_calls: list[bool] = []
        relay.client.on_call = lambda prompt: existed_during_calls.append(
            stored_upload.path.exists()
        )

        result = await monitor_use_case.execute(
            client_id="a", upload=stored_upload, api_key=VALID_API_KEY
        )

        assert result.detected is True
        assert result.answers == ["* B", "C"]
        assert result.message is None
        assert [call.prompt.text for call in relay.client.calls] == [DETECT_PROMPT, IMAGE_PROMPT]
        assert existed_during_calls == [True, True]
        assert relay.registry.delete_results.count(True) == 1
        assert not stored_upload.path.exists()
        assert len(relay.registry) == 0
        assert relay.governor.stats()["quota_count"] == 2

    @pytest.mark.asyncio
    async def test_detection_transient_failure_counts_as_not_detected(
        self, monitor_use_case, relay, stored_upload
    ):
        relay.client.replies = [UpstreamTransientError("overloaded")] * 4

        result = await monitor_use_case.execute(
            client_id="a", upload=stored_upload, api_key=VALID_API_KEY
        )

        assert result.detected is False
        assert len(relay.client.calls) == 4
        assert not stored_upload.path.exists()

    @pytest.mark.asyncio
    async def test_detection_auth_failure_propagates(self, monitor_use_case, relay, stored_upload):
        relay.client.replies = [UpstreamAuthRejectedError("API key not valid", status_code=400)]

        with pytest.raises(UpstreamAuthRejectedError):
            await monitor_use_case.execute(client_id="a", upload=stored_upload, api_key="bad")

        assert not stored_upload.path.exists()
        assert len(relay.registry) == 0

    @pytest.mark.asyncio
    async def test_answer_stage_failure_deletes_file(self, monitor_use_case, relay, stored_upload):
        relay.client.replies = ["yes", UpstreamError("blocked")]

        with pytest.raises(UpstreamError):
            await monitor_use_case.execute(
                client_id="a", upload=stored_upload, api_key=VALID_API_KEY
            )

        assert not stored_upload.path.exists()
        assert len(relay.registry) == 0

    @pytest.mark.asyncio
    async def test_throttled_monitor_deletes_upload(self, monitor_use_case, relay, stored_upload):
        relay.governor.admit("a")

        with pytest.raises(LocalThrottleRejectedError):
            await monitor_use_case.execute(
                client_id="a", upload=stored_upload, api_key=VALID_API_KEY
            )

        assert relay.client.calls == []
        assert not stored_upload.path.exists()

    @pytest.mark.asyncio
    async def test_answer_stage_rechecks_quota(self, relay, stored_upload):
        """A quota used up by detection stops the answer stage before it dispatches."""
        governor = CallGovernor(cool_down=5.0, quota_limit=1, reset_interval=60.0, clock=relay.clock)
        use_case = MonitorScreenUseCase(relay.client, governor, relay.registry, relay.retry)
        relay.client.replies = ["Yes"]

        with pytest.raises(LocalQuotaRejectedError):
            await use_case.execute(client_id="a", upload=stored_upload, api_key=VALID_API_KEY)

        assert [call.prompt.text for call in relay.client.calls] == [DETECT_PROMPT]
        assert governor.stats()["quota_count"] == 1
        assert not stored_upload.path.exists()
        assert len(relay.registry) == 0
