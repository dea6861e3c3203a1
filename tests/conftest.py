"""
Pytest configuration and fixtures for Screen Answerer tests.
"""

import os
import tempfile

# Settings are read at import time; keep test runs away from the real
# log directory and from any server-side fallback key.
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="screen-answerer-logs-"))
os.environ.pop("GEMINI_API_KEY", None)

from types import SimpleNamespace  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from screen_answerer.api.dependencies import set_dependencies  # noqa: E402
from screen_answerer.api.middleware import limiter  # noqa: E402
from screen_answerer.api.server import app  # noqa: E402
from screen_answerer.core.governor import CallGovernor  # noqa: E402
from screen_answerer.core.resilience import RetryExecutor  # noqa: E402
from screen_answerer.infrastructure.uploads import UploadStore  # noqa: E402
from tests.helpers import (  # noqa: E402
    CountingRegistry,
    FakeClock,
    RecordingSleep,
    StubInferenceClient,
    make_png_bytes,
)


@pytest.fixture
def fake_clock():
    """Manually advanced clock shared by the registry and the governor."""
    return FakeClock()


@pytest.fixture
def recorded_sleep():
    """Backoff sleep that records delays instead of waiting."""
    return RecordingSleep()


@pytest.fixture
def stub_client():
    """Upstream inference client that answers "4" unless told otherwise."""
    return StubInferenceClient()


@pytest.fixture
def png_bytes():
    return make_png_bytes()


@pytest.fixture
def upload_dir(tmp_path):
    directory = tmp_path / "uploads"
    directory.mkdir()
    return directory


@pytest.fixture
def relay(fake_clock, recorded_sleep, stub_client, upload_dir):
    """Fully wired relay components with fake time and a stub upstream."""
    return SimpleNamespace(
        clock=fake_clock,
        sleep=recorded_sleep,
        client=stub_client,
        registry=CountingRegistry(stale_threshold=300.0, clock=fake_clock),
        governor=CallGovernor(cool_down=5.0, quota_limit=50, reset_interval=60.0, clock=fake_clock),
        retry=RetryExecutor(max_retries=3, initial_delay=1.0, max_delay=10.0, sleep=recorded_sleep),
        store=UploadStore(directory=upload_dir),
        upload_dir=upload_dir,
    )


@pytest.fixture
def api_client(relay):
    """TestClient wired to the fake relay components.

    The lifespan is not entered, so the real Gemini client and background
    tasks are never created.
    """
    limiter.reset()
    set_dependencies(relay.registry, relay.governor, relay.retry, relay.client, relay.store)
    return TestClient(app)
