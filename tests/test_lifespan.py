"""
Tests for application startup/shutdown and the server entry point.
"""

from __future__ import annotations

import socket

import pytest
from fastapi.testclient import TestClient

from screen_answerer.__main__ import find_available_port
from screen_answerer.api import dependencies
from screen_answerer.api.server import app
from screen_answerer.core.config import settings


class TestLifespan:
    def test_startup_wires_dependencies_and_creates_upload_dir(self, monkeypatch, tmp_path):
        """Entering the app builds every component from settings."""
        upload_dir = tmp_path / "scratch"
        monkeypatch.setattr(settings.upload, "directory", upload_dir)

        with TestClient(app) as client:
            assert all(dependencies.validate_dependencies().values())
            assert upload_dir.is_dir()
            response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["governor"]["quota_limit"] == settings.governor.quota_limit


class TestFindAvailablePort:
    def test_skips_port_in_use(self):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as busy:
            busy.bind(("127.0.0.1", 0))
            busy.listen()
            taken = busy.getsockname()[1]

            port = find_available_port("127.0.0.1", taken, attempts=5)

        assert port is not None
        assert port != taken
        assert taken < port < taken + 5

    def test_returns_none_when_no_attempts(self):
        assert find_available_port("127.0.0.1", 3000, attempts=0) is None

    def test_other_bind_errors_are_raised(self):
        with pytest.raises(OSError):
            find_available_port("203.0.113.254", 3000, attempts=1)
