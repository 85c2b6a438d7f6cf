"""Tests for settings loading and derived URLs."""

import pytest

from livetranslate.core.config import Settings, get_settings


def test_defaults(monkeypatch):
    monkeypatch.delenv("BACKEND_URL", raising=False)
    settings = Settings(_env_file=None)
    assert settings.backend_url == "http://localhost:5000"
    assert settings.reconnect_attempts == 5
    assert settings.reconnect_delay == 1.0
    assert settings.chunk_duration_seconds == 2.0
    assert settings.encode_window_bytes == 8192
    assert settings.sample_rate == 16000


@pytest.mark.parametrize(
    "backend,expected",
    [
        ("http://localhost:5000", "ws://localhost:5000/ws"),
        ("https://translate.example.com/", "wss://translate.example.com/ws"),
    ],
)
def test_ws_url(backend, expected):
    assert Settings(_env_file=None, backend_url=backend).ws_url == expected


def test_env_override(monkeypatch):
    monkeypatch.setenv("BACKEND_URL", "http://gpu-box:8000")
    monkeypatch.setenv("RECONNECT_ATTEMPTS", "3")
    settings = get_settings()
    assert settings.backend_url == "http://gpu-box:8000"
    assert settings.reconnect_attempts == 3
    assert get_settings() is settings
