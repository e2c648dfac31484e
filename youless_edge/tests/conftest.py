"""
Shared test fixtures for edge daemon tests.

Provides environment variable fixtures for EdgeSettings configuration tests
and a settings store plus recording state sink for the poll engine and
supervisor tests. All edge env vars are cleaned before each test to ensure
isolation.

CHANGELOG:
- 2026-10-18: Add settings store and recording sink fixtures
- 2026-10-18: Initial creation (STORY-001)

TODO:
- None
"""

from __future__ import annotations

from pathlib import Path

import pytest
from youless_edge.src.settings import DeviceSettings, SettingsStore
from youless_edge.tests.fakes import RecordingSync

# All EdgeSettings environment variable names, used for cleanup.
_ALL_EDGE_ENV_VARS = (
    "YOULESS_HOST",
    "YOULESS_PASSWORD",
    "POLL_INTERVAL_S",
    "FILTER_READINGS",
    "DEVICE_ID",
    "HUB_BASE_URL",
    "HUB_DEVICE_TOKEN",
    "BATCH_SIZE",
    "UPLOAD_INTERVAL_S",
    "SPOOL_PATH",
    "SETTINGS_PATH",
    "HEALTH_PATH",
    "REQUEST_TIMEOUT_S",
)


@pytest.fixture(autouse=True)
def _clean_edge_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Remove all edge env vars and isolate from .env files before each test.

    Changes working directory to tmp_path so no .env file is accidentally
    loaded by Pydantic BaseSettings.
    """
    for var in _ALL_EDGE_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture()
def env_vars_full(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Set all required and optional environment variables for EdgeSettings."""
    env = {
        "YOULESS_HOST": "192.168.1.50",
        "YOULESS_PASSWORD": "s3cret",
        "POLL_INTERVAL_S": "5",
        "FILTER_READINGS": "true",
        "DEVICE_ID": "youless-kitchen",
        "HUB_BASE_URL": "https://hub.example.com",
        "HUB_DEVICE_TOKEN": "test-device-token",
        "BATCH_SIZE": "50",
        "UPLOAD_INTERVAL_S": "15",
        "SPOOL_PATH": "/tmp/test-spool.db",
        "SETTINGS_PATH": "/tmp/test-settings.json",
        "HEALTH_PATH": "/tmp/test-health.json",
        "REQUEST_TIMEOUT_S": "2.5",
    }
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return env


@pytest.fixture()
def env_vars_required_only(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Set only the required environment variables (no optional ones)."""
    env = {
        "YOULESS_HOST": "10.0.0.77",
        "HUB_BASE_URL": "https://hub.example.com",
        "HUB_DEVICE_TOKEN": "device-token-xyz",
    }
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return env


@pytest.fixture()
def settings_store(tmp_path: Path) -> SettingsStore:
    """A SettingsStore with reading filtering enabled, backed by tmp_path."""
    store = SettingsStore(
        tmp_path / "settings.json",
        DeviceSettings(host="192.168.1.50", polling_interval_s=0.01, filter_readings=True),
    )
    store.save()
    return store


@pytest.fixture()
def recording_sync() -> RecordingSync:
    return RecordingSync()
