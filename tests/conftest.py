"""Pytest configuration and fixtures for confkeeper tests."""

import json
import logging
from pathlib import Path
from typing import Any

import pytest

from confkeeper.core.settings import Settings
from confkeeper.lifecycle.backup import BackupStore

VALID_CONFIG: dict[str, Any] = {
    "version": "1.0.0",
    "server": {"port": 3000, "nodeEnv": "production"},
    "mikrotik": {"host": "192.168.88.1", "port": 8728, "username": "admin"},
    "llm": {"provider": "claude", "claude": {"model": "claude-3", "apiKey": "sk-ant-test"}},
}


@pytest.fixture(autouse=True)
def reset_root_logging():
    """Remove handlers installed by CLI commands so tests don't leak logging state."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    root.handlers = handlers
    root.setLevel(level)


@pytest.fixture
def valid_config() -> dict[str, Any]:
    """Fresh copy of a minimal well-formed configuration document."""
    return json.loads(json.dumps(VALID_CONFIG))


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings rooted at tmp_path with fast retry timings.

    Usage:
        def test_something(settings):
            settings.config_path.write_text("{}")
    """
    return Settings(root=tmp_path, lock_attempts=2, lock_retry_delay=0.01, io_retry_delay=0.0)


@pytest.fixture
def store(settings: Settings) -> BackupStore:
    """BackupStore over the tmp_path settings."""
    return BackupStore(settings)


@pytest.fixture
def live_config(settings: Settings, valid_config: dict[str, Any]) -> bytes:
    """Write valid_config as the live document and return its exact bytes."""
    content = (json.dumps(valid_config, indent=2) + "\n").encode("utf-8")
    settings.config_path.write_bytes(content)
    return content
