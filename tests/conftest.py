"""Pytest configuration and shared fixtures.

Keeps configuration tests independent of the developer's shell: every
variable the config layer reads is removed for the duration of a test.
"""

import os

import pytest

_CONFIG_ENV_PREFIXES = ("BOOKMARK_SYNC_", "SYNC_")
_CONFIG_ENV_NAMES = (
    "DB_PATH",
    "LOG_LEVEL",
    "LOG_FILE",
    "LOG_USE_LOGURU",
    "DB_OPERATION_TIMEOUT_SEC",
)


@pytest.fixture(autouse=True)
def _isolate_config_env(monkeypatch):
    for name in list(os.environ):
        if name.startswith(_CONFIG_ENV_PREFIXES) or name in _CONFIG_ENV_NAMES:
            monkeypatch.delenv(name, raising=False)
    yield
