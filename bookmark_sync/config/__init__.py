from __future__ import annotations

from .settings import AppConfig, RuntimeConfig, Settings, load_config
from .sync import (
    DEFAULT_MIRROR_ROOT_NAME,
    LAST_WRITER_WINS,
    SyncDefaultsConfig,
    SyncEngineConfig,
    SyncSettings,
)

__all__ = [
    "DEFAULT_MIRROR_ROOT_NAME",
    "LAST_WRITER_WINS",
    "AppConfig",
    "RuntimeConfig",
    "Settings",
    "SyncDefaultsConfig",
    "SyncEngineConfig",
    "SyncSettings",
    "load_config",
]
