"""Configuration loading: defaults, environment overrides and validation."""

import os
import unittest
from unittest.mock import patch

from pydantic import ValidationError

from bookmark_sync.config import (
    DEFAULT_MIRROR_ROOT_NAME,
    LAST_WRITER_WINS,
    SyncDefaultsConfig,
    SyncEngineConfig,
    SyncSettings,
    load_config,
)


class TestLoadConfig(unittest.TestCase):
    def test_defaults(self) -> None:
        config = load_config()

        assert config.runtime.log_level == "INFO"
        assert config.sync_defaults.enable_bidirectional is False
        assert config.sync_defaults.mirror_root_name == DEFAULT_MIRROR_ROOT_NAME
        assert config.sync_engine.retry_base_delay_ms == 200
        assert config.sync_engine.retry_max_delay_ms == 5000
        assert config.sync_engine.outbound_batch_size == 50
        assert config.sync_engine.outbound_batch_delay_ms == 75
        assert config.sync_engine.max_task_age_sec == 300.0

    def test_environment_overrides(self) -> None:
        env = {
            "BOOKMARK_SYNC_ENABLED": "true",
            "BOOKMARK_SYNC_DELETE_BEHAVIOR": "Archive",
            "SYNC_OUTBOUND_BATCH_SIZE": "10",
            "SYNC_OUTBOUND_RETRY_ENABLED": "off",
            "LOG_LEVEL": "debug",
            "DB_PATH": "/tmp/sync.db",
        }
        with patch.dict(os.environ, env):
            config = load_config()

        assert config.sync_defaults.enable_bidirectional is True
        assert config.sync_defaults.delete_behavior == "archive"
        assert config.sync_engine.outbound_batch_size == 10
        assert config.sync_engine.outbound_retry_enabled is False
        assert config.runtime.log_level == "DEBUG"
        assert config.runtime.db_path == "/tmp/sync.db"

    def test_overrides_win_over_environment(self) -> None:
        with patch.dict(os.environ, {"BOOKMARK_SYNC_ENABLED": "false"}):
            config = load_config(sync_defaults={"enable_bidirectional": True})

        assert config.sync_defaults.enable_bidirectional is True

    def test_invalid_delete_behavior_raises(self) -> None:
        with patch.dict(os.environ, {"BOOKMARK_SYNC_DELETE_BEHAVIOR": "shred"}):
            with self.assertRaises(RuntimeError) as ctx:
                load_config()
        assert "Configuration validation failed" in str(ctx.exception)

    def test_negative_batch_delay_raises(self) -> None:
        with patch.dict(os.environ, {"SYNC_OUTBOUND_BATCH_DELAY_MS": "-1"}):
            with self.assertRaises(RuntimeError):
                load_config()

    def test_invalid_log_level_raises(self) -> None:
        with patch.dict(os.environ, {"LOG_LEVEL": "LOUD"}):
            with self.assertRaises(RuntimeError):
                load_config()


class TestSyncDefaults(unittest.TestCase):
    def test_to_settings(self) -> None:
        defaults = SyncDefaultsConfig(
            enable_bidirectional="yes", mirror_root_name=" Mirror ", delete_behavior="archive"
        )
        settings = defaults.to_settings()

        assert settings.enable_bidirectional is True
        assert settings.mirror_root_name == "Mirror"
        assert settings.delete_behavior == "archive"
        assert settings.conflict_policy == LAST_WRITER_WINS

    def test_bad_boolean_raises(self) -> None:
        with self.assertRaises(ValidationError):
            SyncDefaultsConfig(enable_bidirectional="maybe")


class TestSyncSettings(unittest.TestCase):
    def test_defaults(self) -> None:
        settings = SyncSettings()

        assert settings.enable_bidirectional is False
        assert settings.import_folder_hierarchy is True
        assert settings.delete_behavior == "delete"

    def test_empty_mirror_root_name_raises(self) -> None:
        with self.assertRaises(ValidationError):
            SyncSettings(mirror_root_name="   ")

    def test_assignment_is_validated(self) -> None:
        settings = SyncSettings()
        with self.assertRaises(ValidationError):
            settings.delete_behavior = "shred"

    def test_unknown_conflict_policy_is_kept(self) -> None:
        settings = SyncSettings(conflict_policy="Local-Wins")
        assert settings.conflict_policy == "local-wins"


class TestSyncEngineConfig(unittest.TestCase):
    def test_zero_batch_size_raises(self) -> None:
        with self.assertRaises(ValidationError):
            SyncEngineConfig(outbound_batch_size=0)

    def test_zero_batch_delay_is_allowed(self) -> None:
        assert SyncEngineConfig(outbound_batch_delay_ms=0).outbound_batch_delay_ms == 0

    def test_is_frozen(self) -> None:
        config = SyncEngineConfig()
        with self.assertRaises(ValidationError):
            config.outbound_batch_size = 5


if __name__ == "__main__":
    unittest.main()
