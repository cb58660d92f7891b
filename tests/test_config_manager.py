"""Tests for the YAML-backed ConfigManager."""
import pytest
import yaml

from config.config_manager import DEFAULT_CONFIG, ConfigManager


class TestConfigManager:

    def test_missing_file_writes_defaults(self, tmp_path):
        path = tmp_path / "refsync" / "config.yaml"
        cm = ConfigManager(str(path))
        assert path.exists()
        assert cm.get("sync.interval_seconds") == 1.0
        assert cm.sync_interval == 1.0
        assert ".png" in cm.image_extensions

    def test_user_values_deep_merge_over_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.dump({"sync": {"interval_seconds": 5}, "preview": {"size": 64}}))
        cm = ConfigManager(str(path))
        assert cm.sync_interval == 5.0
        assert cm.get("preview.size") == 64
        assert cm.ignore_patterns == ("._*",)
        assert cm.get("sync.watch_events") is True

    def test_malformed_yaml_raises(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("sync: [unclosed")
        with pytest.raises(ValueError):
            ConfigManager(str(path))

    def test_set_persists_without_touching_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        cm = ConfigManager(str(path))
        cm.set("sync.interval_seconds", 3.5)

        assert ConfigManager(str(path)).sync_interval == 3.5
        assert DEFAULT_CONFIG["sync"]["interval_seconds"] == 1.0

    def test_non_positive_interval_rejected(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.dump({"sync": {"interval_seconds": 0}}))
        with pytest.raises(ValueError):
            ConfigManager(str(path)).sync_interval

    def test_get_default_for_missing_key(self, tmp_path):
        cm = ConfigManager(str(tmp_path / "config.yaml"))
        assert cm.get("nope.deeper", "fallback") == "fallback"
        assert cm.logging_level == "INFO"
