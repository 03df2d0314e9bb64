"""
Unit tests for Config Manager
"""

import pytest
import sys
import os
import tempfile
import time
import yaml
sys.path.insert(0, 'src')

from admission_control.core.config_manager import ConfigManager
from admission_control.core.config import AdmissionConfig, validate_admission_config
from admission_control.core.types import ConfigurationException


def write_config(data) -> str:
    with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
        yaml.dump(data, f)
        return f.name


class TestConfigManager:
    """Test suite for Hot-Reload Config Manager."""

    def test_initialization_with_missing_file(self):
        """Test initialization with non-existent file."""
        config = ConfigManager(config_path="nonexistent.yaml")

        assert config._config == {}
        assert config.get_admission_config() == AdmissionConfig()

    def test_load_valid_config(self):
        """Test loading valid configuration."""
        temp_path = write_config({
            'capital': {'hard_reserve_pct': 0.40, 'max_total_deploy_cap': 0.55},
            'reversal': {'cooldown_seconds': 90},
        })

        try:
            config = ConfigManager(config_path=temp_path)

            assert config.get('capital.hard_reserve_pct') == 0.40
            assert config.get('reversal.cooldown_seconds') == 90
            typed = config.get_admission_config()
            assert typed.capital.hard_reserve_pct == 0.40
            assert typed.capital.min_position_usd == 400.0
        finally:
            os.unlink(temp_path)

    def test_get_default(self):
        """Test default values for missing keys."""
        temp_path = write_config({'capital': {}})

        try:
            config = ConfigManager(config_path=temp_path)

            assert config.get('capital.nonexistent', default=42) == 42
            assert config.get('missing.section.key', default='x') == 'x'
        finally:
            os.unlink(temp_path)

    def test_invalid_config_rejected(self):
        """Test weights that do not sum to 1 are rejected."""
        temp_path = write_config({
            'confidence': {'weights': {'exit_suppression': 0.9}},
        })

        try:
            config = ConfigManager(config_path=temp_path)

            assert config._config == {}
            assert config.get_admission_config() == AdmissionConfig()
        finally:
            os.unlink(temp_path)

    def test_unknown_key_rejected(self):
        """Test unknown keys fail validation instead of raising."""
        temp_path = write_config({'capital': {'not_a_setting': 1}})

        try:
            config = ConfigManager(config_path=temp_path)

            assert config._config == {}
        finally:
            os.unlink(temp_path)

    def test_reload_and_callback(self):
        """Test reload on file change notifies callbacks."""
        temp_path = write_config({'capital': {'min_position_usd': 400.0}})
        changes = []

        try:
            config = ConfigManager(config_path=temp_path)
            config.register_callback(lambda old, new: changes.append((old, new)))

            with open(temp_path, 'w') as f:
                yaml.dump({'capital': {'min_position_usd': 500.0}}, f)
            stat = os.stat(temp_path)
            os.utime(temp_path, (stat.st_atime, stat.st_mtime + 10))

            assert config.reload_config()
            assert config.get('capital.min_position_usd') == 500.0
            assert len(changes) == 1
            assert changes[0][0]['capital']['min_position_usd'] == 400.0
        finally:
            os.unlink(temp_path)

    def test_no_reload_without_change(self):
        """Test an unchanged file is not reloaded."""
        temp_path = write_config({'capital': {}})

        try:
            config = ConfigManager(config_path=temp_path)

            assert not config.reload_config()
        finally:
            os.unlink(temp_path)

    def test_reload_stat_error_keeps_config(self, monkeypatch):
        """Test a file vanishing mid-reload is logged and the old config kept."""
        temp_path = write_config({'capital': {'min_position_usd': 450.0}})

        def vanished(path):
            raise FileNotFoundError(path)

        try:
            config = ConfigManager(config_path=temp_path)
            monkeypatch.setattr(os.path, 'getmtime', vanished)

            assert not config.reload_config()
            assert config.get('capital.min_position_usd') == 450.0
            assert config.get_admission_config().capital.min_position_usd == 450.0
        finally:
            os.unlink(temp_path)

    def test_watcher_survives_stat_error(self, monkeypatch):
        """Test the watcher thread keeps polling after a file stat error."""
        temp_path = write_config({'capital': {}})
        calls = []
        real_getmtime = os.path.getmtime

        def flaky(path):
            calls.append(path)
            if len(calls) == 1:
                raise FileNotFoundError(path)
            return real_getmtime(path)

        try:
            config = ConfigManager(config_path=temp_path, poll_interval=0.05)
            monkeypatch.setattr(os.path, 'getmtime', flaky)

            config.start_watcher()
            time.sleep(0.3)
            alive = config._watcher_thread.is_alive()
            config.stop_watcher()

            assert alive
            assert len(calls) > 1
        finally:
            os.unlink(temp_path)

    def test_shipped_config_is_valid(self):
        """Test the repository config file passes validation."""
        config = ConfigManager(config_path="config/admission_config.yaml")

        if not config.config_path.exists():
            pytest.skip("run from the repository root")

        assert config.get('capital.hard_reserve_pct') == 0.35
        assert config.get_admission_config().confidence.window_sec == 2700

    def test_get_state(self):
        """Test monitoring state."""
        config = ConfigManager(config_path="nonexistent.yaml", poll_interval=3)

        state = config.get_state()

        assert state['config_exists'] is False
        assert state['watcher_running'] is False
        assert state['poll_interval_sec'] == 3


class TestAdmissionConfig:
    """Test typed configuration."""

    def test_defaults_valid(self):
        """Test default configuration has no violations."""
        assert validate_admission_config(AdmissionConfig()) == []

    def test_from_dict_nested(self):
        """Test nested overrides keep sibling defaults."""
        config = AdmissionConfig.from_dict({'sizing': {'weights': {'velocity': 0.10}}})

        assert config.sizing.weights.migration_confidence == 0.35
        assert config.sizing.min_regime_confidence == 0.20

    def test_from_dict_unknown_section(self):
        """Test unknown sections raise."""
        with pytest.raises(ConfigurationException):
            AdmissionConfig.from_dict({'bogus': {}})

    def test_validate_raises(self):
        """Test validate raises on reserve breach."""
        config = AdmissionConfig.from_dict({'capital': {'max_total_deploy_cap': 0.80}})

        with pytest.raises(ConfigurationException):
            config.validate()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
