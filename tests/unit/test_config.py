"""
Unit tests for the configuration manager
"""

from unittest.mock import Mock

import pytest

from sostrack.core.config import ConfigurationError, ConfigurationManager
from tests.utils import TrackTestHelper


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("SOSTRACK_DEBUG", "SOSTRACK_LOG_LEVEL", "SOSTRACK_DB_PATH",
                 "SOSTRACK_SYNC_BASE_URL", "SOSTRACK_PROVIDERS"):
        monkeypatch.delenv(name, raising=False)


class TestConfigurationManager:
    """Test layered configuration loading"""

    def test_defaults(self, temp_dir):
        manager = ConfigurationManager(str(temp_dir))
        manager.load_config()

        assert manager.get('tracking.min_time_interval') == 5.0
        assert manager.get('tracking.min_distance') == 5.0
        assert manager.get('sync.method') == 'PATCH'
        assert manager.get_provider_configs()[0]['type'] == 'gps'

    def test_local_config_overrides_default_file(self, temp_dir):
        TrackTestHelper.write_config(temp_dir, {"tracking": {"min_distance": 20.0}}, "default.yaml")
        TrackTestHelper.write_config(temp_dir, {"tracking": {"min_distance": 50.0}})

        manager = ConfigurationManager(str(temp_dir))
        manager.load_config()

        assert manager.get('tracking.min_distance') == 50.0
        # Untouched keys keep their defaults
        assert manager.get('tracking.min_time_interval') == 5.0

    def test_environment_overrides_files(self, temp_dir, monkeypatch):
        TrackTestHelper.write_config(temp_dir, {"storage": {"path": "from-file.db"}})
        monkeypatch.setenv("SOSTRACK_DB_PATH", "/var/lib/sostrack/state.db")
        monkeypatch.setenv("SOSTRACK_PROVIDERS", '[{"type": "replay", "path": "track.csv"}]')

        manager = ConfigurationManager(str(temp_dir))
        manager.load_config()

        assert manager.get('storage.path') == "/var/lib/sostrack/state.db"
        assert manager.get_provider_configs() == [{"type": "replay", "path": "track.csv"}]

    @pytest.mark.parametrize("override", [
        {"tracking": {"providers": []}},
        {"tracking": {"providers": [{"type": "wifi"}]}},
        {"tracking": {"min_distance": -1}},
        {"sync": {"base_url": "ftp://example.com"}},
        {"sync": {"max_pending_publishes": 0}},
        {"app": {"log_level": "LOUD"}},
    ])
    def test_invalid_values_rejected(self, temp_dir, override):
        TrackTestHelper.write_config(temp_dir, override)
        manager = ConfigurationManager(str(temp_dir))

        with pytest.raises(ConfigurationError):
            manager.load_config()

    def test_set_notifies_watchers(self, temp_dir):
        manager = ConfigurationManager(str(temp_dir))
        manager.load_config()
        callback = Mock()
        manager.watch('tracking.min_distance', callback)

        manager.set('tracking.min_distance', 10.0)

        callback.assert_called_once_with('tracking.min_distance', 10.0)
        assert manager.get_section('tracking')['min_distance'] == 10.0

    def test_missing_key_default(self, temp_dir):
        manager = ConfigurationManager(str(temp_dir))
        manager.load_config()

        assert manager.get('sync.nonexistent', 'fallback') == 'fallback'
