"""
Configuration Management System for SOSTrack

Handles loading configuration from environment variables, config files,
and provides validation and runtime updates.
"""

import os
import json
import yaml
import logging
from typing import Any, Dict, List, Optional, Callable
from pathlib import Path
from dataclasses import dataclass
from urllib.parse import urlparse


@dataclass
class ConfigSource:
    """Configuration source definition"""
    name: str
    priority: int
    loader: Callable
    path: Optional[str] = None


class ConfigurationError(Exception):
    """Configuration-related errors"""
    pass


PROVIDER_TYPES = ('gps', 'network', 'replay')


class ConfigurationManager:
    """
    Manages tracker configuration with support for multiple sources,
    validation, and runtime updates.
    """

    def __init__(self, config_dir: str = "config"):
        self.config_dir = Path(config_dir)
        self.config: Dict[str, Any] = {}
        self.watchers: Dict[str, List[Callable]] = {}
        self.sources: List[ConfigSource] = []
        self.logger = logging.getLogger(__name__)

        # Default configuration values
        self.defaults = {
            "app": {
                "name": "SOSTrack",
                "version": "1.0.0",
                "debug": False,
                "log_level": "INFO"
            },
            "storage": {
                "path": "data/sostrack.db"
            },
            "tracking": {
                "min_time_interval": 5.0,
                "min_distance": 5.0,
                "sample_queue_size": 64,
                "providers": [
                    {"type": "gps", "port": "/dev/ttyUSB0", "baudrate": 9600}
                ]
            },
            "sync": {
                "base_url": "https://example-default-rtdb.firebaseio.com",
                "path_template": "live_locations/{user_id}.json",
                "method": "PATCH",
                "timeout": 10,
                "max_concurrent_publishes": 4,
                "max_pending_publishes": 32,
                "clear_remote_on_stop": False
            },
            "foreground": {
                "status_file": "data/sostrack.status.json",
                "heartbeat_interval": 30,
                "notification_title": "SOS Active",
                "notification_text": "Emergency tracking is active. Your location is being shared."
            },
            "logging": {
                "level": "INFO",
                "file": "logs/sostrack.log",
                "max_size": "10MB",
                "backup_count": 5,
                "console": True
            }
        }

        self._setup_sources()

    def _setup_sources(self):
        """Set up configuration sources in priority order"""
        # Environment variables (highest priority)
        self.sources.append(ConfigSource(
            name="environment",
            priority=4,
            loader=self._load_from_env
        ))

        local_config_path = str(self.config_dir / "config.yaml")
        self.sources.append(ConfigSource(
            name="local_config",
            priority=3,
            loader=lambda: self._load_from_file(local_config_path),
            path=local_config_path
        ))

        default_config_path = str(self.config_dir / "default.yaml")
        self.sources.append(ConfigSource(
            name="default_config",
            priority=2,
            loader=lambda: self._load_from_file(default_config_path),
            path=default_config_path
        ))

        # Built-in defaults (lowest priority)
        self.sources.append(ConfigSource(
            name="defaults",
            priority=1,
            loader=lambda: self.defaults
        ))

    def load_config(self) -> None:
        """Load configuration from all sources"""
        self.logger.info("Loading configuration from all sources")

        merged_config = {}

        # Lowest priority first so later sources override
        for source in sorted(self.sources, key=lambda x: x.priority):
            try:
                source_config = source.loader()
                if source_config:
                    merged_config = self._deep_merge(merged_config, source_config)
                    self.logger.debug(f"Loaded configuration from {source.name}")
            except Exception as e:
                self.logger.warning(f"Failed to load config from {source.name}: {e}")

        self.config = merged_config
        self._validate_config()
        self.logger.info("Configuration loaded successfully")

    def _load_from_env(self) -> Dict[str, Any]:
        """Load configuration from environment variables"""
        config = {}

        env_mappings = {
            "SOSTRACK_DEBUG": "app.debug",
            "SOSTRACK_LOG_LEVEL": "app.log_level",
            "SOSTRACK_DB_PATH": "storage.path",
            "SOSTRACK_SYNC_BASE_URL": "sync.base_url",
            "SOSTRACK_PROVIDERS": "tracking.providers"
        }

        for env_var, config_key in env_mappings.items():
            value = os.getenv(env_var)
            if value is not None:
                if value.lower() in ('true', 'false'):
                    value = value.lower() == 'true'
                elif value.isdigit():
                    value = int(value)
                elif config_key == "tracking.providers":
                    # Parse JSON array for providers
                    try:
                        value = json.loads(value)
                    except json.JSONDecodeError:
                        self.logger.warning(f"Invalid JSON in {env_var}: {value}")
                        continue

                self._set_nested_value(config, config_key, value)

        return config

    def _load_from_file(self, file_path: str) -> Dict[str, Any]:
        """Load configuration from YAML or JSON file"""
        path = Path(file_path)

        if not path.exists():
            return {}

        try:
            with open(path, 'r') as f:
                if path.suffix.lower() in ['.yaml', '.yml']:
                    return yaml.safe_load(f) or {}
                elif path.suffix.lower() == '.json':
                    return json.load(f)
                else:
                    self.logger.warning(f"Unsupported config file format: {path}")
                    return {}
        except Exception as e:
            self.logger.error(f"Error loading config file {path}: {e}")
            return {}

    def _deep_merge(self, base: Dict, override: Dict) -> Dict:
        """Deep merge two dictionaries"""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def _set_nested_value(self, config: Dict, key_path: str, value: Any) -> None:
        """Set a nested configuration value using dot notation"""
        keys = key_path.split('.')
        current = config

        for key in keys[:-1]:
            if key not in current:
                current[key] = {}
            current = current[key]

        current[keys[-1]] = value

    def _validate_config(self) -> None:
        """Validate configuration values"""
        errors = []

        required_sections = ['app', 'storage', 'tracking', 'sync']
        for section in required_sections:
            if section not in self.config:
                errors.append(f"Missing required configuration section: {section}")

        for key in ('tracking.min_time_interval', 'tracking.min_distance'):
            value = self.get(key)
            if not isinstance(value, (int, float)) or value < 0:
                errors.append(f"Invalid value for {key}: {value}")

        for key in ('sync.max_concurrent_publishes', 'sync.max_pending_publishes',
                    'tracking.sample_queue_size'):
            value = self.get(key)
            if not isinstance(value, int) or value < 1:
                errors.append(f"Invalid value for {key}: {value}")

        base_url = self.get('sync.base_url', '')
        if urlparse(str(base_url)).scheme not in ('http', 'https'):
            errors.append(f"Invalid sync base URL: {base_url}")

        providers = self.get('tracking.providers', [])
        if not isinstance(providers, list) or not providers:
            errors.append("At least one position provider must be configured")
        else:
            for provider in providers:
                provider_type = provider.get('type') if isinstance(provider, dict) else None
                if provider_type not in PROVIDER_TYPES:
                    errors.append(f"Unknown provider type: {provider_type}")

        log_level = self.get('app.log_level', 'INFO')
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if str(log_level).upper() not in valid_levels:
            errors.append(f"Invalid log level: {log_level}")

        if errors:
            raise ConfigurationError(f"Configuration validation failed: {'; '.join(errors)}")

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value using dot notation"""
        keys = key.split('.')
        current = self.config

        try:
            for k in keys:
                current = current[k]
            return current
        except (KeyError, TypeError):
            return default

    def set(self, key: str, value: Any) -> None:
        """Set configuration value using dot notation"""
        self._set_nested_value(self.config, key, value)

        # Notify watchers
        if key in self.watchers:
            for callback in self.watchers[key]:
                try:
                    callback(key, value)
                except Exception as e:
                    self.logger.error(f"Error in config watcher for {key}: {e}")

    def watch(self, key: str, callback: Callable[[str, Any], None]) -> None:
        """Watch for configuration changes"""
        if key not in self.watchers:
            self.watchers[key] = []
        self.watchers[key].append(callback)

    def get_section(self, section: str) -> Dict[str, Any]:
        """Get entire configuration section"""
        return self.get(section, {})

    def get_provider_configs(self) -> List[Dict[str, Any]]:
        """Get position provider configurations"""
        return self.get('tracking.providers', [])
