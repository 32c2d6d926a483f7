# ftrace_collector/utils/config.py - Configuration management
"""
Configuration management for the collector.
Loads and validates configuration from YAML files.
"""

import copy
import yaml
from pathlib import Path
from typing import Dict, Any, Optional
import logging


class Config:
    """
    Configuration manager for the collector.

    Loads configuration from YAML files and provides access to settings.
    Command-line flags are applied on top with set().
    """

    DEFAULT_CONFIG = {
        'kernel': {
            'trace_root': '/sys/kernel/debug/tracing',
            'devices_root': '/sys/devices',
        },
        'tracer': {
            'buffer_size_kb': 4096,
            'events': [
                'sched:sched_switch',
                'sched:sched_wakeup',
                'sched:sched_wakeup_new',
                'sched:sched_migrate_task',
            ],
        },
        'capture': {
            'poll_interval_ms': 100,
            'drain_workers': 1,
        },
    }

    def __init__(self, config_file: Optional[str] = None):
        """
        Initialize configuration.

        Args:
            config_file: Path to YAML configuration file
        """
        self.logger = logging.getLogger(__name__)
        self.config = copy.deepcopy(self.DEFAULT_CONFIG)

        if config_file:
            self.load_from_file(config_file)

    def load_from_file(self, config_file: str):
        """
        Load configuration from YAML file.

        Args:
            config_file: Path to YAML file

        Raises:
            ValueError: If the file is not a YAML mapping
        """
        config_path = Path(config_file)

        if not config_path.exists():
            self.logger.warning(f"Config file not found: {config_file}, using defaults")
            return

        try:
            with open(config_path, 'r') as f:
                loaded_config = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            self.logger.error(f"Failed to load config: {e}")
            raise ValueError(f"Invalid config file {config_file}: {e}") from e

        if loaded_config is None:
            return
        if not isinstance(loaded_config, dict):
            raise ValueError(f"Config file {config_file} must contain a mapping")

        # Merge with defaults
        self._merge_config(self.config, loaded_config)
        self.logger.info(f"Loaded configuration from {config_file}")

    def _merge_config(self, base: Dict, override: Dict):
        """
        Recursively merge configuration dictionaries.

        Args:
            base: Base configuration dictionary
            override: Override configuration dictionary
        """
        for key, value in override.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._merge_config(base[key], value)
            else:
                base[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value by dot-notation key.

        Args:
            key: Configuration key (e.g., 'tracer.buffer_size_kb')
            default: Default value if key not found

        Returns:
            Configuration value
        """
        keys = key.split('.')
        value = self.config

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def set(self, key: str, value: Any):
        """
        Set configuration value by dot-notation key.

        Args:
            key: Configuration key (e.g., 'tracer.buffer_size_kb')
            value: Value to set
        """
        keys = key.split('.')
        config = self.config

        for k in keys[:-1]:
            if k not in config:
                config[k] = {}
            config = config[k]

        config[keys[-1]] = value

    def save_to_file(self, config_file: str):
        """
        Save the current configuration to a YAML file that can be passed
        back with --config.

        Args:
            config_file: Path to output YAML file

        Raises:
            OSError: If the file cannot be written
        """
        config_path = Path(config_file)
        config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(config_path, 'w') as f:
            yaml.safe_dump(self.config, f, default_flow_style=False, sort_keys=False)

        self.logger.info(f"Saved configuration to {config_file}")
