"""
Configuration management for streamstate.

Configuration is layered, later layers winning:
- config/default.yaml shipped with the project
- an optional user YAML file
- environment variables (see ENV_OVERRIDES)
"""

import copy
import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import yaml

from streamstate.core.errors import StreamStateError

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent.parent / "config" / "default.yaml"


class ConfigError(StreamStateError):
    """Raised when a configuration file cannot be loaded."""
    pass


def _data_dir_keys(value: str) -> List[Tuple[str, Any]]:
    return [
        ("transport.log.directory", str(Path(value) / "streams")),
        ("transport.blob.directory", str(Path(value) / "snapshots")),
    ]


def _single(key: str) -> Callable[[str], List[Tuple[str, Any]]]:
    return lambda value: [(key, value)]


# Environment variable -> function producing (key, value) overrides
ENV_OVERRIDES: Dict[str, Callable[[str], List[Tuple[str, Any]]]] = {
    "LOG_LEVEL": _single("logging.level"),
    "DATA_DIR": _data_dir_keys,
    "SNAPSHOT_BUCKET_TEMPLATE": _single("transport.blob.bucket_template"),
    "SNAPSHOT_TEMP_DIR": _single("snapshot.temp_dir"),
    "STREAMSTATE_ENCRYPTION_KEY": _single("codec.encryption_key"),
    "AWS_ENDPOINT_URL": _single("transport.aws.endpoint_url"),
}


class Config:
    """Dot-notation configuration store."""

    def __init__(self, config_file: Optional[str] = None):
        """
        Initialize configuration.

        Args:
            config_file: Path to a YAML file merged over the defaults

        Raises:
            ConfigError: If a configuration file is unreadable or not a mapping
        """
        self._config: Dict[str, Any] = {}

        if DEFAULT_CONFIG_PATH.exists():
            self.merge(self._read_yaml(DEFAULT_CONFIG_PATH))

        if config_file:
            self.merge(self._read_yaml(Path(config_file)))

        self._apply_env_overrides()

    @staticmethod
    def _read_yaml(path: Path) -> Dict[str, Any]:
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to load configuration {path}: {e}") from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(f"Configuration {path} must be a mapping, got {type(data).__name__}")
        return data

    def merge(self, overrides: Dict[str, Any]) -> None:
        """Deep merge a dictionary over the current configuration."""
        self._config = _deep_merge(self._config, overrides)

    def _apply_env_overrides(self) -> None:
        for name, to_keys in ENV_OVERRIDES.items():
            value = os.getenv(name)
            if value:
                for key, key_value in to_keys(value):
                    self.set(key, key_value)

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation.

        Args:
            key: Configuration key in dot notation (e.g., "snapshot.keep")
            default: Returned if any part of the key is missing

        Returns:
            Configuration value
        """
        value: Any = self._config
        for part in key.split("."):
            if not isinstance(value, dict) or part not in value:
                return default
            value = value[part]
        return value

    def set(self, key: str, value: Any) -> None:
        """Set configuration value using dot notation, creating sections as needed."""
        *sections, last = key.split(".")
        node = self._config
        for section in sections:
            if not isinstance(node.get(section), dict):
                node[section] = {}
            node = node[section]
        node[last] = value

    def to_dict(self) -> Dict[str, Any]:
        return copy.deepcopy(self._config)


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    result = dict(base)
    for key, value in override.items():
        if isinstance(result.get(key), dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


_config: Optional[Config] = None


def get_config(config_file: Optional[str] = None) -> Config:
    """
    Get the process-wide configuration instance.

    Args:
        config_file: Optional configuration file path (first call only)

    Returns:
        Configuration instance
    """
    global _config
    if _config is None:
        _config = Config(config_file)
    return _config


def reset_config() -> None:
    """Reset global configuration (mainly for testing)."""
    global _config
    _config = None
