import os
import yaml
from typing import Dict, Any, Optional
import logging

from vaultgraph.utils.error_handler import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = os.path.join(
    os.path.dirname(os.path.dirname(os.path.abspath(__file__))),
    "config",
    "config.yaml"
)

def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        elif isinstance(value, dict):
            merged[key] = _deep_merge({}, value)
        else:
            merged[key] = value
    return merged

class ConfigHandler:
    """Configuration for one engine process.

    Packaged defaults are always loaded first; an optional user file is
    merged on top of them, section by section.
    """

    def __init__(self, config_path: Optional[str] = None):
        """Initialize the config handler."""
        self.config_path = config_path
        self._config = self.load(DEFAULT_CONFIG_PATH)
        if config_path:
            self._config = _deep_merge(self._config, self.load(config_path))

    @staticmethod
    def load(config_path: str = DEFAULT_CONFIG_PATH) -> Dict[str, Any]:
        """
        Load configuration from yaml file.

        Args:
            config_path: Path to the configuration file

        Returns:
            Dict containing configuration

        Raises:
            FileNotFoundError: If config file doesn't exist
            ConfigurationError: If config file is invalid
        """
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                config = yaml.safe_load(f) or {}
                logger.debug(f"Configuration loaded from {config_path}")
        except FileNotFoundError:
            logger.error(f"Configuration file not found: {config_path}")
            raise
        except yaml.YAMLError as e:
            logger.error(f"Error parsing configuration file: {str(e)}")
            raise ConfigurationError(f"Invalid configuration file: {config_path}",
                                     details={"reason": str(e)}) from e
        if not isinstance(config, dict):
            raise ConfigurationError(f"Configuration root must be a mapping: {config_path}")
        return config

    @classmethod
    def from_dict(cls, overrides: Dict[str, Any]) -> 'ConfigHandler':
        """Build a handler from packaged defaults plus in-memory overrides."""
        handler = cls()
        handler._config = _deep_merge(handler._config, overrides)
        return handler

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a configuration value by key.

        Args:
            key: Configuration key (dot notation supported, e.g., 'pagerank.damping')
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        value = self._config
        for part in key.split('.'):
            if not isinstance(value, dict) or part not in value:
                return default
            value = value[part]
        return value

    def get_section(self, section: str) -> Optional[Dict[str, Any]]:
        """
        Get an entire configuration section.

        Args:
            section: Name of the configuration section

        Returns:
            Dict containing section configuration or None if not found
        """
        return self._config.get(section)

    def validate_required_keys(self, required_keys: list) -> bool:
        """
        Validate that all required configuration keys exist.

        Args:
            required_keys: List of required configuration keys

        Returns:
            True if all required keys exist, False otherwise
        """
        for key in required_keys:
            if self.get(key) is None:
                logger.error(f"Missing required configuration key: {key}")
                return False
        return True

    def as_dict(self) -> Dict[str, Any]:
        """Return a copy of the merged configuration, e.g. to ship to a worker process."""
        return _deep_merge({}, self._config)
