"""Configuration reader - loads the JSON config file over the defaults"""

import copy
import json
import os
from pathlib import Path
from typing import Any, Dict, Optional, TypeVar, Union

from loguru import logger

from .config_defaults import DEFAULT_CONFIG_PATH, get_default_config

T = TypeVar("T")

CONFIG_ENV_VAR = "VOSKKIT_CONFIG"


def resolve_config_path(config_path: Optional[Union[str, Path]] = None) -> Path:
    """Pick the config file: explicit path, then $VOSKKIT_CONFIG, then the default"""
    if config_path:
        return Path(config_path).expanduser()
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_CONFIG_PATH


class ConfigReader:
    """Read-only view of the merged configuration"""

    def __init__(self, config_path: Optional[Union[str, Path]] = None):
        """
        Args:
            config_path: Path of the JSON config file (see ``resolve_config_path``)
        """
        self.config_path = resolve_config_path(config_path)
        self._default_config = get_default_config()
        self._config: Dict[str, Any] = copy.deepcopy(self._default_config)

    @classmethod
    def load(cls, config_path: Optional[Union[str, Path]] = None) -> "ConfigReader":
        reader = cls(config_path)
        reader.load_config()
        return reader

    @classmethod
    def from_dict(cls, overrides: Dict[str, Any]) -> "ConfigReader":
        """Build a reader from in-memory overrides (no file access)"""
        reader = cls(DEFAULT_CONFIG_PATH)
        reader._config = reader._merge_configs(reader._default_config, overrides)
        return reader

    def load_config(self) -> bool:
        """Load the config file

        Returns:
            True if the file was read or absent; False if it was unreadable
            (defaults are used in that case)
        """
        if not self.config_path.exists():
            self._config = copy.deepcopy(self._default_config)
            logger.debug(f"No config file at {self.config_path}, using defaults")
            return True

        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                loaded_config = json.load(f)
            if not isinstance(loaded_config, dict):
                raise ValueError("top-level JSON value must be an object")
        except (OSError, ValueError) as e:
            logger.error(f"Error loading config file {self.config_path}: {e}")
            self._config = copy.deepcopy(self._default_config)
            return False

        self._config = self._merge_configs(self._default_config, loaded_config)
        logger.info(f"Loaded config from {self.config_path}")
        return True

    def get_setting(self, key: str, default: Optional[T] = None) -> T:
        """Get a setting by dotted path (e.g. ``"catalog.timeout"``)

        Args:
            key: Dotted key path
            default: Value returned when the key is missing

        Returns:
            Setting value or ``default``
        """
        value: Any = self._config
        for part in key.split("."):
            if isinstance(value, dict) and part in value:
                value = value[part]
            else:
                return default
        return value

    def get_all_settings(self) -> Dict[str, Any]:
        return copy.deepcopy(self._config)

    @property
    def models_directory(self) -> Path:
        return Path(self.get_setting("models.directory")).expanduser()

    def _merge_configs(
        self, default: Dict[str, Any], loaded: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Deep-merge ``loaded`` over ``default`` without mutating either"""
        result = copy.deepcopy(default)

        def merge_recursive(base: Dict[str, Any], update: Dict[str, Any]) -> None:
            for key, value in update.items():
                if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                    merge_recursive(base[key], value)
                else:
                    base[key] = copy.deepcopy(value)

        merge_recursive(result, loaded)
        return result
