"""Configuration package"""

from .config_defaults import APP_HOME, DEFAULT_CONFIG_PATH, get_default_config
from .config_reader import CONFIG_ENV_VAR, ConfigReader, resolve_config_path

__all__ = [
    "APP_HOME",
    "DEFAULT_CONFIG_PATH",
    "CONFIG_ENV_VAR",
    "ConfigReader",
    "get_default_config",
    "resolve_config_path",
]
