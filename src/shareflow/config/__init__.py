"""
Configuration management.
"""

from shareflow.config.defaults import DEFAULT_CONFIG, default_config
from shareflow.config.loader import CONFIG_FILENAME, Config, load_config
from shareflow.config.resolver import resolve_config

__all__ = [
    "CONFIG_FILENAME",
    "Config",
    "DEFAULT_CONFIG",
    "default_config",
    "load_config",
    "resolve_config",
]
