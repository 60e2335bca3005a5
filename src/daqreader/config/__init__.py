"""Configuration loading.

Main Entry Points
-----------------
load_config : Load a YAML configuration file
load_config_string : Load a YAML configuration string
"""

from .errors import (
    ConfigCycleError,
    ConfigError,
    ConfigIncludeError,
    ConfigPathError,
    ConfigTypeError,
)
from .load import load_config, load_config_string, resolve_config_path
from .operations import apply_overrides

__all__ = [
    "load_config",
    "load_config_string",
    "resolve_config_path",
    "apply_overrides",
    "ConfigError",
    "ConfigIncludeError",
    "ConfigCycleError",
    "ConfigPathError",
    "ConfigTypeError",
]
