"""Typed exceptions raised while loading reader configurations."""

from typing import List


class ConfigError(Exception):
    """Base exception for all configuration errors."""


class ConfigIncludeError(ConfigError):
    """Raised when a configuration file (or one it includes) cannot be loaded."""


class ConfigCycleError(ConfigError):
    """Raised when configuration files include each other in a loop."""

    def __init__(self, cycle_path: List[str]):
        """Initialize with the chain of files which forms the loop.

        Parameters
        ----------
        cycle_path : List[str]
            Included files, from the first one back to the repeated one
        """
        self.cycle_path = cycle_path
        super().__init__("Include loop: " + " -> ".join(cycle_path))


class ConfigPathError(ConfigError):
    """Raised when a dot-separated key path does not exist or is malformed."""

    def __init__(self, key_path: str, reason: str):
        """Initialize with the offending key path.

        Parameters
        ----------
        key_path : str
            Dot-separated key path (e.g. `io.reader.file_key`)
        reason : str
            Why the key path cannot be used
        """
        self.key_path = key_path
        super().__init__(f"Invalid key path '{key_path}': {reason}")


class ConfigTypeError(ConfigError):
    """Raised when a key path goes through a value which is not a mapping."""
