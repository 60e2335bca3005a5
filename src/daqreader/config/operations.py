"""Helpers to combine reader configurations and edit them in place.

Configuration blocks are nested dictionaries. Individual entries are
addressed with dot-separated key paths, e.g. `io.reader.file_key`.
"""

from copy import deepcopy
from typing import Any, Dict, List, Union

import yaml

from .errors import ConfigPathError, ConfigTypeError

__all__ = ["deep_merge", "parse_value", "set_nested_value", "apply_overrides"]

# Separator between the keys of a key path
KEY_SEPARATOR = "."


def deep_merge(base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
    """Merges two configurations, the second one taking precedence.

    Nested mappings present in both are merged key by key, anything else
    in `update` replaces the value found in `base`. Neither input is
    modified.

    Parameters
    ----------
    base : Dict[str, Any]
        Base configuration
    update : Dict[str, Any]
        Configuration layered on top of the base

    Returns
    -------
    Dict[str, Any]
        Merged configuration
    """
    merged = deepcopy(base)
    for key, value in update.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = deepcopy(value)

    return merged


def parse_value(value: Any) -> Any:
    """Interprets a value provided as text (e.g. on the command line).

    Parameters
    ----------
    value : Any
        Raw value. Non-empty strings are parsed as YAML scalars/sequences

    Returns
    -------
    Any
        Parsed value (the raw value if it is not valid YAML)
    """
    if not isinstance(value, str) or not value.strip():
        return value

    try:
        return yaml.safe_load(value)
    except yaml.YAMLError:
        return value


def _parent_block(config, key_path, create):
    """Walks a key path down to the block which holds its last key."""
    keys = key_path.split(KEY_SEPARATOR)
    if not all(keys):
        raise ConfigPathError(key_path, "empty key")

    block = config
    for depth, key in enumerate(keys[:-1]):
        if key not in block:
            if not create:
                missing = KEY_SEPARATOR.join(keys[: depth + 1])
                raise ConfigPathError(key_path, f"'{missing}' does not exist")
            block[key] = {}

        block = block[key]
        if not isinstance(block, dict):
            raise ConfigTypeError(
                f"Cannot follow '{key_path}': '{key}' holds a "
                f"{type(block).__name__}, not a mapping"
            )

    return block, keys[-1]


def set_nested_value(
    config: Dict[str, Any], key_path: str, value: Any, delete: bool = False
) -> Dict[str, Any]:
    """Sets (or deletes) the entry a key path points to.

    Missing intermediate blocks are created when setting a value.

    Parameters
    ----------
    config : Dict[str, Any]
        Configuration, modified in place
    key_path : str
        Dot-separated key path (e.g. `io.reader.file_key`)
    value : Any
        New value (ignored when deleting)
    delete : bool, default False
        Remove the entry instead of setting it

    Returns
    -------
    Dict[str, Any]
        Updated configuration

    Raises
    ------
    ConfigPathError
        If the entry to delete does not exist
    ConfigTypeError
        If the key path goes through a value which is not a mapping
    """
    block, key = _parent_block(config, key_path, create=not delete)
    if not delete:
        block[key] = value
    elif key in block:
        del block[key]
    else:
        raise ConfigPathError(key_path, f"'{key}' does not exist")

    return config


def apply_overrides(
    config: Dict[str, Any], overrides: Union[Dict[str, Any], List[str]]
) -> Dict[str, Any]:
    """Applies key path overrides to a configuration.

    Parameters
    ----------
    config : Dict[str, Any]
        Configuration, modified in place
    overrides : Union[Dict[str, Any], List[str]]
        Either a map from key path onto value, where `None` deletes the
        entry, or `key.path=value` strings as given to `--set`

    Returns
    -------
    Dict[str, Any]
        Updated configuration
    """
    if not isinstance(overrides, dict):
        parsed = {}
        for override in overrides:
            key_path, sep, value = override.partition("=")
            if not sep:
                raise ConfigPathError(override, "expected 'key.path=value'")
            parsed[key_path.strip()] = parse_value(value)
        overrides = parsed

    for key_path, value in overrides.items():
        set_nested_value(config, key_path, value, delete=value is None)

    return config
