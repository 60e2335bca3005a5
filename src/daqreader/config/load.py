"""Main configuration loading functions.

Configurations are YAML files with two optional directives:
- `include`: file (or list of files) loaded first, then merged under the
  content of the including file
- `override`: map from dot-separated key paths onto values, applied last

.. code-block:: yaml

    include: base.yaml

    io:
      reader:
        file_key: run_000123.hdf5

    override:
      io.reader.name: hdf5_raw
"""

import os
from typing import Any, Dict, Optional

import yaml

from .errors import ConfigCycleError, ConfigError, ConfigIncludeError
from .operations import apply_overrides, deep_merge

__all__ = ["load_config", "load_config_string", "resolve_config_path"]

# Environment variable listing directories to search for included files
CONFIG_PATH_ENV = "DAQREADER_CONFIG_PATH"

INCLUDE_KEY = "include"
OVERRIDE_KEY = "override"


def resolve_config_path(filename, current_dir, search_paths=None):
    """Finds the file an `include` directive refers to.

    Absolute paths must exist as given. Relative ones are looked up in the
    directory of the including file first, then in each directory listed
    in `DAQREADER_CONFIG_PATH`. In each location, the name is tried bare,
    then with a `.yaml` and a `.yml` suffix.

    Parameters
    ----------
    filename : str
        Name of the included file, as written in the configuration
    current_dir : str
        Directory which holds the including file
    search_paths : List[str], optional
        Additional directories to look into. If not specified, they are
        read from the environment

    Returns
    -------
    str
        Absolute path to the included file

    Raises
    ------
    ConfigIncludeError
        If none of the candidate paths is an existing file
    """
    if os.path.isabs(filename):
        if not os.path.isfile(filename):
            raise ConfigIncludeError(f"Included file does not exist: {filename}")
        return filename

    if search_paths is None:
        search_paths = os.environ.get(CONFIG_PATH_ENV, "").split(os.pathsep)

    directories = [current_dir] + [d for d in search_paths if d]
    for directory in directories:
        for suffix in ("", ".yaml", ".yml"):
            candidate = os.path.join(directory, filename + suffix)
            if os.path.isfile(candidate):
                return os.path.abspath(candidate)

    raise ConfigIncludeError(
        f"Included file '{filename}' not found in any of {directories}"
    )


def _read_yaml(source, label):
    """Parses one YAML document, given as an open file or as a string."""
    try:
        content = yaml.safe_load(source)
    except yaml.YAMLError as exc:
        raise ConfigIncludeError(f"Cannot parse {label}: {exc}") from exc

    if content is None:
        return {}
    if not isinstance(content, dict):
        raise ConfigError(f"The top level of {label} must be a mapping")

    return content


def _build_config(content, root_dir, chain):
    """Resolves the directives of a parsed configuration.

    Parameters
    ----------
    content : Dict[str, Any]
        Parsed configuration, directives included (consumed)
    root_dir : str
        Directory against which relative includes are resolved
    chain : List[str]
        Files being loaded, outermost first, used to detect include loops

    Returns
    -------
    Dict[str, Any]
        Configuration, with its includes merged in and its overrides applied
    """
    includes = content.pop(INCLUDE_KEY, [])
    if isinstance(includes, str):
        includes = [includes]
    overrides = content.pop(OVERRIDE_KEY, {})

    config = {}
    for name in includes:
        path = resolve_config_path(name, root_dir)
        config = deep_merge(config, _load_file(path, chain))

    return apply_overrides(deep_merge(config, content), overrides)


def _load_file(cfg_path, chain=()):
    """Loads a configuration file and, recursively, the files it includes."""
    cfg_path = os.path.abspath(cfg_path)
    if cfg_path in chain:
        raise ConfigCycleError([*chain, cfg_path])

    if not os.path.isfile(cfg_path):
        raise ConfigIncludeError(f"Configuration file does not exist: {cfg_path}")
    with open(cfg_path, "r", encoding="utf-8") as cfg_file:
        content = _read_yaml(cfg_file, cfg_path)

    return _build_config(content, os.path.dirname(cfg_path), [*chain, cfg_path])


def load_config(cfg_path: str, overrides=None) -> Dict[str, Any]:
    """Loads a configuration file.

    Parameters
    ----------
    cfg_path : str
        Path to the YAML configuration file
    overrides : Union[Dict[str, Any], List[str]], optional
        Key path overrides, applied after everything else

    Returns
    -------
    Dict[str, Any]
        Configuration dictionary
    """
    config = _load_file(cfg_path)
    if overrides:
        config = apply_overrides(config, overrides)

    return config


def load_config_string(
    config_string: str, root_dir: Optional[str] = None, overrides=None
) -> Dict[str, Any]:
    """Loads a configuration provided as a YAML string.

    Parameters
    ----------
    config_string : str
        YAML configuration
    root_dir : str, optional
        Directory used to resolve relative includes (current directory if
        not specified)
    overrides : Union[Dict[str, Any], List[str]], optional
        Key path overrides, applied after everything else

    Returns
    -------
    Dict[str, Any]
        Configuration dictionary
    """
    content = _read_yaml(config_string, "the configuration string")
    config = _build_config(content, root_dir or os.getcwd(), [])
    if overrides:
        config = apply_overrides(config, overrides)

    return config
