"""Builds objects from the configuration blocks which describe them.

A block names the class to build (under `name`) and lists its arguments,
either at the top level of the block or under `args`/`kwargs`:

.. code-block:: yaml

    reader:
      name: hdf5_raw
      file_key: /data/run_000123.hdf5

.. code-block:: yaml

    reader:
      name: HDF5RawDataReader
      args: [/data/run_000123.hdf5]
"""

from copy import deepcopy

from .logger import logger

__all__ = ["module_dict", "instantiate"]


def module_dict(module, pattern=None):
    """Lists the classes a module exposes, under every name they answer to.

    Each public class defined in (a submodule of) `module` is registered
    under its class name and, if it defines one, its short `name`.

    Parameters
    ----------
    module : module
        Module which lists its public objects in `__all__`
    pattern : str, optional
        Only register classes whose name contains this pattern

    Returns
    -------
    Dict[str, type]
        Map from each accepted name onto its class
    """
    classes = {}
    for obj_name in getattr(module, "__all__", dir(module)):
        obj = getattr(module, obj_name)
        if obj_name.startswith("_") or not isinstance(obj, type):
            continue
        if not obj.__module__.startswith(module.__name__):
            continue
        if pattern is not None and pattern not in obj.__name__:
            continue

        classes[obj_name] = obj
        short_name = getattr(obj, "name", "")
        if short_name:
            classes[short_name] = obj

    return classes


def instantiate(cls_dict, cfg, alt_name=None, **kwargs):
    """Builds an object from its configuration block.

    Parameters
    ----------
    cls_dict : Dict[str, type]
        Map from accepted names onto classes (see :func:`module_dict`)
    cfg : Union[str, dict]
        Configuration block, or simply a class name if the class takes
        no argument
    alt_name : str, optional
        Alternative key under which the class name may be provided
    **kwargs : dict, optional
        Extra keyword arguments, added to those of the block

    Returns
    -------
    object
        Instantiated object
    """
    config = {"name": cfg} if isinstance(cfg, str) else deepcopy(cfg)

    # Fetch the class name
    name_key = "name"
    if alt_name is not None and alt_name in config:
        assert "name" not in config, f"Specify one of `name` or `{alt_name}`, not both."
        name_key = alt_name
    assert name_key in config, f"The block {cfg} does not name a class."

    class_name = config.pop(name_key)
    if class_name not in cls_dict:
        raise ValueError(
            f"Unknown class name '{class_name}'. Must be one of "
            f"{sorted(cls_dict)}."
        )

    # Everything left at the top level of the block is a keyword argument
    args = list(config.pop("args", []))
    cls_kwargs = dict(config.pop("kwargs", {}))
    for key, value in list(config.items()) + list(kwargs.items()):
        assert key not in cls_kwargs, f"Keyword argument `{key}` is provided twice."
        cls_kwargs[key] = value

    cls = cls_dict[class_name]
    try:
        return cls(*args, **cls_kwargs)

    except Exception:
        logger.error(
            "Could not build %s from args=%s, kwargs=%s",
            cls.__name__,
            args,
            cls_kwargs,
        )
        raise
