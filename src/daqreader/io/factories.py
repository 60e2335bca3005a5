"""Functions that instantiate IO tools from configuration blocks."""

from daqreader.utils.factory import instantiate, module_dict

from . import read

READER_DICT = module_dict(read, pattern="Reader")

__all__ = ["reader_factory"]


def reader_factory(reader_cfg, **kwargs):
    """Instantiates reader based on type specified in configuration under
    `io.reader.name`. The name must match the name of a class under
    `daqreader.io.read`.

    Parameters
    ----------
    reader_cfg : dict
        Reader configuration dictionary
    **kwargs : dict, optional
        Additional parameters to pass to the reader

    Returns
    -------
    object
        Reader object

    Note
    ----
    Currently the choice is limited to `HDF5RawDataReader` only.
    """
    # Initialize reader
    return instantiate(READER_DICT, reader_cfg, **kwargs)
