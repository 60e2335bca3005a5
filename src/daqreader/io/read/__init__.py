"""Readers of DAQ raw data files.

- `layout`: naming/path rules of each file layout version
- `source_id`: per-record source ID index builder
- `cache`: per-record index memoization
- `hdf5`: reader of HDF5 raw data files
"""

from .hdf5 import HDF5RawDataReader
from .layout import IndexedLayout, LegacyLayout, initialize_layout

__all__ = ["HDF5RawDataReader", "IndexedLayout", "LegacyLayout", "initialize_layout"]
