"""Top-level module of the daqreader source code."""

from .data.ids import RecordID, SourceID
from .errors import DAQFileError
from .io import HDF5RawDataReader, reader_factory
from .utils.enums import FragmentType, Subdetector, Subsystem
from .version import __version__
