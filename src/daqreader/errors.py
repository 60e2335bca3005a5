"""Typed exceptions for DAQ raw data file reading.

Every failure surfaced by the reader derives from :class:`DAQFileError`, so
callers can catch a single category. The descriptive message carries the
details; there are no numeric error codes.
"""

__all__ = [
    "DAQFileError",
    "FileOpenError",
    "LayoutError",
    "RecordTypeMismatchError",
    "RecordNotFoundError",
    "GroupNotFoundError",
    "DatasetNotFoundError",
    "HeaderNotFoundError",
    "VersionIncompatibilityError",
]


class DAQFileError(Exception):
    """Base exception for all raw data file errors."""


class FileOpenError(DAQFileError):
    """Raised when the container file cannot be opened."""


class LayoutError(DAQFileError):
    """Raised when the file layout descriptor is missing or unparseable."""


class RecordTypeMismatchError(DAQFileError):
    """Raised when the requested record type does not match the file."""

    def __init__(self, requested: str, expected: str):
        """Initialize with the two conflicting record types.

        Parameters
        ----------
        requested : str
            Record type requested by the caller
        expected : str
            Record type stored in the file
        """
        self.requested = requested
        self.expected = expected
        super().__init__(
            f"Wrong record type requested: {requested} (file contains {expected})"
        )


class RecordNotFoundError(DAQFileError):
    """Raised when a record ID is not present in the file."""

    def __init__(self, record_id):
        """Initialize with the missing record ID.

        Parameters
        ----------
        record_id : RecordID
            (number, sequence) pair which could not be found
        """
        self.record_id = record_id
        super().__init__(
            f"Record ID not found: number={record_id[0]}, sequence={record_id[1]}"
        )


class GroupNotFoundError(DAQFileError):
    """Raised when an expected HDF5 group is missing."""


class DatasetNotFoundError(DAQFileError):
    """Raised when an expected HDF5 dataset is missing."""


class HeaderNotFoundError(DatasetNotFoundError):
    """Raised when a record does not contain exactly one header dataset."""


class VersionIncompatibilityError(DAQFileError):
    """Raised when an operation is not supported by the file layout version."""

    def __init__(self, version: int, min_version: int):
        """Initialize with the file version and the minimum supported one.

        Parameters
        ----------
        version : int
            File layout version of the file
        min_version : int
            Minimum file layout version supporting the operation
        """
        self.version = version
        self.min_version = min_version
        super().__init__(
            f"Incompatible file layout version: {version} (operation "
            f"requires version >= {min_version})"
        )
