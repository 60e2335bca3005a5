"""Turns the file layout descriptor of a raw data file into naming/path rules.

Two families of layouts exist:
- Legacy layouts (`filelayout_version < 2`) locate the record header and the
  fragments of each subsystem with deterministic path formulas.
- Indexed layouts (`filelayout_version >= 2`) name each dataset after the
  source ID which produced it; paths are discovered per record.

The family is selected once, when the file is opened, by
:func:`initialize_layout`. Call sites never test the version themselves.
"""

from dataclasses import dataclass, field, fields
from typing import List, Optional

import yaml

from daqreader.data.ids import RecordID
from daqreader.errors import (
    GroupNotFoundError,
    LayoutError,
    RecordTypeMismatchError,
    VersionIncompatibilityError,
)
from daqreader.utils.enums import Subsystem, enum_factory, enum_label
from daqreader.utils.logger import logger

__all__ = [
    "FileLayoutParams",
    "PathParams",
    "LayoutStrategy",
    "LegacyLayout",
    "IndexedLayout",
    "initialize_layout",
    "parse_layout_params",
    "INDEXED_LAYOUT_VERSION",
    "ATTRIBUTE_INDEX_VERSION",
]

# First file layout version where datasets are named after their source ID
INDEXED_LAYOUT_VERSION = 2

# First file layout version which may store the source ID maps as attributes
ATTRIBUTE_INDEX_VERSION = 3

# Separator between the record number and the sequence number
SEQUENCE_SEPARATOR = "."


def _is_decimal(text):
    """Checks that a string only holds the ASCII digits `int` can parse."""
    return text.isascii() and text.isdigit()


@dataclass
class PathParams:
    """Location of the fragments of one subsystem in legacy layouts.

    Attributes
    ----------
    detector_group_type : str
        Subsystem label the parameters apply to
    detector_group_name : str
        Name of the group holding the fragments within a record group
    element_name_prefix : str
        Prefix of each fragment dataset name
    digits_for_element_number : int
        Number of digits used to format the element number
    """

    detector_group_type: str = ""
    detector_group_name: str = ""
    element_name_prefix: str = ""
    digits_for_element_number: int = 0


@dataclass
class FileLayoutParams:
    """Parameters stored in the `filelayout_params` attribute of a file.

    Attributes
    ----------
    record_name_prefix : str
        Prefix of the top-level record group names (also the record type)
    digits_for_record_number : int
        Number of digits used to format the record number
    digits_for_sequence_number : int
        Number of digits used to format the sequence number (0 if the
        sequence number is not part of the group names)
    record_header_dataset_name : str
        Name of the record header dataset
    raw_data_group_name : str
        Name of the group holding the datasets within a record group
    path_param_list : List[PathParams]
        Per-subsystem fragment group parameters
    """

    record_name_prefix: str = ""
    digits_for_record_number: int = 0
    digits_for_sequence_number: int = 0
    record_header_dataset_name: str = ""
    raw_data_group_name: str = ""
    path_param_list: List[PathParams] = field(default_factory=list)

    @classmethod
    def from_dict(cls, cfg):
        """Builds the layout parameters from a parsed descriptor.

        Parameters
        ----------
        cfg : dict
            Parsed layout descriptor

        Returns
        -------
        FileLayoutParams
            Layout parameters
        """
        if not isinstance(cfg, dict):
            raise LayoutError(
                f"The file layout descriptor must be a mapping, got {type(cfg)}."
            )

        known = {f.name for f in fields(cls)}
        unknown = set(cfg) - known
        if unknown:
            logger.debug("Ignoring unknown file layout parameters: %s", unknown)

        try:
            kwargs = {k: v for k, v in cfg.items() if k in known}
            kwargs["path_param_list"] = [
                PathParams(**param) for param in cfg.get("path_param_list") or []
            ]
            params = cls(**kwargs)
            for key in ("digits_for_record_number", "digits_for_sequence_number"):
                setattr(params, key, int(getattr(params, key)))

        except (TypeError, ValueError) as err:
            raise LayoutError(f"Invalid file layout descriptor: {err}") from err

        return params


def parse_layout_params(descriptor):
    """Parses the serialized file layout descriptor.

    Parameters
    ----------
    descriptor : Union[str, bytes], optional
        Serialized descriptor (JSON or YAML)

    Returns
    -------
    FileLayoutParams
        Layout parameters

    Raises
    ------
    LayoutError
        If the descriptor is missing or cannot be parsed
    """
    if descriptor is None:
        raise LayoutError("Missing file layout descriptor.")

    if isinstance(descriptor, bytes):
        descriptor = descriptor.decode()

    try:
        cfg = yaml.safe_load(descriptor)
    except yaml.YAMLError as err:
        raise LayoutError(f"Could not parse the file layout descriptor: {err}") from err

    return FileLayoutParams.from_dict(cfg)


class LayoutStrategy:
    """Naming rules shared by all file layout versions.

    Attributes
    ----------
    params : FileLayoutParams
        Layout parameters
    version : int
        File layout version
    """

    name = ""

    def __init__(self, params: FileLayoutParams, version: int):
        """Initialize the layout rules.

        Parameters
        ----------
        params : FileLayoutParams
            Layout parameters
        version : int
            File layout version
        """
        self.params = params
        self.version = int(version)

    @property
    def record_name_prefix(self):
        """Prefix of the record group names."""
        return self.params.record_name_prefix

    @property
    def record_header_dataset_name(self):
        """Name of the record header dataset."""
        return self.params.record_header_dataset_name

    @property
    def supports_source_ids(self):
        """Whether datasets can be addressed by source ID."""
        return False

    @property
    def uses_attribute_index(self):
        """Whether record groups may carry their source ID maps as attributes."""
        return False

    def record_group_name(self, number: int, sequence: int = 0) -> str:
        """Builds the name of the top-level group of a record.

        Parameters
        ----------
        number : int
            Record number
        sequence : int, default 0
            Sequence number

        Returns
        -------
        str
            Name of the record group
        """
        name = self.record_name_prefix + str(number).zfill(
            self.params.digits_for_record_number
        )
        if self.params.digits_for_sequence_number > 0:
            name += SEQUENCE_SEPARATOR + str(sequence).zfill(
                self.params.digits_for_sequence_number
            )

        return name

    def parse_record_group_name(self, name: str) -> Optional[RecordID]:
        """Extracts the record ID from a top-level group name.

        Parameters
        ----------
        name : str
            Name of a top-level entry of the file

        Returns
        -------
        RecordID
            Record ID, or `None` if the name does not belong to a record
        """
        if not name.startswith(self.record_name_prefix):
            return None

        number, _, sequence = name[len(self.record_name_prefix) :].partition(
            SEQUENCE_SEPARATOR
        )
        if not _is_decimal(number) or (sequence and not _is_decimal(sequence)):
            logger.warning("Skipping unparseable record group name: %s", name)
            return None

        return RecordID(int(number), int(sequence) if sequence else 0)

    def is_header_path(self, path: str) -> bool:
        """Checks whether a dataset path points at a record header.

        Parameters
        ----------
        path : str
            Dataset path

        Returns
        -------
        bool
            `True` if the path contains the record header dataset name
        """
        header_name = self.record_header_dataset_name
        return bool(header_name) and header_name in path

    def check_record_type(self, requested: str, record_type: str):
        """Checks that the requested record type is the one in the file.

        Parameters
        ----------
        requested : str
            Requested record type
        record_type : str
            Record type of the file
        """
        raise NotImplementedError

    def check_source_id_access(self):
        """Checks that datasets can be addressed by source ID."""
        raise NotImplementedError

    def record_header_dataset_path(self, reader, record_id: RecordID) -> str:
        """Returns the path of the header dataset of a record.

        Parameters
        ----------
        reader : HDF5RawDataReader
            Reader which owns the file
        record_id : RecordID
            Record ID

        Returns
        -------
        str
            Absolute dataset path
        """
        raise NotImplementedError

    def fragment_dataset_paths(
        self, reader, record_id: RecordID, subsystem=None, fragment_type=None
    ) -> List[str]:
        """Returns the fragment dataset paths of a record.

        Parameters
        ----------
        reader : HDF5RawDataReader
            Reader which owns the file
        record_id : RecordID
            Record ID
        subsystem : Subsystem, optional
            Only return fragments of this subsystem
        fragment_type : FragmentType, optional
            Only return fragments of this type

        Returns
        -------
        List[str]
            Absolute dataset paths
        """
        raise NotImplementedError


class LegacyLayout(LayoutStrategy):
    """Layout of files written with `filelayout_version < 2`.

    Record headers and fragment groups live at fixed paths derived from the
    record number, the sequence number and the subsystem.
    """

    name = "legacy"

    def check_record_type(self, requested, record_type):
        # Legacy files do not reliably store their record type
        return

    def check_source_id_access(self):
        raise VersionIncompatibilityError(self.version, INDEXED_LAYOUT_VERSION)

    def record_header_path(
        self, number: int, sequence: int = 0, group_name: Optional[str] = None
    ) -> str:
        """Returns the path of the record header dataset.

        Parameters
        ----------
        number : int
            Record number
        sequence : int, default 0
            Sequence number
        group_name : str, optional
            Name of the record group, if known (formatted otherwise)

        Returns
        -------
        str
            Absolute dataset path
        """
        group = group_name or self.record_group_name(number, sequence)
        return f"/{group}/{self.record_header_dataset_name}"

    def fragment_type_path(
        self, number: int, sequence: int, subsystem, group_name: Optional[str] = None
    ) -> str:
        """Returns the path of the group holding the fragments of a subsystem.

        Parameters
        ----------
        number : int
            Record number
        sequence : int
            Sequence number
        subsystem : Union[Subsystem, str]
            Subsystem of the fragments
        group_name : str, optional
            Name of the record group, if known (formatted otherwise)

        Returns
        -------
        str
            Absolute group path
        """
        subsystem = enum_factory(Subsystem, subsystem)
        label = enum_label(subsystem)
        for param in self.params.path_param_list:
            if param.detector_group_type == label:
                group = group_name or self.record_group_name(number, sequence)
                return f"/{group}/{param.detector_group_name}"

        raise LayoutError(f"No fragment group defined for subsystem {label}.")

    def record_header_dataset_path(self, reader, record_id):
        return self.record_header_path(
            *record_id, group_name=reader.record_group_name(record_id)
        )

    def fragment_dataset_paths(
        self, reader, record_id, subsystem=None, fragment_type=None
    ):
        if fragment_type is not None:
            # Fragment types are only known from source ID indexed layouts
            raise VersionIncompatibilityError(self.version, INDEXED_LAYOUT_VERSION)

        group_name = reader.record_group_name(record_id)
        if subsystem is not None:
            group_path = self.fragment_type_path(
                *record_id, subsystem, group_name=group_name
            )
            try:
                return reader.get_dataset_paths(group_path)
            except GroupNotFoundError:
                return []

        group_path = "/" + group_name
        return [
            path
            for path in reader.get_dataset_paths(group_path)
            if not self.is_header_path(path)
        ]


class IndexedLayout(LayoutStrategy):
    """Layout of files written with `filelayout_version >= 2`.

    Each dataset is named after the source ID which produced it; the map
    from source IDs to paths is discovered record by record.
    """

    name = "indexed"

    @property
    def supports_source_ids(self):
        return True

    @property
    def uses_attribute_index(self):
        return self.version >= ATTRIBUTE_INDEX_VERSION

    def check_record_type(self, requested, record_type):
        if requested != record_type:
            raise RecordTypeMismatchError(requested, record_type)

    def check_source_id_access(self):
        return

    def record_header_dataset_path(self, reader, record_id):
        bundle = reader.get_record_bundle(record_id)
        return bundle.path_map[bundle.header_id]

    def fragment_dataset_paths(
        self, reader, record_id, subsystem=None, fragment_type=None
    ):
        bundle = reader.get_record_bundle(record_id)
        source_ids = bundle.fragment_ids
        if subsystem is not None:
            subsystem = enum_factory("subsystem", subsystem)
            source_ids = source_ids & bundle.subsystem_map.get(subsystem, frozenset())
        if fragment_type is not None:
            fragment_type = enum_factory("fragment_type", fragment_type)
            source_ids = source_ids & bundle.fragment_type_map.get(
                fragment_type, frozenset()
            )

        return [bundle.path_map[sid] for sid in sorted(source_ids)]


def initialize_layout(descriptor, version=0) -> LayoutStrategy:
    """Builds the layout rules of a file from its layout attributes.

    If the descriptor is missing or cannot be parsed, falls back to an empty,
    version 0 layout. This is reported but not fatal.

    Parameters
    ----------
    descriptor : Union[str, bytes], optional
        Serialized file layout descriptor
    version : int, default 0
        File layout version

    Returns
    -------
    LayoutStrategy
        Legacy or indexed layout rules
    """
    try:
        params = parse_layout_params(descriptor)
        version = int(version) if version is not None else 0
    except (LayoutError, TypeError, ValueError) as err:
        logger.info("Missing file layout, falling back to version 0 (%s)", err)
        params, version = FileLayoutParams(), 0

    if version < INDEXED_LAYOUT_VERSION:
        return LegacyLayout(params, version)

    return IndexedLayout(params, version)
