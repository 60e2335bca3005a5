"""Contains a reader class dedicated to loading DAQ raw data HDF5 files."""

import threading

import h5py
import numpy as np

from daqreader.data.ids import SourceID, geo_id_subdetector_code, to_record_id
from daqreader.data.record import RawFragment, RawRecordHeader, Record
from daqreader.errors import (
    DAQFileError,
    DatasetNotFoundError,
    FileOpenError,
    GroupNotFoundError,
    RecordNotFoundError,
    RecordTypeMismatchError,
)
from daqreader.utils.enums import Subdetector, Subsystem, enum_factory
from daqreader.utils.logger import logger

from .base import ReaderBase
from .cache import RecordCache
from .layout import initialize_layout
from .source_id import SourceIDHandler

__all__ = ["HDF5RawDataReader"]

TRIGGER_RECORD = "TriggerRecord"
TIME_SLICE = "TimeSlice"


class HDF5RawDataReader(ReaderBase):
    """Class which reads DAQ records stored in HDF5 files.

    This class inherits from the :class:`ReaderBase` class. It opens one raw
    data file (read-only) and gives structured access to the records it
    contains. The files must be structured as follows:
      - Top-level attributes describing the file layout (`filelayout_params`,
        `filelayout_version`) and the record type (`record_type`)
      - One top-level group per record, named `<prefix><number>[.<sequence>]`
      - Within each record group, one header dataset and one dataset per
        fragment

    The per-record source ID indexes are built the first time a record is
    queried and cached until the file is closed.

    Attributes
    ----------
    name : str
        Name of the reader, as requested in the configuration
    file_path : str
        Path to the file to read data from
    layout : LayoutStrategy
        Naming rules of the file
    recorded_size : int
        Size recorded by the writer of the file (0 if unknown)
    record_type : str
        Type of the records stored in the file
    file_level_geo_id_map : Mapping[SourceID, Tuple[int]]
        Read-only GeoID map declared at the file level
    cache : RecordCache
        Per-record index bundles built so far
    """

    name = "hdf5_raw"

    def __init__(
        self,
        file_key,
        header_class=RawRecordHeader,
        fragment_class=RawFragment,
    ):
        """Initalize the raw data file reader.

        Parameters
        ----------
        file_key : str
            Path to the HDF5 file to be read
        header_class : Callable[[bytes], object], default RawRecordHeader
            Builds a record header from the raw bytes of its dataset
        fragment_class : Callable[[bytes], object], default RawFragment
            Builds a fragment from the raw bytes of its dataset
        """
        # Process the file path, open the file
        self.process_file_path(file_key)
        try:
            self._file = h5py.File(self.file_path, "r")
        except OSError as err:
            raise FileOpenError(
                f"File open failure: {self.file_path} ({err})"
            ) from err

        # Store the payload constructors
        self.header_class = header_class
        self.fragment_class = fragment_class

        # Process the file-level attributes
        try:
            self.recorded_size = int(self.get_attribute("recorded_size", 0))
            self.layout = self.read_file_layout()
            self.record_type = self.get_attribute(
                "record_type", self.layout.record_name_prefix
            )
            self.check_file_layout()

            # The file-level GeoID map is built once and never modified
            self.source_id_handler = SourceIDHandler(self.layout)
            self.file_level_geo_id_map = (
                self.source_id_handler.fetch_file_level_geo_id_info(self._file)
            )

        except Exception:
            # Do not leak the file handle if the file is rejected
            self._file.close()
            raise

        # Initialize the lazy record enumeration and the record cache
        self._record_ids = None
        self._record_groups = None
        self._record_ids_lock = threading.Lock()
        self.cache = RecordCache()

        logger.info(
            "Opened %s (layout version %d, %s layout, record type: %s)",
            self.file_path,
            self.version,
            self.layout.name,
            self.record_type,
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

    def close(self):
        """Closes the file and drops every cached record index."""
        if self._file:
            self._file.close()
        self.cache.clear()

    @property
    def file(self):
        """Open HDF5 file handle.

        Returns
        -------
        h5py.File
            File handle owned by the reader
        """
        if not self._file:
            raise DAQFileError(f"The file {self.file_path} is closed.")

        return self._file

    @property
    def file_name(self):
        """Name of the file as it was opened."""
        return self.file_path

    @property
    def version(self):
        """File layout version of the file."""
        return self.layout.version

    @property
    def entry_index(self):
        """Ordered record IDs, used to access records by index."""
        return self.get_all_record_ids()

    def get_attribute(self, name, default=None):
        """Returns a top-level attribute of the file.

        Parameters
        ----------
        name : str
            Name of the attribute
        default : object, optional
            Value returned if the attribute does not exist

        Returns
        -------
        object
            Value of the attribute (strings are decoded)
        """
        if name not in self.file.attrs:
            return default

        value = self.file.attrs[name]
        if isinstance(value, bytes):
            value = value.decode()
        elif isinstance(value, np.generic):
            value = value.item()

        return value

    def read_file_layout(self):
        """Builds the layout rules of the file from its attributes.

        Returns
        -------
        LayoutStrategy
            Legacy or indexed layout rules
        """
        return initialize_layout(
            self.get_attribute("filelayout_params"),
            self.get_attribute("filelayout_version", 0),
        )

    def check_file_layout(self):
        """Checks that the record type of the file matches its layout."""
        if not self.layout.supports_source_ids:
            return

        if "record_type" not in self.file.attrs:
            raise DAQFileError(
                f"Missing `record_type` attribute in {self.file_path}, "
                f"required for layout version {self.version}."
            )

        if self.record_type != self.layout.record_name_prefix:
            raise RecordTypeMismatchError(
                self.layout.record_name_prefix, self.record_type
            )

    def check_record_type(self, record_type):
        """Checks that the file contains records of the requested type.

        Parameters
        ----------
        record_type : str
            Requested record type (e.g. `TriggerRecord` or `TimeSlice`)
        """
        self.layout.check_record_type(record_type, self.record_type)

    def check_record_id(self, record_id):
        """Checks that a record exists in the file.

        Parameters
        ----------
        record_id : Union[RecordID, tuple, int]
            Record ID

        Returns
        -------
        RecordID
            Record ID, cast to its tuple type
        """
        record_id = to_record_id(record_id)
        if record_id not in self.get_all_record_ids():
            raise RecordNotFoundError(record_id)

        return record_id

    def get(self, idx):
        """Returns a specific record in the file.

        Parameters
        ----------
        idx : int
            Integer entry ID to access

        Returns
        -------
        Record
            Record header and fragments
        """
        return self.get_record(self.entry_index[idx])

    def get_dataset_paths(self, top_level_group_name=""):
        """Returns the paths of every dataset under a group.

        Parameters
        ----------
        top_level_group_name : str, default ""
            Path of the group to explore (the whole file if empty)

        Returns
        -------
        List[str]
            Absolute paths of the datasets, recursively
        """
        if not top_level_group_name:
            top_level_group_name = "/"

        parent_group = self.file.get(top_level_group_name)
        if not isinstance(parent_group, h5py.Group):
            raise GroupNotFoundError(f"Invalid HDF5 group: {top_level_group_name}")

        path_list = []
        self._explore_subgroup(parent_group, top_level_group_name, path_list)

        return path_list

    @classmethod
    def _explore_subgroup(cls, parent_group, relative_path, path_list):
        """Recursively appends the paths of the datasets under a group."""
        relative_path = relative_path.rstrip("/")
        for child_name, child in parent_group.items():
            full_path = f"{relative_path}/{child_name}"
            if isinstance(child, h5py.Dataset):
                path_list.append(full_path)
            elif isinstance(child, h5py.Group):
                cls._explore_subgroup(child, full_path, path_list)

    def get_all_record_ids(self):
        """Returns every record ID in the file.

        The top-level groups are only scanned once. The name of the group
        each record was found in is kept, so that later lookups do not
        depend on how the number and sequence were formatted.

        Returns
        -------
        Tuple[RecordID]
            Ordered record IDs
        """
        if self._record_ids is not None:
            return self._record_ids

        with self._record_ids_lock:
            if self._record_ids is None:
                record_groups = {}
                for name in sorted(self.file.keys()):
                    record_id = self.layout.parse_record_group_name(name)
                    if record_id is None:
                        continue
                    if record_id in record_groups:
                        logger.warning(
                            "Record %s found in both %s and %s, keeping the first",
                            record_id,
                            record_groups[record_id],
                            name,
                        )
                        continue
                    record_groups[record_id] = name

                self._record_groups = record_groups
                self._record_ids = tuple(sorted(record_groups))
                logger.debug("Found %d record(s)", len(self._record_ids))

        return self._record_ids

    def record_group_name(self, record_id):
        """Returns the name of the top-level group of a record.

        Parameters
        ----------
        record_id : RecordID
            Record ID

        Returns
        -------
        str
            Name of the group the record was enumerated from, or the name
            the layout formats for it if it was never enumerated
        """
        self.get_all_record_ids()
        name = self._record_groups.get(record_id)
        if name is None:
            name = self.layout.record_group_name(*record_id)

        return name

    def get_all_record_numbers(self):
        """Returns every record number in the file.

        Returns
        -------
        Set[int]
            Record numbers
        """
        logger.warning(
            "Deprecated usage, get_all_record_numbers(). Use "
            "get_all_record_ids(), which returns (number, sequence) pairs."
        )
        return {record_id.number for record_id in self.get_all_record_ids()}

    def get_all_trigger_record_ids(self):
        """Returns every trigger record ID in the file."""
        self.check_record_type(TRIGGER_RECORD)
        return self.get_all_record_ids()

    def get_all_trigger_record_numbers(self):
        """Returns every trigger record number in the file."""
        self.check_record_type(TRIGGER_RECORD)
        return self.get_all_record_numbers()

    def get_all_timeslice_ids(self):
        """Returns every time slice ID in the file."""
        self.check_record_type(TIME_SLICE)
        return self.get_all_record_ids()

    def get_all_timeslice_numbers(self):
        """Returns every time slice number in the file."""
        self.check_record_type(TIME_SLICE)
        return self.get_all_record_numbers()

    def get_record_bundle(self, record_id):
        """Returns the source ID indexes of a record, building them if needed.

        Parameters
        ----------
        record_id : Union[RecordID, tuple, int]
            Record ID

        Returns
        -------
        RecordIndexBundle
            Index bundle of the record
        """
        self.layout.check_source_id_access()
        record_id = self.check_record_id(record_id)

        return self.cache.get_or_build(record_id, self._build_record_bundle)

    def _build_record_bundle(self, record_id):
        """Builds the index bundle of a record from the file content."""
        return self.source_id_handler.build_record_bundle(
            self.file,
            record_id,
            self.file_level_geo_id_map,
            group_name=self.record_group_name(record_id),
        )

    def get_record_header_dataset_paths(self):
        """Returns the path of the header dataset of every record.

        Returns
        -------
        List[str]
            Absolute dataset paths
        """
        return [
            self.get_record_header_dataset_path(record_id)
            for record_id in self.get_all_record_ids()
        ]

    def get_trigger_record_header_dataset_paths(self):
        """Returns the path of every trigger record header dataset."""
        self.check_record_type(TRIGGER_RECORD)
        return self.get_record_header_dataset_paths()

    def get_timeslice_header_dataset_paths(self):
        """Returns the path of every time slice header dataset."""
        self.check_record_type(TIME_SLICE)
        return self.get_record_header_dataset_paths()

    def get_record_header_dataset_path(self, record_id):
        """Returns the path of the header dataset of a record.

        Parameters
        ----------
        record_id : Union[RecordID, tuple, int]
            Record ID

        Returns
        -------
        str
            Absolute dataset path
        """
        record_id = self.check_record_id(record_id)
        return self.layout.record_header_dataset_path(self, record_id)

    def get_trigger_record_header_dataset_path(self, record_id):
        """Returns the path of the header dataset of a trigger record."""
        self.check_record_type(TRIGGER_RECORD)
        return self.get_record_header_dataset_path(record_id)

    def get_timeslice_header_dataset_path(self, record_id):
        """Returns the path of the header dataset of a time slice."""
        self.check_record_type(TIME_SLICE)
        return self.get_record_header_dataset_path(record_id)

    def get_all_fragment_dataset_paths(self):
        """Returns the path of every dataset which is not a record header.

        Returns
        -------
        List[str]
            Absolute dataset paths
        """
        return [
            path
            for path in self.get_dataset_paths()
            if not self.layout.is_header_path(path)
        ]

    def get_fragment_dataset_paths(
        self, record_id=None, subsystem=None, fragment_type=None
    ):
        """Returns the fragment dataset paths of one or all records.

        Parameters
        ----------
        record_id : Union[RecordID, tuple, int], optional
            Record ID. If not specified, returns the paths of all records
        subsystem : Union[Subsystem, str], optional
            Only return fragments of this subsystem
        fragment_type : Union[FragmentType, str], optional
            Only return fragments of this type (indexed layouts only)

        Returns
        -------
        List[str]
            Absolute dataset paths
        """
        if record_id is None:
            record_ids = self.get_all_record_ids()
        else:
            record_ids = [self.check_record_id(record_id)]

        frag_paths = []
        for rid in record_ids:
            frag_paths.extend(
                self.layout.fragment_dataset_paths(
                    self, rid, subsystem=subsystem, fragment_type=fragment_type
                )
            )

        return frag_paths

    def get_source_ids(self, record_id):
        """Returns every source ID in a record, header included."""
        return self.get_record_bundle(record_id).source_ids

    def get_fragment_source_ids(self, record_id):
        """Returns every fragment source ID in a record."""
        return self.get_record_bundle(record_id).fragment_ids

    def get_record_header_source_id(self, record_id):
        """Returns the source ID of the header of a record."""
        return self.get_record_bundle(record_id).header_id

    def get_source_ids_for_subsystem(self, record_id, subsystem):
        """Returns the source IDs of a record which belong to a subsystem.

        Parameters
        ----------
        record_id : Union[RecordID, tuple, int]
            Record ID
        subsystem : Union[Subsystem, str]
            Subsystem

        Returns
        -------
        FrozenSet[SourceID]
            Source IDs (empty if the subsystem is not present)
        """
        subsystem = enum_factory("subsystem", subsystem)
        bundle = self.get_record_bundle(record_id)
        return bundle.subsystem_map.get(subsystem, frozenset())

    def get_source_ids_for_fragment_type(self, record_id, fragment_type):
        """Returns the source IDs of a record which produced a fragment type.

        Parameters
        ----------
        record_id : Union[RecordID, tuple, int]
            Record ID
        fragment_type : Union[FragmentType, str]
            Fragment type

        Returns
        -------
        FrozenSet[SourceID]
            Source IDs (empty if the fragment type is not present)
        """
        fragment_type = enum_factory("fragment_type", fragment_type)
        bundle = self.get_record_bundle(record_id)
        return bundle.fragment_type_map.get(fragment_type, frozenset())

    def get_source_ids_for_subdetector(self, record_id, subdetector):
        """Returns the source IDs of a record which belong to a subdetector.

        Parameters
        ----------
        record_id : Union[RecordID, tuple, int]
            Record ID
        subdetector : Union[Subdetector, str]
            Subdetector

        Returns
        -------
        FrozenSet[SourceID]
            Source IDs (empty if the subdetector is not present)
        """
        subdetector = enum_factory("subdetector", subdetector)
        bundle = self.get_record_bundle(record_id)
        return bundle.subdetector_map.get(subdetector, frozenset())

    def get_all_geo_ids(self):
        """Returns every GeoID declared at the file level.

        Returns
        -------
        Set[int]
            GeoIDs
        """
        return {g for geo_ids in self.file_level_geo_id_map.values() for g in geo_ids}

    def get_geo_ids(self, record_id):
        """Returns every GeoID known in a record.

        Parameters
        ----------
        record_id : Union[RecordID, tuple, int]
            Record ID

        Returns
        -------
        Set[int]
            GeoIDs
        """
        bundle = self.get_record_bundle(record_id)
        return {g for geo_ids in bundle.geo_id_map.values() for g in geo_ids}

    def get_geo_ids_for_subdetector(self, record_id, subdetector):
        """Returns the GeoIDs of a record which belong to a subdetector.

        Parameters
        ----------
        record_id : Union[RecordID, tuple, int]
            Record ID
        subdetector : Union[Subdetector, str]
            Subdetector

        Returns
        -------
        Set[int]
            GeoIDs whose low 16 bits match the subdetector code
        """
        subdetector = enum_factory(Subdetector, subdetector)
        return {
            g
            for g in self.get_geo_ids(record_id)
            if geo_id_subdetector_code(g) == subdetector.value
        }

    def get_geo_ids_for_source_id(self, record_id, source_id):
        """Returns the GeoIDs associated with a source ID in a record.

        Parameters
        ----------
        record_id : Union[RecordID, tuple, int]
            Record ID
        source_id : Union[SourceID, str]
            Source ID

        Returns
        -------
        Tuple[int]
            GeoIDs (empty if the source ID has none)
        """
        source_id = self._to_source_id(source_id)
        return self.get_record_bundle(record_id).geo_id_map.get(source_id, ())

    def get_source_id_for_geo_id(self, record_id, geo_id):
        """Returns the source ID associated with a GeoID in a record.

        Parameters
        ----------
        record_id : Union[RecordID, tuple, int]
            Record ID
        geo_id : int
            GeoID

        Returns
        -------
        SourceID
            Source ID, or `None` if no source ID is associated with the GeoID
        """
        bundle = self.get_record_bundle(record_id)
        for source_id, geo_ids in sorted(bundle.geo_id_map.items()):
            if geo_id in geo_ids:
                return source_id

        return None

    def get_dataset_raw_data(self, dataset_path):
        """Returns the raw bytes stored in a dataset.

        Parameters
        ----------
        dataset_path : str
            Path to the dataset

        Returns
        -------
        bytes
            Content of the dataset
        """
        data_set = self.file.get(dataset_path)
        if not isinstance(data_set, h5py.Dataset):
            raise DatasetNotFoundError(
                f"Invalid HDF5 dataset: {dataset_path} {self.file_path}"
            )

        data = data_set[()]
        if isinstance(data, bytes):
            return data

        return np.asarray(data).tobytes()

    def get_record_header_from_path(self, dataset_path):
        """Builds a record header from the content of a dataset.

        Parameters
        ----------
        dataset_path : str
            Path to the header dataset

        Returns
        -------
        object
            Record header, as built by the header constructor
        """
        return self.header_class(self.get_dataset_raw_data(dataset_path))

    def get_fragment_from_path(self, dataset_path):
        """Builds a fragment from the content of a dataset.

        Parameters
        ----------
        dataset_path : str
            Path to the fragment dataset

        Returns
        -------
        object
            Fragment, as built by the fragment constructor
        """
        return self.fragment_class(self.get_dataset_raw_data(dataset_path))

    def get_record_header(self, record_id):
        """Builds the header of a record, located by its source ID.

        Parameters
        ----------
        record_id : Union[RecordID, tuple, int]
            Record ID

        Returns
        -------
        object
            Record header, as built by the header constructor
        """
        bundle = self.get_record_bundle(record_id)
        return self.get_record_header_from_path(bundle.path_map[bundle.header_id])

    def get_fragment(self, record_id, source_id=None, geo_id=None):
        """Builds the fragment of a producer in a record.

        The producer is specified either by its source ID or by one of its
        GeoIDs.

        Parameters
        ----------
        record_id : Union[RecordID, tuple, int]
            Record ID
        source_id : Union[SourceID, str], optional
            Source ID of the producer
        geo_id : int, optional
            GeoID of the producer

        Returns
        -------
        object
            Fragment, as built by the fragment constructor
        """
        assert (source_id is None) ^ (
            geo_id is None
        ), "Must specify exactly one of `source_id` or `geo_id`."

        bundle = self.get_record_bundle(record_id)
        if geo_id is not None:
            source_id = self.get_source_id_for_geo_id(bundle.record_id, geo_id)
            if source_id is None:
                raise DatasetNotFoundError(
                    f"No source ID associated with GeoID {geo_id} in record "
                    f"{bundle.record_id}."
                )
        else:
            source_id = self._to_source_id(source_id)

        if source_id not in bundle.path_map:
            raise DatasetNotFoundError(
                f"No dataset for source ID {source_id} in record {bundle.record_id}."
            )

        return self.get_fragment_from_path(bundle.path_map[source_id])

    def get_record(self, record_id):
        """Builds a record header and all of its fragments.

        Parameters
        ----------
        record_id : Union[RecordID, tuple, int]
            Record ID

        Returns
        -------
        Record
            Record header and fragments
        """
        record_id = self.check_record_id(record_id)
        header = self.get_record_header_from_path(
            self.get_record_header_dataset_path(record_id)
        )
        record = Record(header=header, record_type=self.record_type)
        for frag_path in self.get_fragment_dataset_paths(record_id):
            record.add_fragment(self.get_fragment_from_path(frag_path))

        return record

    def get_trigger_record(self, record_id):
        """Builds a trigger record header and all of its fragments."""
        self.check_record_type(TRIGGER_RECORD)
        return self.get_record(record_id)

    def get_timeslice(self, record_id):
        """Builds a time slice header and all of its fragments."""
        self.check_record_type(TIME_SLICE)
        return self.get_record(record_id)

    @staticmethod
    def _to_source_id(source_id):
        """Casts a source ID provided as a string or a (subsystem, id) pair."""
        if isinstance(source_id, SourceID):
            return source_id
        if isinstance(source_id, str):
            return SourceID.from_string(source_id)

        subsystem, sid = source_id
        return SourceID(enum_factory(Subsystem, subsystem), sid)
