"""Builds the source ID indexes of the records stored in a raw data file.

For each record, the handler discovers which source IDs exist, which dataset
each of them maps to, which one is the record header and how they group by
subsystem, fragment type, subdetector and GeoID. Everything is gathered into
a single, immutable :class:`RecordIndexBundle`.

Two discovery rules are supported:
- Naming convention: every dataset under a record group is named
  `<Subsystem>_0x<hexadecimal id>_<type>`, where `<type>` is either the
  fragment type label or the record header dataset name;
- Attribute index (`filelayout_version >= 3`): the record group carries the
  maps as serialized attributes. When present, they take precedence.

GeoIDs are declared at the file level (`source_id_geo_id_map` attribute of
the file) and may be extended at the record level (same attribute on the
record group). Record-level entries override file-level entries of the same
source ID.
"""

import re
from collections import defaultdict
from types import MappingProxyType

import h5py
import yaml

from daqreader.data.bundle import RecordIndexBundle
from daqreader.data.ids import SourceID, geo_id_subdetector_code
from daqreader.errors import DAQFileError, GroupNotFoundError, HeaderNotFoundError
from daqreader.utils.enums import FragmentType, Subdetector, enum_factory
from daqreader.utils.logger import logger

__all__ = ["SourceIDHandler"]

# Pattern of a dataset named after the source ID which produced it
DATASET_NAME_PATTERN = re.compile(
    r"^(?P<subsystem>\w+?)_0x(?P<id>[0-9a-fA-F]+)_(?P<type>\w+)$"
)

# Names of the attributes which hold serialized source ID maps
GEO_ID_MAP_ATTR = "source_id_geo_id_map"
PATH_MAP_ATTR = "source_id_path_map"
FRAGMENT_TYPE_MAP_ATTR = "fragment_type_source_id_map"
SUBDETECTOR_MAP_ATTR = "subdetector_source_id_map"
HEADER_SOURCE_ID_ATTR = "record_header_source_id"


def load_attribute(obj, key):
    """Loads a serialized (JSON or YAML) attribute of an HDF5 object.

    Parameters
    ----------
    obj : Union[h5py.File, h5py.Group]
        Object which holds the attribute
    key : str
        Name of the attribute

    Returns
    -------
    object
        Parsed attribute, or `None` if it does not exist
    """
    if key not in obj.attrs:
        return None

    value = obj.attrs[key]
    if isinstance(value, bytes):
        value = value.decode()

    try:
        return yaml.safe_load(value)
    except yaml.YAMLError as err:
        raise DAQFileError(
            f"Could not parse the `{key}` attribute of {obj.name}: {err}"
        ) from err


def freeze_map(source_id_map):
    """Turns a map of source ID sets into an immutable mapping.

    Parameters
    ----------
    source_id_map : Dict[object, Set[SourceID]]
        Map from a key onto a set of source IDs

    Returns
    -------
    MappingProxyType
        Read-only map from a key onto a frozen set of source IDs
    """
    return MappingProxyType(
        {key: frozenset(ids) for key, ids in source_id_map.items() if ids}
    )


class SourceIDHandler:
    """Builds the per-record index bundles of a raw data file.

    Attributes
    ----------
    layout : LayoutStrategy
        Naming rules of the file
    """

    def __init__(self, layout):
        """Initialize the handler.

        Parameters
        ----------
        layout : LayoutStrategy
            Naming rules of the file
        """
        self.layout = layout

    def parse_geo_id_map(self, cfg, where):
        """Parses a serialized source ID to GeoID map.

        Parameters
        ----------
        cfg : List[dict]
            List of `{subsys, id, geo_ids}` entries
        where : str
            Location of the map, used in error messages

        Returns
        -------
        Dict[SourceID, Tuple[int]]
            Map from source ID onto its GeoIDs
        """
        geo_id_map = {}
        try:
            for entry in cfg or []:
                source_id = SourceID.from_dict(entry)
                geo_id_map[source_id] = tuple(int(g) for g in entry["geo_ids"])

        except (KeyError, TypeError, ValueError) as err:
            raise DAQFileError(f"Invalid GeoID map in {where}: {err}") from err

        return geo_id_map

    def fetch_file_level_geo_id_info(self, h5_file):
        """Fetches the source ID to GeoID map declared at the file level.

        Parameters
        ----------
        h5_file : h5py.File
            Open raw data file

        Returns
        -------
        MappingProxyType
            Read-only map from source ID onto its GeoIDs
        """
        if not self.layout.supports_source_ids:
            return MappingProxyType({})

        cfg = load_attribute(h5_file, GEO_ID_MAP_ATTR)
        return MappingProxyType(self.parse_geo_id_map(cfg, h5_file.filename))

    def fetch_record_level_geo_id_info(self, record_group, file_level_map):
        """Extends the file-level GeoID map with record-level information.

        The file-level map is not modified. Record-level entries replace the
        file-level entries of the same source ID.

        Parameters
        ----------
        record_group : h5py.Group
            Top-level group of the record
        file_level_map : Mapping[SourceID, Tuple[int]]
            GeoID map declared at the file level
        group_name : str, optional
        Name of the record group. If not specified, it is formatted from
        the record ID following the file layout

        Returns
        -------
        MappingProxyType
            Read-only map from source ID onto its GeoIDs
        """
        geo_id_map = dict(file_level_map)
        cfg = load_attribute(record_group, GEO_ID_MAP_ATTR)
        geo_id_map.update(self.parse_geo_id_map(cfg, record_group.name))

        return MappingProxyType(geo_id_map)

    def fetch_dataset_entries(self, record_group):
        """Lists the datasets of a record which follow the naming convention.

        Parameters
        ----------
        record_group : h5py.Group
            Top-level group of the record

        Returns
        -------
        List[Tuple[str, SourceID, str]]
            (absolute path, source ID, type label) of each dataset
        """
        entries = []

        def visit(name, obj):
            if not isinstance(obj, h5py.Dataset):
                return

            match = DATASET_NAME_PATTERN.match(name.rsplit("/", 1)[-1])
            if match is None:
                logger.warning("Skipping dataset with no source ID: %s", obj.name)
                return

            try:
                source_id = SourceID(match.group("subsystem"), int(match.group("id"), 16))
            except ValueError:
                logger.warning("Skipping dataset with unknown subsystem: %s", obj.name)
                return

            entries.append((obj.name, source_id, match.group("type")))

        record_group.visititems(visit)

        return entries

    def fetch_source_id_path_info(self, record_group, entries):
        """Builds the map from source ID onto dataset path.

        Parameters
        ----------
        record_group : h5py.Group
            Top-level group of the record
        entries : List[Tuple[str, SourceID, str]]
            Datasets which follow the naming convention

        Returns
        -------
        Dict[SourceID, str]
            Map from source ID onto absolute dataset path
        """
        cfg = self._load_index_attribute(record_group, PATH_MAP_ATTR)
        if cfg is not None:
            path_map = {}
            try:
                for entry in cfg:
                    path = entry["path"]
                    if not path.startswith("/"):
                        path = f"{record_group.name}/{path}"
                    path_map[SourceID.from_dict(entry)] = path

            except (KeyError, TypeError, ValueError, AttributeError) as err:
                raise DAQFileError(
                    f"Invalid source ID path map in {record_group.name}: {err}"
                ) from err

            return path_map

        path_map = {}
        for path, source_id, _ in entries:
            if source_id in path_map:
                logger.warning(
                    "Source ID %s appears more than once in %s, keeping %s",
                    source_id,
                    record_group.name,
                    path_map[source_id],
                )
                continue
            path_map[source_id] = path

        return path_map

    def fetch_fragment_type_source_id_info(self, record_group, entries):
        """Builds the map from fragment type onto source IDs.

        Parameters
        ----------
        record_group : h5py.Group
            Top-level group of the record
        entries : List[Tuple[str, SourceID, str]]
            Datasets which follow the naming convention

        Returns
        -------
        Dict[FragmentType, Set[SourceID]]
            Map from fragment type onto source IDs
        """
        cfg = self._load_index_attribute(record_group, FRAGMENT_TYPE_MAP_ATTR)
        if cfg is not None:
            return self._parse_source_id_sets(cfg, "fragment_type", record_group.name)

        fragment_type_map = defaultdict(set)
        header_name = self.layout.record_header_dataset_name
        for _, source_id, label in entries:
            if label == header_name:
                continue
            try:
                fragment_type = enum_factory(FragmentType, label)
            except ValueError:
                logger.debug("Unknown fragment type %s for %s", label, source_id)
                fragment_type = FragmentType.UNKNOWN
            fragment_type_map[fragment_type].add(source_id)

        return fragment_type_map

    def fetch_subdetector_source_id_info(self, record_group, geo_id_map):
        """Builds the map from subdetector onto source IDs.

        Without an attribute index, the subdetector of a source ID is read
        from the low bits of its GeoIDs.

        Parameters
        ----------
        record_group : h5py.Group
            Top-level group of the record
        geo_id_map : Mapping[SourceID, Tuple[int]]
            GeoID map of the record

        Returns
        -------
        Dict[Subdetector, Set[SourceID]]
            Map from subdetector onto source IDs
        """
        cfg = self._load_index_attribute(record_group, SUBDETECTOR_MAP_ATTR)
        if cfg is not None:
            return self._parse_source_id_sets(cfg, "subdetector", record_group.name)

        subdetector_map = defaultdict(set)
        for source_id, geo_ids in geo_id_map.items():
            for geo_id in geo_ids:
                code = geo_id_subdetector_code(geo_id)
                try:
                    subdetector_map[Subdetector(code)].add(source_id)
                except ValueError:
                    logger.debug("Unknown subdetector code %d in GeoID %d", code, geo_id)

        return subdetector_map

    def fetch_record_header_source_id(self, record_group, entries):
        """Finds the source ID of the record header.

        Parameters
        ----------
        record_group : h5py.Group
            Top-level group of the record
        entries : List[Tuple[str, SourceID, str]]
            Datasets which follow the naming convention

        Returns
        -------
        SourceID
            Source ID of the record header

        Raises
        ------
        HeaderNotFoundError
            If the record does not contain exactly one header
        """
        cfg = self._load_index_attribute(record_group, HEADER_SOURCE_ID_ATTR)
        if cfg is not None:
            try:
                return SourceID.from_dict(cfg)
            except (KeyError, TypeError, ValueError) as err:
                raise DAQFileError(
                    f"Invalid record header source ID in {record_group.name}: {err}"
                ) from err

        header_name = self.layout.record_header_dataset_name
        header_ids = {sid for _, sid, label in entries if label == header_name}
        if len(header_ids) != 1:
            raise HeaderNotFoundError(
                f"Expected exactly one `{header_name}` dataset in "
                f"{record_group.name}, found {len(header_ids)}."
            )

        return header_ids.pop()

    def build_record_bundle(
        self, h5_file, record_id, file_level_map, group_name=None
    ):
        """Builds the index bundle of one record.

        Parameters
        ----------
        h5_file : h5py.File
            Open raw data file
        record_id : RecordID
            Record ID
        file_level_map : Mapping[SourceID, Tuple[int]]
            GeoID map declared at the file level
        group_name : str, optional
            Name of the record group. If not specified, it is formatted from
            the record ID following the file layout

        Returns
        -------
        RecordIndexBundle
            Index bundle of the record

        Raises
        ------
        GroupNotFoundError
            If the record group does not exist
        HeaderNotFoundError
            If the record header cannot be identified
        """
        # Fetch the record group
        if group_name is None:
            group_name = self.layout.record_group_name(*record_id)
        record_group = h5_file.get(group_name)
        if not isinstance(record_group, h5py.Group):
            raise GroupNotFoundError(f"Invalid HDF5 group: {group_name}")

        logger.debug("Building the source ID indexes of %s", group_name)

        # Start from the file-level GeoID map, add record-level information
        geo_id_map = self.fetch_record_level_geo_id_info(record_group, file_level_map)

        # Discover the datasets and the maps built from them
        entries = []
        if not self._has_attribute_index(record_group):
            entries = self.fetch_dataset_entries(record_group)

        path_map = self.fetch_source_id_path_info(record_group, entries)
        fragment_type_map = self.fetch_fragment_type_source_id_info(
            record_group, entries
        )
        subdetector_map = self.fetch_subdetector_source_id_info(
            record_group, geo_id_map
        )
        header_id = self.fetch_record_header_source_id(record_group, entries)
        if header_id not in path_map:
            raise HeaderNotFoundError(
                f"The record header {header_id} of {group_name} has no dataset."
            )

        # Derive the source ID sets, fold every source ID in its subsystem
        source_ids = frozenset(path_map)
        fragment_ids = source_ids - {header_id}
        subsystem_map = defaultdict(set)
        for source_id in source_ids:
            subsystem_map[source_id.subsystem].add(source_id)

        # Only keep the grouped source IDs which exist in the record
        for source_id_map in (fragment_type_map, subdetector_map):
            for key in list(source_id_map):
                source_id_map[key] = set(source_id_map[key]) & source_ids

        return RecordIndexBundle(
            record_id=record_id,
            header_id=header_id,
            path_map=MappingProxyType(path_map),
            source_ids=source_ids,
            fragment_ids=fragment_ids,
            subsystem_map=freeze_map(subsystem_map),
            fragment_type_map=freeze_map(fragment_type_map),
            subdetector_map=freeze_map(subdetector_map),
            geo_id_map=geo_id_map,
        )

    def _has_attribute_index(self, record_group):
        """Checks whether a record group carries its source ID path map."""
        return self.layout.uses_attribute_index and PATH_MAP_ATTR in record_group.attrs

    def _load_index_attribute(self, record_group, key):
        """Loads a map attribute of a record group, if attribute indexes are used."""
        if not self._has_attribute_index(record_group):
            return None

        return load_attribute(record_group, key)

    @staticmethod
    def _parse_source_id_sets(cfg, enum, where):
        """Parses a serialized map from enumerated object onto source IDs.

        Parameters
        ----------
        cfg : Dict[str, List[dict]]
            Map from an enumerated label onto `{subsys, id}` entries
        enum : str
            Name of the enumerated type of the keys
        where : str
            Location of the map, used in error messages

        Returns
        -------
        Dict[IntEnum, Set[SourceID]]
            Map from enumerated object onto source IDs
        """
        source_id_map = defaultdict(set)
        try:
            for key, entries in cfg.items():
                source_id_map[enum_factory(enum, key)].update(
                    SourceID.from_dict(entry) for entry in entries
                )

        except (AttributeError, KeyError, TypeError, ValueError) as err:
            raise DAQFileError(f"Invalid {enum} map in {where}: {err}") from err

        return source_id_map
