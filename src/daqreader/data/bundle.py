"""Module with the cached, derived state of one record."""

from dataclasses import dataclass
from typing import FrozenSet, Mapping, Tuple

from .ids import RecordID, SourceID

__all__ = ["RecordIndexBundle"]


@dataclass(frozen=True)
class RecordIndexBundle:
    """Set of mutually-consistent indexes built for one record.

    A bundle is built in one go by the source ID handler and never modified
    afterwards. All containers are immutable.

    Attributes
    ----------
    record_id : RecordID
        Record the bundle describes
    path_map : Mapping[SourceID, str]
        Maps each source ID onto the absolute path of its dataset
    source_ids : FrozenSet[SourceID]
        Every source ID in the record (header included)
    fragment_ids : FrozenSet[SourceID]
        Every source ID in the record, except for the header one
    header_id : SourceID
        Source ID of the record header
    subsystem_map : Mapping[Subsystem, FrozenSet[SourceID]]
        Partition of the source IDs by subsystem
    fragment_type_map : Mapping[FragmentType, FrozenSet[SourceID]]
        Source IDs grouped by fragment type
    subdetector_map : Mapping[Subdetector, FrozenSet[SourceID]]
        Source IDs grouped by subdetector
    geo_id_map : Mapping[SourceID, Tuple[int]]
        GeoIDs associated with each source ID
    """

    record_id: RecordID
    header_id: SourceID
    path_map: Mapping[SourceID, str]
    source_ids: FrozenSet[SourceID]
    fragment_ids: FrozenSet[SourceID]
    subsystem_map: Mapping
    fragment_type_map: Mapping
    subdetector_map: Mapping
    geo_id_map: Mapping[SourceID, Tuple[int, ...]]

    def __post_init__(self):
        """Checks that the indexes are consistent with each other."""
        assert set(self.path_map) == self.source_ids, (
            "The path map must cover exactly the set of source IDs."
        )
        assert self.fragment_ids == self.source_ids - {self.header_id}, (
            "The fragment source IDs must be all the source IDs but the header."
        )
        assert frozenset().union(*self.subsystem_map.values()) == self.source_ids, (
            "The subsystem map must partition the set of source IDs."
        )
