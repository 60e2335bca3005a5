"""Module with the identifiers used to address records and data producers."""

import re
from dataclasses import dataclass
from numbers import Integral
from typing import NamedTuple, Union

from daqreader.utils.enums import Subsystem, enum_factory, enum_label

__all__ = ["RecordID", "SourceID", "to_record_id", "geo_id_subdetector_code"]

# Mask which extracts the subdetector code from a GeoID
SUBDETECTOR_MASK = 0xFFFF

# Pattern of the string representation of a SourceID
SOURCE_ID_PATTERN = re.compile(r"^(?P<subsystem>\w+?)_0x(?P<id>[0-9a-fA-F]+)$")


class RecordID(NamedTuple):
    """Identifier of one recorded unit (trigger record or time slice).

    Attributes
    ----------
    number : int
        Record number
    sequence : int
        Sequence number of the record (0 if the record is not split)
    """

    number: int
    sequence: int = 0

    def __str__(self):
        return f"{self.number}.{self.sequence}"


def to_record_id(value: Union[RecordID, tuple, int, str]) -> RecordID:
    """Converts a record identifier provided in any accepted form.

    Parameters
    ----------
    value : Union[RecordID, tuple, int, str]
        Record ID, (number, sequence) pair, bare record number or string
        of the form `number[.sequence]`

    Returns
    -------
    RecordID
        Record identifier
    """
    if isinstance(value, RecordID):
        return value

    if isinstance(value, str):
        number, _, sequence = value.partition(".")
        return RecordID(int(number), int(sequence) if sequence else 0)

    if isinstance(value, tuple):
        if len(value) not in (1, 2):
            raise ValueError(
                f"A record ID must be a (number, sequence) pair, got {value}."
            )
        return RecordID(*(int(v) for v in value))

    if isinstance(value, Integral) and not isinstance(value, bool):
        return RecordID(int(value))

    raise TypeError(f"Cannot interpret {value!r} as a record ID.")


@dataclass(frozen=True, order=True)
class SourceID:
    """Identifier of one data producer within a record.

    Attributes
    ----------
    subsystem : Subsystem
        Coarse category of the data producer
    id : int
        Numerical identifier of the producer within its subsystem
    """

    subsystem: Subsystem = Subsystem.UNKNOWN
    id: int = 0

    def __post_init__(self):
        """Casts the subsystem to its enumerated type."""
        object.__setattr__(self, "subsystem", enum_factory(Subsystem, self.subsystem))
        object.__setattr__(self, "id", int(self.id))

    def __str__(self):
        return f"{enum_label(self.subsystem)}_0x{self.id:08x}"

    @classmethod
    def from_string(cls, name):
        """Builds a SourceID from its string representation.

        Parameters
        ----------
        name : str
            String of the form `<Subsystem>_0x<hexadecimal id>`

        Returns
        -------
        SourceID
            Source identifier
        """
        match = SOURCE_ID_PATTERN.match(name)
        if match is None:
            raise ValueError(f"Cannot parse a SourceID from {name!r}.")

        return cls(match.group("subsystem"), int(match.group("id"), 16))

    @classmethod
    def from_dict(cls, obj):
        """Builds a SourceID from its serialized dictionary form.

        Parameters
        ----------
        obj : dict
            Dictionary with a `subsys` (name or value) and an `id` key

        Returns
        -------
        SourceID
            Source identifier
        """
        return cls(obj["subsys"], obj["id"])


def geo_id_subdetector_code(geo_id: int) -> int:
    """Returns the subdetector code encoded in the low bits of a GeoID.

    Parameters
    ----------
    geo_id : int
        Detector-geography identifier

    Returns
    -------
    int
        Subdetector code
    """
    return int(geo_id) & SUBDETECTOR_MASK
