"""Module with the containers handed the raw bytes of header/fragment datasets.

The reader never interprets payloads. Any callable which takes a raw buffer
can be used to build headers and fragments; these classes are the defaults
and simply hold onto the buffer.
"""

from dataclasses import dataclass, field
from typing import List, Optional

__all__ = ["RawRecordHeader", "RawFragment", "Record"]


@dataclass(eq=False)
class RawPayload:
    """Raw content of one dataset.

    Attributes
    ----------
    buffer : bytes
        Raw bytes stored in the dataset
    """

    buffer: bytes = b""

    def __len__(self):
        return len(self.buffer)

    def __eq__(self, other):
        return self.__class__ == other.__class__ and self.buffer == other.buffer

    @property
    def size(self):
        """Size of the payload in bytes.

        Returns
        -------
        int
            Number of bytes in the buffer
        """
        return len(self.buffer)


@dataclass(eq=False)
class RawRecordHeader(RawPayload):
    """Undecoded record header (trigger record or time slice header)."""


@dataclass(eq=False)
class RawFragment(RawPayload):
    """Undecoded fragment, the contribution of one producer to a record."""


@dataclass(eq=False)
class Record:
    """Record header and the fragments it summarizes.

    Attributes
    ----------
    header : object
        Record header, as built by the header constructor
    fragments : List[object]
        Fragments, as built by the fragment constructor
    record_type : str, optional
        Type of record (e.g. `TriggerRecord` or `TimeSlice`)
    """

    header: object = None
    fragments: List[object] = field(default_factory=list)
    record_type: Optional[str] = None

    def add_fragment(self, fragment):
        """Appends a fragment to the record.

        Parameters
        ----------
        fragment : object
            Fragment to append
        """
        self.fragments.append(fragment)
