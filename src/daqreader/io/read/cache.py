"""Memoizes the per-record index bundles for the lifetime of an open file.

Each record owns a slot with its own lock: the first caller to touch a record
builds its bundle while concurrent callers for the same record wait, and
callers for other records are not blocked. A slot is only marked as
populated once the whole bundle has been built.
"""

import threading
from typing import Callable, Dict

from daqreader.data.bundle import RecordIndexBundle
from daqreader.data.ids import RecordID

__all__ = ["RecordCache"]


class RecordSlot:
    """Cache entry of one record.

    Attributes
    ----------
    bundle : RecordIndexBundle
        Index bundle of the record, `None` until populated
    lock : threading.Lock
        Serializes the build of the bundle
    """

    __slots__ = ("bundle", "lock")

    def __init__(self):
        self.bundle = None
        self.lock = threading.Lock()

    @property
    def populated(self):
        """Whether the bundle of the record has been committed."""
        return self.bundle is not None


class RecordCache:
    """Maps record IDs onto their index bundle, building them on demand.

    Attributes
    ----------
    num_builds : int
        Number of bundles built (successfully or not) since creation
    """

    def __init__(self):
        self._slots: Dict[RecordID, RecordSlot] = {}
        self._lock = threading.Lock()
        self.num_builds = 0

    def __len__(self):
        return sum(slot.populated for slot in list(self._slots.values()))

    def __contains__(self, record_id):
        slot = self._slots.get(record_id)
        return slot is not None and slot.populated

    def get(self, record_id: RecordID):
        """Returns the bundle of a record, if it was built already.

        Parameters
        ----------
        record_id : RecordID
            Record ID

        Returns
        -------
        RecordIndexBundle
            Cached bundle, or `None` if the record was never built
        """
        slot = self._slots.get(record_id)
        return slot.bundle if slot is not None else None

    def get_or_build(
        self, record_id: RecordID, build: Callable[[RecordID], RecordIndexBundle]
    ) -> RecordIndexBundle:
        """Returns the bundle of a record, building it on the first call.

        Parameters
        ----------
        record_id : RecordID
            Record ID
        build : Callable[[RecordID], RecordIndexBundle]
            Function which builds the bundle of a record

        Returns
        -------
        RecordIndexBundle
            Bundle of the record
        """
        # Quick check without lock
        slot = self._slots.get(record_id)
        if slot is not None and slot.populated:
            return slot.bundle

        # Fetch or create the record slot
        with self._lock:
            slot = self._slots.setdefault(record_id, RecordSlot())

        with slot.lock:
            # Double-check, another thread may have built it while waiting
            if not slot.populated:
                self.num_builds += 1
                bundle = build(record_id)
                assert isinstance(bundle, RecordIndexBundle), (
                    "The record builder must return a RecordIndexBundle."
                )
                slot.bundle = bundle

        return slot.bundle

    def clear(self):
        """Drops every cached bundle."""
        with self._lock:
            self._slots = {}
