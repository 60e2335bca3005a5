"""Shared plumbing of the raw data file readers.

A reader is bound to a single file. It exposes the records of that file
as a sequence, each item being a :class:`Record` built on demand.
"""

import glob
import os

from daqreader.data.ids import to_record_id
from daqreader.utils.logger import logger


class ReaderBase:
    """Behavior common to every file reader.

    Subclasses fill `entry_index` once the file is open and implement
    :meth:`get`. In exchange, they can be sized, indexed and iterated
    like any sequence of records.

    Attributes
    ----------
    name : str
        Short name under which the reader can be requested
    file_path : str
        Resolved path of the open file
    entry_index : List[RecordID]
        Records of the file, in the order they are served
    """

    name = ""
    file_path = None
    entry_index = None

    def __len__(self):
        return len(self.entry_index)

    def __getitem__(self, idx):
        return self.get(idx)

    def __iter__(self):
        for idx in range(len(self)):
            yield self.get(idx)

    def get(self, idx):
        """Builds the record at position `idx` of the entry index."""
        raise NotImplementedError

    def process_file_path(self, file_key):
        """Turns a file key into the path of the one file to read.

        A key which matches nothing on disk is kept as is, so that the
        error is raised (with the right type) when the file is opened.

        Parameters
        ----------
        file_key : Union[str, os.PathLike]
            File path, or glob pattern which must match a single file
        """
        if file_key is None:
            raise ValueError("A `file_key` is required to open a file.")

        file_key = os.fspath(file_key)
        matches = sorted(glob.glob(file_key)) or [file_key]
        if len(matches) > 1:
            raise ValueError(
                f"The key {file_key} is ambiguous, it matches "
                f"{len(matches)} files: {matches}"
            )

        self.file_path = matches[0]
        logger.info("Opening raw data file: %s", self.file_path)

    @staticmethod
    def parse_record_list(list_source):
        """Reads a selection of record IDs.

        Parameters
        ----------
        list_source : Union[list, str]
            Record IDs in any form :func:`to_record_id` accepts, or the path
            to a text file with one record per line. On each line, the
            sequence number either follows a dot (`12.1`) or is separated
            from the record number by a space or a comma (`12 1`, `12,1`)

        Returns
        -------
        Tuple[RecordID]
            Selected record IDs, in the order provided
        """
        if list_source is None:
            return ()

        if isinstance(list_source, str):
            if not os.path.isfile(list_source):
                raise FileNotFoundError(f"No record list file at {list_source}")

            with open(list_source, "r", encoding="utf-8") as list_file:
                fields = [row.replace(",", " ").split() for row in list_file]
            list_source = [
                tuple(words) if len(words) > 1 else words[0]
                for words in fields
                if words
            ]

        return tuple(to_record_id(value) for value in list_source)
