"""Data structures used to address and hold the content of raw data files.

- `ids`: record and source identifiers
- `bundle`: per-record index bundle
- `record`: default containers for raw header/fragment payloads
"""

from .bundle import RecordIndexBundle
from .ids import RecordID, SourceID, geo_id_subdetector_code, to_record_id
from .record import RawFragment, RawRecordHeader, Record
