"""I/O tools for reading DAQ raw data files.

**Core I/O Functionality:**
- `read`: Readers which give structured access to the records of a file
- `factories`: Instantiate readers from configuration blocks

**Example Configuration:**
```yaml
io:
  reader:
    name: hdf5_raw
    file_key: /data/run_000123.hdf5
```
"""

from .factories import reader_factory
from .read import HDF5RawDataReader
