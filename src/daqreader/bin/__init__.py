"""Command line interface of the daqreader package.

Usage Examples
--------------
::

    daqreader -s run_000123.hdf5 --list
    daqreader -s run_000123.hdf5 -r 42.0 -g 3
    python -m daqreader.bin.cli -c reader.yaml
"""
