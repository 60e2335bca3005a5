#!/usr/bin/env python3
"""Command line entry point used to inspect DAQ raw data files."""

import argparse
import os
import sys
from typing import List, Optional

from daqreader.config import ConfigError, apply_overrides, load_config
from daqreader.config.load import resolve_config_path
from daqreader.data.ids import to_record_id
from daqreader.errors import DAQFileError
from daqreader.io.factories import reader_factory
from daqreader.utils.enums import enum_label
from daqreader.utils.logger import logger
from daqreader.version import __version__


def main(
    config: Optional[str],
    source: Optional[str],
    records: Optional[List[str]],
    geo_ids: Optional[List[int]],
    list_records: bool,
    config_overrides: Optional[List[str]],
):
    """Main driver which summarizes the content of a raw data file.

    Performs these basic functions:
    - Build the reader configuration from the file and command-line arguments
    - Print the file summary, and the requested record information

    Parameters
    ----------
    config : str, optional
        Path to the configuration file
    source : str, optional
        Path to the input file (overrides `io.reader.file_key`)
    records : List[str], optional
        Records to describe, as `number[.sequence]`
    geo_ids : List[int], optional
        GeoIDs to look up in each requested record
    list_records : bool
        Whether to print the list of records in the file
    config_overrides : List[str], optional
        List of config overrides in the form "key.path=value"
    """
    # Load the configuration file, if provided
    cfg = {}
    if config is not None:
        cfg = load_config(resolve_config_path(config, current_dir=os.getcwd()))

    # Apply generic config overrides from --set arguments
    if config_overrides:
        cfg = apply_overrides(cfg, config_overrides)

    # Override the input file, build a default reader block if needed
    reader_cfg = cfg.setdefault("io", {}).setdefault("reader", {})
    reader_cfg.setdefault("name", "hdf5_raw")
    if source is not None:
        reader_cfg["file_key"] = source
    if "file_key" not in reader_cfg:
        raise ConfigError(
            "Must provide an input file with --source or `io.reader.file_key`."
        )

    with reader_factory(reader_cfg) as reader:
        record_ids = reader.get_all_record_ids()
        print(f"File: {reader.file_name}")
        print(f"Layout version: {reader.version} ({reader.layout.name})")
        print(f"Record type: {reader.record_type}")
        print(f"Recorded size: {reader.recorded_size}")
        print(f"Number of records: {len(record_ids)}")

        if list_records:
            for record_id in record_ids:
                print(f"  {record_id}")

        for record in records or []:
            describe_record(reader, to_record_id(record), geo_ids or [])


def describe_record(reader, record_id, geo_ids):
    """Prints the dataset paths and source IDs of one record.

    Parameters
    ----------
    reader : HDF5RawDataReader
        Open reader
    record_id : RecordID
        Record to describe
    geo_ids : List[int]
        GeoIDs to look up in the record
    """
    print(f"Record {record_id}:")
    print(f"  header: {reader.get_record_header_dataset_path(record_id)}")
    if not reader.layout.supports_source_ids:
        for path in reader.get_fragment_dataset_paths(record_id):
            print(f"  fragment: {path}")
        return

    bundle = reader.get_record_bundle(record_id)
    for subsystem, source_ids in sorted(bundle.subsystem_map.items()):
        print(f"  {enum_label(subsystem)}: {len(source_ids)} source ID(s)")
        for source_id in sorted(source_ids):
            geo = ", ".join(str(g) for g in bundle.geo_id_map.get(source_id, ()))
            print(f"    {source_id} -> {bundle.path_map[source_id]} [{geo}]")

    for geo_id in geo_ids:
        source_id = reader.get_source_id_for_geo_id(record_id, geo_id)
        print(f"  GeoID {geo_id}: {source_id if source_id is not None else 'not found'}")


def cli(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="daqreader - inspect DAQ raw data HDF5 files",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  daqreader -s run_000123.hdf5 --list            List the records of a file
  daqreader -s run_000123.hdf5 -r 42.0           Describe one record
  daqreader -s run_000123.hdf5 -r 42 -g 3        Find the source ID of GeoID 3
  daqreader -c reader.yaml --set io.reader.file_key=other.hdf5
""",
    )

    parser.add_argument(
        "--version", "-v", action="version", version=f"daqreader {__version__}"
    )
    parser.add_argument("-c", "--config", help="Path to the configuration file")
    parser.add_argument("-s", "--source", help="Path to the input file")
    parser.add_argument(
        "-r",
        "--record",
        action="append",
        dest="records",
        metavar="NUMBER[.SEQUENCE]",
        help="Record to describe. Can be used multiple times.",
    )
    parser.add_argument(
        "-g",
        "--geo-id",
        action="append",
        dest="geo_ids",
        type=int,
        help="GeoID to look up in each described record",
    )
    parser.add_argument(
        "-l", "--list", action="store_true", help="List the records in the file"
    )
    parser.add_argument(
        "--set",
        action="append",
        dest="config_overrides",
        metavar="KEY=VALUE",
        help="Override any config parameter using dot notation "
        "(e.g., --set io.reader.file_key=run.hdf5). "
        "Can be used multiple times for multiple overrides.",
    )

    # Parse the arguments
    args = parser.parse_args(argv)
    if args.config is None and args.source is None and not args.config_overrides:
        parser.print_help()
        return 1

    try:
        main(
            args.config,
            args.source,
            args.records,
            args.geo_ids,
            args.list,
            args.config_overrides,
        )
    except (ConfigError, DAQFileError) as err:
        logger.error("Error: %s", err)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(cli())
