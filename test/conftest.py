"""Sets up fixtures general to the entire test suite of this package.

This file is read during the collection phase of pytest when running anything
inside this directory. The fixtures synthesize small raw data files with
`h5py` in a temporary directory.
"""

import json

import h5py
import numpy as np
import pytest

# Layout descriptor of the indexed trigger record files
TRIGGER_LAYOUT = {
    "record_name_prefix": "TriggerRecord",
    "digits_for_record_number": 6,
    "digits_for_sequence_number": 4,
    "record_header_dataset_name": "TriggerRecordHeader",
    "raw_data_group_name": "RawData",
    "path_param_list": [],
}

# Layout descriptor of the legacy trigger record files
LEGACY_LAYOUT = {
    "record_name_prefix": "TriggerRecord",
    "digits_for_record_number": 5,
    "digits_for_sequence_number": 0,
    "record_header_dataset_name": "TriggerRecordHeader",
    "path_param_list": [
        {
            "detector_group_type": "Detector_Readout",
            "detector_group_name": "TPC",
            "element_name_prefix": "Link",
            "digits_for_element_number": 2,
        },
        {
            "detector_group_type": "Trigger",
            "detector_group_name": "Trigger",
            "element_name_prefix": "Element",
            "digits_for_element_number": 2,
        },
    ],
}

# GeoIDs: (element << 16) | subdetector code (HD_TPC = 3, HD_PDS = 2)
GEO_TPC_A = (1 << 16) | 3
GEO_TPC_B = (2 << 16) | 3
GEO_TPC_C = (3 << 16) | 3
GEO_PDS_A = (1 << 16) | 2
GEO_TPC_EXTRA = (7 << 16) | 3

FILE_GEO_ID_MAP = [
    {"subsys": "Detector_Readout", "id": 100, "geo_ids": [GEO_TPC_A, GEO_TPC_B]},
    {"subsys": "Detector_Readout", "id": 101, "geo_ids": [GEO_TPC_C]},
    {"subsys": 1, "id": 200, "geo_ids": [GEO_PDS_A]},
]

# Datasets of each record of the indexed trigger record file
INDEXED_DATASETS = (
    "TR_Builder_0x00000000_TriggerRecordHeader",
    "Detector_Readout_0x00000064_WIBEth",
    "Detector_Readout_0x00000065_WIBEth",
    "Detector_Readout_0x000000c8_DAPHNE",
    "Trigger_0x00000001_Trigger_Candidate",
    "HW_Signals_Interface_0x00000000_Hardware_Signal",
)


def payload(path):
    """Deterministic content of a dataset, derived from its path."""
    return f"payload:{path}".encode()


def write_raw_file(path, attrs=None, datasets=(), groups=(), group_attrs=None):
    """Writes a raw data file with the requested structure.

    Parameters
    ----------
    path : pathlib.Path
        Path of the file to write
    attrs : dict, optional
        Top-level attributes (dictionaries and lists are stored as JSON)
    datasets : List[str], optional
        Absolute paths of the datasets to create
    groups : List[str], optional
        Absolute paths of (possibly empty) groups to create
    group_attrs : Dict[str, dict], optional
        Attributes to store on specific groups

    Returns
    -------
    str
        Path to the file
    """
    def serialize(value):
        return json.dumps(value) if isinstance(value, (dict, list)) else value

    with h5py.File(path, "w") as f:
        for key, value in (attrs or {}).items():
            f.attrs[key] = serialize(value)
        for group in groups:
            f.require_group(group)
        for dataset in datasets:
            f.create_dataset(
                dataset, data=np.frombuffer(payload(dataset), dtype=np.uint8)
            )
        for group, group_attr in (group_attrs or {}).items():
            for key, value in group_attr.items():
                f[group].attrs[key] = serialize(value)

    return str(path)


def indexed_group(number, sequence):
    """Name of an indexed trigger record group."""
    return f"TriggerRecord{number:06d}.{sequence:04d}"


@pytest.fixture(name="make_raw_file")
def fixture_make_raw_file(tmp_path):
    """Factory of raw data files written in the temporary directory."""
    counter = iter(range(1000))

    def make(**kwargs):
        return write_raw_file(tmp_path / f"raw_{next(counter)}.hdf5", **kwargs)

    return make


@pytest.fixture(name="indexed_file")
def fixture_indexed_file(make_raw_file):
    """Version 2 trigger record file, datasets named after their source ID.

    Contains records (1, 0), (2, 0) and (2, 1). Record (2, 1) only has a
    header and one fragment, and overrides/extends the file-level GeoIDs.
    """
    datasets = []
    for number, sequence in ((1, 0), (2, 0)):
        group = indexed_group(number, sequence)
        datasets += [f"/{group}/RawData/{name}" for name in INDEXED_DATASETS]

    group = indexed_group(2, 1)
    datasets += [
        f"/{group}/RawData/{INDEXED_DATASETS[0]}",
        f"/{group}/RawData/{INDEXED_DATASETS[1]}",
    ]

    record_geo_map = [
        {"subsys": "Detector_Readout", "id": 100, "geo_ids": [GEO_TPC_EXTRA]},
    ]

    return make_raw_file(
        attrs={
            "recorded_size": 123456,
            "filelayout_params": TRIGGER_LAYOUT,
            "filelayout_version": 2,
            "record_type": "TriggerRecord",
            "source_id_geo_id_map": FILE_GEO_ID_MAP,
        },
        datasets=datasets,
        groups=["/Metadata"],
        group_attrs={f"/{group}": {"source_id_geo_id_map": record_geo_map}},
    )


@pytest.fixture(name="attribute_file")
def fixture_attribute_file(make_raw_file):
    """Version 3 trigger record file, source ID maps stored as attributes."""
    group = indexed_group(5, 0)
    group_attrs = {
        "source_id_path_map": [
            {"subsys": "TR_Builder", "id": 0, "path": "RawData/header"},
            {"subsys": "Detector_Readout", "id": 100, "path": "RawData/link_a"},
            {"subsys": "Detector_Readout", "id": 101, "path": f"/{group}/RawData/link_b"},
        ],
        "record_header_source_id": {"subsys": "TR_Builder", "id": 0},
        "fragment_type_source_id_map": {
            "WIBEth": [
                {"subsys": "Detector_Readout", "id": 100},
                {"subsys": "Detector_Readout", "id": 101},
                {"subsys": "Detector_Readout", "id": 999},
            ],
        },
        "subdetector_source_id_map": {
            "HD_TPC": [{"subsys": "Detector_Readout", "id": 100}],
            "VD_TopTPC": [{"subsys": "Detector_Readout", "id": 101}],
        },
    }

    return make_raw_file(
        attrs={
            "filelayout_params": TRIGGER_LAYOUT,
            "filelayout_version": 3,
            "record_type": "TriggerRecord",
            "source_id_geo_id_map": FILE_GEO_ID_MAP,
        },
        datasets=[
            f"/{group}/RawData/header",
            f"/{group}/RawData/link_a",
            f"/{group}/RawData/link_b",
        ],
        group_attrs={f"/{group}": group_attrs},
    )


@pytest.fixture(name="legacy_file")
def fixture_legacy_file(make_raw_file):
    """Version 1 trigger record file, located with path formulas."""
    datasets = []
    for number in (1, 2):
        group = f"TriggerRecord{number:05d}"
        datasets += [
            f"/{group}/TriggerRecordHeader",
            f"/{group}/TPC/APA000/Link00",
            f"/{group}/TPC/APA000/Link01",
            f"/{group}/Trigger/Region000/Element00",
        ]

    return make_raw_file(
        attrs={
            "filelayout_params": LEGACY_LAYOUT,
            "filelayout_version": 1,
        },
        datasets=datasets,
    )
