"""Test that the raw data file reader works as intended."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from conftest import (
    GEO_PDS_A,
    GEO_TPC_A,
    GEO_TPC_B,
    GEO_TPC_C,
    GEO_TPC_EXTRA,
    TRIGGER_LAYOUT,
    indexed_group,
    payload,
)
from daqreader.data import RawFragment, RawRecordHeader, RecordID, SourceID
from daqreader.errors import (
    DAQFileError,
    DatasetNotFoundError,
    FileOpenError,
    HeaderNotFoundError,
    LayoutError,
    RecordNotFoundError,
    RecordTypeMismatchError,
    VersionIncompatibilityError,
)
from daqreader.io.read import HDF5RawDataReader
from daqreader.utils.enums import FragmentType, Subdetector, Subsystem

HEADER = SourceID(Subsystem.TR_BUILDER, 0)
DR100 = SourceID(Subsystem.DETECTOR_READOUT, 100)
DR101 = SourceID(Subsystem.DETECTOR_READOUT, 101)
DR200 = SourceID(Subsystem.DETECTOR_READOUT, 200)
TRG1 = SourceID(Subsystem.TRIGGER, 1)
HSI0 = SourceID(Subsystem.HW_SIGNALS_INTERFACE, 0)


def dataset_path(number, sequence, name):
    """Absolute path of a dataset in the indexed trigger record file."""
    return f"/{indexed_group(number, sequence)}/RawData/{name}"


class TestReaderOpen:
    """Test the opening and the file-level attributes of a reader."""

    def test_indexed_attributes(self, indexed_file):
        """Test the file-level attributes of an indexed file."""
        with HDF5RawDataReader(indexed_file) as reader:
            assert reader.file_name == indexed_file
            assert reader.version == 2
            assert reader.layout.name == "indexed"
            assert reader.layout.supports_source_ids
            assert not reader.layout.uses_attribute_index
            assert reader.record_type == "TriggerRecord"
            assert reader.recorded_size == 123456
            assert reader.get_attribute("missing", "default") == "default"

    def test_legacy_attributes(self, legacy_file):
        """Test the file-level attributes of a legacy file."""
        with HDF5RawDataReader(legacy_file) as reader:
            assert reader.version == 1
            assert reader.layout.name == "legacy"
            assert not reader.layout.supports_source_ids
            assert reader.record_type == "TriggerRecord"
            assert reader.recorded_size == 0
            assert len(reader.file_level_geo_id_map) == 0

    def test_missing_file(self, tmp_path):
        """Test that a missing file cannot be opened."""
        with pytest.raises(FileOpenError):
            HDF5RawDataReader(str(tmp_path / "missing.hdf5"))

    def test_not_hdf5(self, tmp_path):
        """Test that a file which is not HDF5 cannot be opened."""
        path = tmp_path / "not_hdf5.hdf5"
        path.write_text("This is not an HDF5 file")
        with pytest.raises(FileOpenError):
            HDF5RawDataReader(str(path))

    def test_glob_file_key(self, indexed_file, tmp_path):
        """Test that a glob pattern matching a single file is accepted."""
        with HDF5RawDataReader(str(tmp_path / "raw_*.hdf5")) as reader:
            assert reader.file_name == indexed_file

    def test_ambiguous_file_key(self, indexed_file, make_raw_file, tmp_path):
        """Test that a glob pattern matching several files is rejected."""
        make_raw_file()
        with pytest.raises(ValueError):
            HDF5RawDataReader(str(tmp_path / "raw_*.hdf5"))

    @pytest.mark.parametrize("content", ["3\n1.2\n\n", "3\n1 2\n", "3,0\n1,2\n"])
    def test_record_list_file(self, tmp_path, content):
        """Test that record selections can be read from a text file."""
        list_path = tmp_path / "records.txt"
        list_path.write_text(content)
        records = HDF5RawDataReader.parse_record_list(str(list_path))
        assert records == (RecordID(3, 0), RecordID(1, 2))

    def test_record_list(self, tmp_path):
        """Test that record selections can be provided as a python list."""
        records = HDF5RawDataReader.parse_record_list([4, (1, 2), "7.1"])
        assert records == (RecordID(4), RecordID(1, 2), RecordID(7, 1))
        assert HDF5RawDataReader.parse_record_list(None) == ()
        with pytest.raises(FileNotFoundError):
            HDF5RawDataReader.parse_record_list(str(tmp_path / "missing.txt"))

    def test_missing_layout(self, make_raw_file):
        """Test that a file with no layout falls back to version 0."""
        path = make_raw_file(groups=["/Metadata"])
        with HDF5RawDataReader(path) as reader:
            assert reader.version == 0
            assert reader.layout.name == "legacy"
            assert reader.get_all_record_ids() == ()
            assert len(reader) == 0

    def test_unparseable_layout(self, make_raw_file):
        """Test that an unparseable layout falls back to version 0."""
        path = make_raw_file(
            attrs={"filelayout_params": "[unbalanced", "filelayout_version": 2}
        )
        with HDF5RawDataReader(path) as reader:
            assert reader.version == 0
            assert reader.layout.name == "legacy"

    def test_missing_record_type(self, make_raw_file):
        """Test that indexed files must declare their record type."""
        path = make_raw_file(
            attrs={"filelayout_params": TRIGGER_LAYOUT, "filelayout_version": 2}
        )
        with pytest.raises(DAQFileError):
            HDF5RawDataReader(path)

    def test_inconsistent_record_type(self, make_raw_file):
        """Test that the record type must match the record group prefix."""
        path = make_raw_file(
            attrs={
                "filelayout_params": TRIGGER_LAYOUT,
                "filelayout_version": 2,
                "record_type": "TimeSlice",
            }
        )
        with pytest.raises(RecordTypeMismatchError):
            HDF5RawDataReader(path)

    def test_invalid_geo_id_map(self, make_raw_file):
        """Test that an invalid file-level GeoID map is reported."""
        path = make_raw_file(
            attrs={
                "filelayout_params": TRIGGER_LAYOUT,
                "filelayout_version": 2,
                "record_type": "TriggerRecord",
                "source_id_geo_id_map": [{"subsys": "Detector_Readout", "id": 1}],
            }
        )
        with pytest.raises(DAQFileError):
            HDF5RawDataReader(path)

    def test_close(self, indexed_file):
        """Test that a closed reader drops its cache and its file."""
        reader = HDF5RawDataReader(indexed_file)
        reader.get_source_ids((1, 0))
        assert len(reader.cache) == 1

        reader.close()
        assert len(reader.cache) == 0
        with pytest.raises(DAQFileError):
            reader.get_attribute("record_type")

        # Closing twice is harmless
        reader.close()


class TestRecordEnumeration:
    """Test the enumeration of the records of a file."""

    def test_indexed_record_ids(self, indexed_file):
        """Test that every record group is found, and nothing else."""
        with HDF5RawDataReader(indexed_file) as reader:
            record_ids = reader.get_all_record_ids()
            assert record_ids == (RecordID(1, 0), RecordID(2, 0), RecordID(2, 1))
            assert reader.get_all_trigger_record_ids() == record_ids
            assert reader.get_all_record_ids() is record_ids
            assert len(reader) == 3

    def test_mixed_sequence_names(self, make_raw_file):
        """Test record group names with and without a sequence number."""
        layout = {
            "record_name_prefix": "Record",
            "digits_for_record_number": 5,
            "digits_for_sequence_number": 1,
            "record_header_dataset_name": "RecordHeader",
        }
        path = make_raw_file(
            attrs={"filelayout_params": layout, "filelayout_version": 1},
            datasets=["/Record00099/RecordHeader", "/Record00099/Link00"],
            groups=["/Record00042.0", "/Record00042.1", "/Other"],
        )
        with HDF5RawDataReader(path) as reader:
            assert reader.get_all_record_ids() == (
                RecordID(42, 0),
                RecordID(42, 1),
                RecordID(99, 0),
            )
            assert reader.record_group_name((42, 1)) == "Record00042.1"
            assert reader.record_group_name((99, 0)) == "Record00099"
            assert reader.record_group_name((7, 0)) == "Record00007.0"

            # Paths follow the group names found in the file
            assert reader.get_record_header_dataset_path(99) == (
                "/Record00099/RecordHeader"
            )
            assert reader.get_fragment_dataset_paths(99) == ["/Record00099/Link00"]

    def test_mixed_sequence_names_indexed(self, make_raw_file):
        """Test source ID queries on records named with and without sequence."""
        layout = dict(TRIGGER_LAYOUT, digits_for_sequence_number=1)
        header = "TR_Builder_0x00000000_TriggerRecordHeader"
        fragment = "Detector_Readout_0x00000064_WIBEth"
        path = make_raw_file(
            attrs={
                "filelayout_params": layout,
                "filelayout_version": 2,
                "record_type": "TriggerRecord",
            },
            datasets=[
                f"/TriggerRecord000042.0/RawData/{header}",
                f"/TriggerRecord000099/RawData/{header}",
                f"/TriggerRecord000099/RawData/{fragment}",
                # Zero-padding differs from the layout parameters
                f"/TriggerRecord7.2/RawData/{header}",
            ],
        )
        with HDF5RawDataReader(path) as reader:
            assert reader.get_all_record_ids() == (
                RecordID(7, 2),
                RecordID(42, 0),
                RecordID(99, 0),
            )
            assert reader.get_source_ids((99, 0)) == {HEADER, DR100}
            assert reader.get_record_header_dataset_path(99) == (
                f"/TriggerRecord000099/RawData/{header}"
            )
            assert reader.get_fragment_source_ids((42, 0)) == frozenset()
            assert reader.get_record_header_source_id((7, 2)) == HEADER

    def test_deprecated_record_numbers(self, legacy_file, caplog):
        """Test that the record number listing logs its deprecation."""
        with HDF5RawDataReader(legacy_file) as reader:
            assert reader.get_all_record_numbers() == {1, 2}

        assert "Deprecated usage, get_all_record_numbers()" in caplog.text

    def test_unparseable_record_name(self, make_raw_file):
        """Test that unparseable record group names are skipped."""
        layout = dict(TRIGGER_LAYOUT)
        path = make_raw_file(
            attrs={
                "filelayout_params": layout,
                "filelayout_version": 2,
                "record_type": "TriggerRecord",
            },
            groups=["/TriggerRecord000003.0000", "/TriggerRecordSummary"],
        )
        with HDF5RawDataReader(path) as reader:
            assert reader.get_all_record_ids() == (RecordID(3, 0),)

    def test_non_ascii_digits(self, make_raw_file):
        """Test that names with digits `int` cannot parse are skipped."""
        path = make_raw_file(
            attrs={"filelayout_params": TRIGGER_LAYOUT, "filelayout_version": 1},
            groups=[
                "/TriggerRecord000001.0000",
                "/TriggerRecord²",
                "/TriggerRecord000002.¹",
                "/TriggerRecord٣",
            ],
        )
        with HDF5RawDataReader(path) as reader:
            assert reader.get_all_record_ids() == (RecordID(1, 0),)

    @pytest.mark.parametrize("version", [2, 3])
    def test_timeslice_enumeration(self, make_raw_file, version):
        """Test that time slice files reject trigger record requests."""
        layout = dict(TRIGGER_LAYOUT, record_name_prefix="TimeSlice")
        layout["record_header_dataset_name"] = "TimeSliceHeader"
        path = make_raw_file(
            attrs={
                "filelayout_params": layout,
                "filelayout_version": version,
                "record_type": "TimeSlice",
            },
            groups=["/TimeSlice000007.0000"],
        )
        with HDF5RawDataReader(path) as reader:
            assert reader.get_all_timeslice_ids() == (RecordID(7, 0),)
            assert reader.get_all_timeslice_numbers() == {7}
            with pytest.raises(RecordTypeMismatchError):
                reader.get_all_trigger_record_ids()
            with pytest.raises(RecordTypeMismatchError):
                reader.get_trigger_record_header_dataset_paths()

    def test_legacy_type_not_checked(self, legacy_file, make_raw_file):
        """Test that legacy files accept any record type request."""
        with HDF5RawDataReader(legacy_file) as reader:
            assert len(reader.get_all_timeslice_ids()) == 2
            assert len(reader.get_all_trigger_record_ids()) == 2

        layout = {
            "record_name_prefix": "TimeSlice",
            "digits_for_record_number": 6,
            "record_header_dataset_name": "TimeSliceHeader",
        }
        path = make_raw_file(
            attrs={"filelayout_params": layout, "filelayout_version": 1},
            groups=["/TimeSlice000007"],
        )
        with HDF5RawDataReader(path) as reader:
            assert reader.record_type == "TimeSlice"
            assert reader.get_all_trigger_record_ids() == (RecordID(7, 0),)

    def test_missing_record(self, indexed_file):
        """Test that asking for an absent record raises."""
        with HDF5RawDataReader(indexed_file) as reader:
            with pytest.raises(RecordNotFoundError):
                reader.get_source_ids((3, 0))
            with pytest.raises(RecordNotFoundError):
                reader.get_record_header_dataset_path((1, 1))


class TestDatasetPaths:
    """Test the dataset path queries."""

    def test_indexed_header_paths(self, indexed_file):
        """Test the header dataset paths of an indexed file."""
        header_name = "TR_Builder_0x00000000_TriggerRecordHeader"
        with HDF5RawDataReader(indexed_file) as reader:
            assert reader.get_record_header_dataset_path((2, 1)) == dataset_path(
                2, 1, header_name
            )
            assert reader.get_trigger_record_header_dataset_path(1) == dataset_path(
                1, 0, header_name
            )
            assert reader.get_record_header_dataset_paths() == [
                dataset_path(1, 0, header_name),
                dataset_path(2, 0, header_name),
                dataset_path(2, 1, header_name),
            ]
            with pytest.raises(RecordTypeMismatchError):
                reader.get_timeslice_header_dataset_path((1, 0))

    def test_indexed_fragment_paths(self, indexed_file):
        """Test the fragment dataset paths of an indexed file."""
        with HDF5RawDataReader(indexed_file) as reader:
            paths = reader.get_fragment_dataset_paths((1, 0))
            assert paths == [
                dataset_path(1, 0, "Detector_Readout_0x00000064_WIBEth"),
                dataset_path(1, 0, "Detector_Readout_0x00000065_WIBEth"),
                dataset_path(1, 0, "Detector_Readout_0x000000c8_DAPHNE"),
                dataset_path(1, 0, "HW_Signals_Interface_0x00000000_Hardware_Signal"),
                dataset_path(1, 0, "Trigger_0x00000001_Trigger_Candidate"),
            ]

            trigger_paths = reader.get_fragment_dataset_paths(
                (1, 0), subsystem="Trigger"
            )
            assert trigger_paths == [
                dataset_path(1, 0, "Trigger_0x00000001_Trigger_Candidate")
            ]

            wib_paths = reader.get_fragment_dataset_paths(
                (1, 0), subsystem=Subsystem.DETECTOR_READOUT, fragment_type="WIBEth"
            )
            assert len(wib_paths) == 2

            assert reader.get_fragment_dataset_paths((2, 1), subsystem="Trigger") == []

            # All records at once
            assert len(reader.get_fragment_dataset_paths()) == 5 + 5 + 1
            assert len(reader.get_fragment_dataset_paths(subsystem="Trigger")) == 2

    def test_all_paths(self, indexed_file):
        """Test the listing of every dataset of the file."""
        with HDF5RawDataReader(indexed_file) as reader:
            assert len(reader.get_dataset_paths()) == 6 + 6 + 2
            assert len(reader.get_all_fragment_dataset_paths()) == 5 + 5 + 1
            assert len(reader.get_dataset_paths(indexed_group(2, 1))) == 2

    def test_legacy_paths(self, legacy_file):
        """Test the path formulas of a legacy file."""
        with HDF5RawDataReader(legacy_file) as reader:
            assert reader.get_all_record_ids() == (RecordID(1, 0), RecordID(2, 0))
            assert (
                reader.get_record_header_dataset_path(1)
                == "/TriggerRecord00001/TriggerRecordHeader"
            )
            assert reader.get_fragment_dataset_paths(1, subsystem="Detector_Readout") == [
                "/TriggerRecord00001/TPC/APA000/Link00",
                "/TriggerRecord00001/TPC/APA000/Link01",
            ]
            assert reader.get_fragment_dataset_paths(2, subsystem="Trigger") == [
                "/TriggerRecord00002/Trigger/Region000/Element00"
            ]
            assert len(reader.get_fragment_dataset_paths(1)) == 3
            assert len(reader.get_fragment_dataset_paths()) == 6
            assert len(reader.get_record_header_dataset_paths()) == 2

            with pytest.raises(LayoutError):
                reader.get_fragment_dataset_paths(1, subsystem="HW_Signals_Interface")


class TestSourceIDQueries:
    """Test the source ID indexes of a record."""

    def test_source_ids(self, indexed_file):
        """Test the source ID sets of a complete record."""
        with HDF5RawDataReader(indexed_file) as reader:
            source_ids = reader.get_source_ids((1, 0))
            assert source_ids == {HEADER, DR100, DR101, DR200, TRG1, HSI0}
            assert reader.get_record_header_source_id((1, 0)) == HEADER
            assert reader.get_fragment_source_ids((1, 0)) == source_ids - {HEADER}

    def test_bundle_consistency(self, indexed_file):
        """Test that the indexes of each record are consistent."""
        with HDF5RawDataReader(indexed_file) as reader:
            for record_id in reader.get_all_record_ids():
                bundle = reader.get_record_bundle(record_id)
                assert set(bundle.path_map) == bundle.source_ids
                assert bundle.header_id in bundle.source_ids
                assert bundle.fragment_ids == bundle.source_ids - {bundle.header_id}
                assert set().union(*bundle.subsystem_map.values()) == bundle.source_ids
                for source_ids in bundle.fragment_type_map.values():
                    assert source_ids <= bundle.fragment_ids

    def test_subsystem_queries(self, indexed_file):
        """Test the source ID queries by subsystem."""
        with HDF5RawDataReader(indexed_file) as reader:
            assert reader.get_source_ids_for_subsystem(
                (1, 0), "Detector_Readout"
            ) == {DR100, DR101, DR200}
            assert reader.get_source_ids_for_subsystem((1, 0), 4) == {HEADER}
            assert reader.get_source_ids_for_subsystem((2, 1), "Trigger") == frozenset()

    def test_fragment_type_queries(self, indexed_file):
        """Test the source ID queries by fragment type."""
        with HDF5RawDataReader(indexed_file) as reader:
            assert reader.get_source_ids_for_fragment_type((1, 0), "WIBEth") == {
                DR100,
                DR101,
            }
            assert reader.get_source_ids_for_fragment_type(
                (1, 0), FragmentType.DAPHNE
            ) == {DR200}
            assert reader.get_source_ids_for_fragment_type((1, 0), "PACMAN") == set()
            with pytest.raises(ValueError):
                reader.get_source_ids_for_fragment_type((1, 0), "NotAType")

    def test_subdetector_queries(self, indexed_file):
        """Test the source ID queries by subdetector."""
        with HDF5RawDataReader(indexed_file) as reader:
            assert reader.get_source_ids_for_subdetector((1, 0), "HD_TPC") == {
                DR100,
                DR101,
            }
            assert reader.get_source_ids_for_subdetector(
                (1, 0), Subdetector.HD_PDS
            ) == {DR200}
            assert reader.get_source_ids_for_subdetector((2, 1), "HD_TPC") == {DR100}
            assert reader.get_source_ids_for_subdetector((2, 1), "HD_PDS") == set()

    def test_legacy_rejects_source_ids(self, legacy_file):
        """Test that source ID queries require an indexed layout."""
        with HDF5RawDataReader(legacy_file) as reader:
            with pytest.raises(VersionIncompatibilityError):
                reader.get_source_ids(1)
            with pytest.raises(VersionIncompatibilityError):
                reader.get_source_ids_for_subsystem(1, "Trigger")
            with pytest.raises(VersionIncompatibilityError):
                reader.get_geo_ids(1)
            with pytest.raises(VersionIncompatibilityError):
                reader.get_fragment_dataset_paths(1, fragment_type="WIBEth")

    def test_missing_header(self, make_raw_file):
        """Test that a record with no header dataset is rejected."""
        group = indexed_group(1, 0)
        path = make_raw_file(
            attrs={
                "filelayout_params": TRIGGER_LAYOUT,
                "filelayout_version": 2,
                "record_type": "TriggerRecord",
            },
            datasets=[f"/{group}/RawData/Detector_Readout_0x00000001_WIBEth"],
        )
        with HDF5RawDataReader(path) as reader:
            with pytest.raises(HeaderNotFoundError):
                reader.get_source_ids((1, 0))

    def test_duplicate_header(self, make_raw_file):
        """Test that a record with two header datasets is rejected."""
        group = indexed_group(1, 0)
        path = make_raw_file(
            attrs={
                "filelayout_params": TRIGGER_LAYOUT,
                "filelayout_version": 2,
                "record_type": "TriggerRecord",
            },
            datasets=[
                f"/{group}/RawData/TR_Builder_0x00000000_TriggerRecordHeader",
                f"/{group}/RawData/TR_Builder_0x00000001_TriggerRecordHeader",
                f"/{group}/RawData/Detector_Readout_0x00000064_WIBEth",
            ],
        )
        with HDF5RawDataReader(path) as reader:
            for _ in range(2):
                with pytest.raises(HeaderNotFoundError):
                    reader.get_source_ids((1, 0))

            assert RecordID(1, 0) not in reader.cache
            assert len(reader.cache) == 0

    def test_attribute_index(self, attribute_file):
        """Test a record which stores its indexes as attributes."""
        with HDF5RawDataReader(attribute_file) as reader:
            assert reader.layout.uses_attribute_index
            record_id = RecordID(5, 0)
            group = indexed_group(5, 0)

            assert reader.get_source_ids(record_id) == {HEADER, DR100, DR101}
            assert reader.get_record_header_source_id(record_id) == HEADER
            assert (
                reader.get_record_header_dataset_path(record_id)
                == f"/{group}/RawData/header"
            )
            assert reader.get_fragment_dataset_paths(record_id) == [
                f"/{group}/RawData/link_a",
                f"/{group}/RawData/link_b",
            ]

            # Grouped source IDs absent from the record are dropped
            assert reader.get_source_ids_for_fragment_type(record_id, "WIBEth") == {
                DR100,
                DR101,
            }
            assert reader.get_source_ids_for_subdetector(record_id, "HD_TPC") == {
                DR100
            }
            assert reader.get_source_ids_for_subdetector(record_id, "VD_TopTPC") == {
                DR101
            }


class TestGeoIDQueries:
    """Test the GeoID queries."""

    def test_file_level_geo_ids(self, indexed_file):
        """Test the GeoIDs declared at the file level."""
        with HDF5RawDataReader(indexed_file) as reader:
            assert reader.get_all_geo_ids() == {
                GEO_TPC_A,
                GEO_TPC_B,
                GEO_TPC_C,
                GEO_PDS_A,
            }
            with pytest.raises(TypeError):
                reader.file_level_geo_id_map[DR100] = ()

    def test_geo_id_round_trip(self, indexed_file):
        """Test that each GeoID points back at the source ID it belongs to."""
        with HDF5RawDataReader(indexed_file) as reader:
            record_id = RecordID(1, 0)
            for source_id in reader.get_fragment_source_ids(record_id):
                for geo_id in reader.get_geo_ids_for_source_id(record_id, source_id):
                    assert (
                        reader.get_source_id_for_geo_id(record_id, geo_id) == source_id
                    )

            assert reader.get_geo_ids_for_source_id(record_id, DR100) == (
                GEO_TPC_A,
                GEO_TPC_B,
            )
            assert reader.get_geo_ids_for_source_id(
                record_id, "Detector_Readout_0x000000c8"
            ) == (GEO_PDS_A,)
            assert reader.get_geo_ids_for_source_id(record_id, ("Trigger", 1)) == ()
            assert reader.get_source_id_for_geo_id(record_id, 12345) is None

    def test_geo_ids_for_subdetector(self, indexed_file):
        """Test the GeoID queries by subdetector."""
        with HDF5RawDataReader(indexed_file) as reader:
            assert reader.get_geo_ids((1, 0)) == reader.get_all_geo_ids()
            assert reader.get_geo_ids_for_subdetector((1, 0), "HD_TPC") == {
                GEO_TPC_A,
                GEO_TPC_B,
                GEO_TPC_C,
            }
            assert reader.get_geo_ids_for_subdetector((1, 0), "HD_PDS") == {GEO_PDS_A}
            assert reader.get_geo_ids_for_subdetector((1, 0), "ND_LAr") == set()

    def test_record_level_override(self, indexed_file):
        """Test that record-level GeoIDs replace file-level ones."""
        with HDF5RawDataReader(indexed_file) as reader:
            assert reader.get_geo_ids_for_source_id((2, 1), DR100) == (GEO_TPC_EXTRA,)
            assert reader.get_source_id_for_geo_id((2, 1), GEO_TPC_EXTRA) == DR100
            assert reader.get_source_id_for_geo_id((2, 1), GEO_TPC_A) is None

            # Other records and the file-level map are not affected
            assert reader.get_source_id_for_geo_id((2, 0), GEO_TPC_A) == DR100
            assert reader.file_level_geo_id_map[DR100] == (GEO_TPC_A, GEO_TPC_B)


class TestPayloads:
    """Test the loading of the header and fragment payloads."""

    def test_raw_data(self, indexed_file):
        """Test that dataset content is returned as raw bytes."""
        path = dataset_path(1, 0, "Detector_Readout_0x00000064_WIBEth")
        with HDF5RawDataReader(indexed_file) as reader:
            assert reader.get_dataset_raw_data(path) == payload(path)
            with pytest.raises(DatasetNotFoundError):
                reader.get_dataset_raw_data("/not/a/dataset")
            with pytest.raises(DatasetNotFoundError):
                reader.get_dataset_raw_data(f"/{indexed_group(1, 0)}")

    def test_header_and_fragments(self, indexed_file):
        """Test the header and fragment constructors."""
        with HDF5RawDataReader(indexed_file) as reader:
            header = reader.get_record_header((1, 0))
            header_path = reader.get_record_header_dataset_path((1, 0))
            assert isinstance(header, RawRecordHeader)
            assert header.buffer == payload(header_path)

            fragment = reader.get_fragment((1, 0), source_id=DR101)
            assert isinstance(fragment, RawFragment)
            assert fragment.buffer == payload(
                dataset_path(1, 0, "Detector_Readout_0x00000065_WIBEth")
            )
            assert reader.get_fragment((1, 0), geo_id=GEO_TPC_C) == fragment

            with pytest.raises(DatasetNotFoundError):
                reader.get_fragment((1, 0), source_id=("Detector_Readout", 999))
            with pytest.raises(DatasetNotFoundError):
                reader.get_fragment((1, 0), geo_id=12345)
            with pytest.raises(AssertionError):
                reader.get_fragment((1, 0), source_id=DR101, geo_id=GEO_TPC_C)

    def test_custom_constructors(self, indexed_file):
        """Test that any callable can build the headers and fragments."""
        reader = HDF5RawDataReader(
            indexed_file, header_class=bytearray, fragment_class=len
        )
        with reader:
            record = reader.get_record((1, 0))
            assert isinstance(record.header, bytearray)
            assert all(isinstance(f, int) for f in record.fragments)

    def test_records(self, indexed_file):
        """Test the loading of complete records."""
        with HDF5RawDataReader(indexed_file) as reader:
            record = reader.get_trigger_record((1, 0))
            assert record.record_type == "TriggerRecord"
            assert len(record.fragments) == 5
            assert record.header == reader.get_record_header((1, 0))

            # Sequence access goes through the ordered record IDs
            assert len(reader[2].fragments) == 1
            assert [len(r.fragments) for r in reader] == [5, 5, 1]

            with pytest.raises(RecordTypeMismatchError):
                reader.get_timeslice((1, 0))

    def test_legacy_records(self, legacy_file):
        """Test that complete records can be loaded from legacy files."""
        with HDF5RawDataReader(legacy_file) as reader:
            record = reader.get_record(2)
            assert record.header.buffer == payload(
                "/TriggerRecord00002/TriggerRecordHeader"
            )
            assert len(record.fragments) == 3
            with pytest.raises(VersionIncompatibilityError):
                reader.get_record_header(2)


class TestRecordCache:
    """Test that the record indexes are built once per record."""

    def test_single_build(self, indexed_file):
        """Test that repeated queries reuse the cached indexes."""
        with HDF5RawDataReader(indexed_file) as reader:
            bundle = reader.get_record_bundle((1, 0))
            reader.get_source_ids((1, 0))
            reader.get_source_ids_for_subsystem((1, 0), "Trigger")
            reader.get_fragment_dataset_paths((1, 0))
            reader.get_record_header((1, 0))
            assert reader.cache.num_builds == 1
            assert reader.get_record_bundle(RecordID(1, 0)) is bundle

            reader.get_source_ids((2, 0))
            assert reader.cache.num_builds == 2
            assert len(reader.cache) == 2

    def test_concurrent_build(self, indexed_file, monkeypatch):
        """Test that concurrent queries of one record build it once."""
        with HDF5RawDataReader(indexed_file) as reader:
            handler = reader.source_id_handler
            build = handler.build_record_bundle
            calls = []

            def counting_build(*args, **kwargs):
                calls.append(args[1])
                return build(*args, **kwargs)

            monkeypatch.setattr(handler, "build_record_bundle", counting_build)

            with ThreadPoolExecutor(max_workers=8) as executor:
                bundles = list(
                    executor.map(lambda _: reader.get_record_bundle((2, 0)), range(32))
                )

            assert calls == [RecordID(2, 0)]
            assert reader.cache.num_builds == 1
            assert all(b is bundles[0] for b in bundles)

    def test_failed_build(self, make_raw_file):
        """Test that a failed build is not committed to the cache."""
        group = indexed_group(1, 0)
        path = make_raw_file(
            attrs={
                "filelayout_params": TRIGGER_LAYOUT,
                "filelayout_version": 2,
                "record_type": "TriggerRecord",
            },
            datasets=[f"/{group}/RawData/Trigger_0x00000001_Trigger_Candidate"],
        )
        with HDF5RawDataReader(path) as reader:
            for _ in range(2):
                with pytest.raises(HeaderNotFoundError):
                    reader.get_source_ids((1, 0))

            assert reader.cache.num_builds == 2
            assert RecordID(1, 0) not in reader.cache
