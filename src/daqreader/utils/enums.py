"""Module which contains enumerated variables shared across the project.

The enumerated names follow the labels used in the raw data files, upper
cased (e.g. `Detector_Readout` is :attr:`Subsystem.DETECTOR_READOUT`). Use
:func:`enum_label` to recover the label as it appears in a file.
"""

from enum import IntEnum
from numbers import Integral

__all__ = ["Subsystem", "FragmentType", "Subdetector", "enum_factory", "enum_label"]


class Subsystem(IntEnum):
    """Enumerates the coarse categories of data producers."""

    UNKNOWN = 0
    DETECTOR_READOUT = 1
    HW_SIGNALS_INTERFACE = 2
    TRIGGER = 3
    TR_BUILDER = 4


class FragmentType(IntEnum):
    """Enumerates the classifications of fragment payloads."""

    UNKNOWN = 0
    PROTOWIB = 1
    WIB = 2
    DAPHNE = 3
    TDE_AMC = 4
    FW_TRIGGER_PRIMITIVE = 5
    TRIGGER_PRIMITIVE = 6
    TRIGGER_ACTIVITY = 7
    TRIGGER_CANDIDATE = 8
    HARDWARE_SIGNAL = 9
    PACMAN = 10
    MPD = 11
    WIBETH = 12
    DAPHNESTREAM = 13
    CRT = 14


class Subdetector(IntEnum):
    """Enumerates the subdetector codes stored in the low bits of a GeoID."""

    UNKNOWN = 0
    DAQ = 1
    HD_PDS = 2
    HD_TPC = 3
    HD_CRT = 4
    VD_CATHODEPDS = 8
    VD_MEMBRANEPDS = 9
    VD_BOTTOMTPC = 10
    VD_TOPTPC = 11
    VD_BERNCRT = 12
    VD_GRENOBLECRT = 13
    ND_LAR = 32
    ND_GAR = 33


# Labels of each enumerated object as they appear in file names/attributes
LABELS = {
    Subsystem: (
        "Unknown",
        "Detector_Readout",
        "HW_Signals_Interface",
        "Trigger",
        "TR_Builder",
    ),
    FragmentType: (
        "Unknown",
        "ProtoWIB",
        "WIB",
        "DAPHNE",
        "TDE_AMC",
        "FW_Trigger_Primitive",
        "Trigger_Primitive",
        "Trigger_Activity",
        "Trigger_Candidate",
        "Hardware_Signal",
        "PACMAN",
        "MPD",
        "WIBEth",
        "DAPHNEStream",
        "CRT",
    ),
    Subdetector: {
        0: "Unknown",
        1: "DAQ",
        2: "HD_PDS",
        3: "HD_TPC",
        4: "HD_CRT",
        8: "VD_CathodePDS",
        9: "VD_MembranePDS",
        10: "VD_BottomTPC",
        11: "VD_TopTPC",
        12: "VD_BernCRT",
        13: "VD_GrenobleCRT",
        32: "ND_LAr",
        33: "ND_GAr",
    },
}

ENUM_DICT = {
    "subsystem": Subsystem,
    "fragment_type": FragmentType,
    "subdetector": Subdetector,
}


def enum_label(value):
    """Returns the label of an enumerated object as it appears in files.

    Parameters
    ----------
    value : IntEnum
        Enumerated object

    Returns
    -------
    str
        File label of the enumerated object
    """
    return LABELS[type(value)][value.value]


def _parse_one(enum, value):
    """Parses a single enumerated object from a name, a value or itself."""
    if isinstance(value, enum):
        return value

    if isinstance(value, str):
        if not hasattr(enum, value.upper()):
            raise ValueError(
                f"Enumerated object not recognized: {value}. Must be one "
                f"of {[enum_label(e) for e in enum]}."
            )

        return getattr(enum, value.upper())

    if isinstance(value, bool) or not isinstance(value, Integral):
        raise TypeError(
            f"Cannot interpret {value!r} as a {enum.__name__}. Provide a "
            "name, an integer value or an enumerated object."
        )

    try:
        return enum(value)
    except ValueError as err:
        raise ValueError(
            f"Enumerated value not recognized: {value}. Must be one "
            f"of {[e.value for e in enum]}."
        ) from err


def enum_factory(enum, value):
    """Parses an enumerated object from name(s) or value(s).

    Parameters
    ----------
    enum : Union[str, type]
        Name of the enumerated type (one of `subsystem`, `fragment_type`,
        `subdetector`) or the enumerated type itself
    value : Union[str, int, IntEnum, List[Union[str, int, IntEnum]]]
        Name(s), value(s) or enumerated object(s) (e.g. from config)

    Returns
    -------
    Union[IntEnum, List[IntEnum]]
        Enumerated object(s)
    """
    # Get the enumerated type
    if isinstance(enum, str):
        if enum not in ENUM_DICT:
            raise ValueError(
                f"Enumerated type not recognized: {enum}. Must be one of "
                f"{list(ENUM_DICT.keys())}."
            )
        enum = ENUM_DICT[enum]

    # Translate the input into enumerated objects
    if isinstance(value, (str, Integral)):
        return _parse_one(enum, value)

    return [_parse_one(enum, v) for v in value]
