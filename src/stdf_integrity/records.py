"""STDF record kinds, raw records and field layouts."""

from dataclasses import dataclass
from enum import Enum

from pystdf import V4


# Mapping from pystdf record classes to record type names
RECORD_CLASS_MAP = {
    V4.far: "FAR",
    V4.atr: "ATR",
    V4.mir: "MIR",
    V4.mrr: "MRR",
    V4.pcr: "PCR",
    V4.hbr: "HBR",
    V4.sbr: "SBR",
    V4.pmr: "PMR",
    V4.pgr: "PGR",
    V4.plr: "PLR",
    V4.rdr: "RDR",
    V4.sdr: "SDR",
    V4.wir: "WIR",
    V4.wrr: "WRR",
    V4.wcr: "WCR",
    V4.pir: "PIR",
    V4.prr: "PRR",
    V4.tsr: "TSR",
    V4.ptr: "PTR",
    V4.mpr: "MPR",
    V4.ftr: "FTR",
    V4.bps: "BPS",
    V4.eps: "EPS",
    V4.gdr: "GDR",
    V4.dtr: "DTR",
}

# (REC_TYP, REC_SUB) -> record type name
RECORD_CODES: dict[tuple[int, int], str] = {
    (record_class.typ, record_class.sub): name
    for record_class, name in RECORD_CLASS_MAP.items()
}

# Record type name -> ordered (field name, STDF data type) pairs
RECORD_LAYOUTS: dict[str, tuple[tuple[str, str], ...]] = {
    name: tuple((field[0], field[1]) for field in record_class.fieldMap)
    for record_class, name in RECORD_CLASS_MAP.items()
}

RECORD_DESCRIPTIONS = {
    "FAR": "File Attributes Record",
    "ATR": "Audit Trail Record",
    "MIR": "Master Information Record",
    "MRR": "Master Results Record",
    "PCR": "Part Count Record",
    "HBR": "Hardware Bin Record",
    "SBR": "Software Bin Record",
    "PMR": "Pin Map Record",
    "PGR": "Pin Group Record",
    "PLR": "Pin List Record",
    "RDR": "Retest Data Record",
    "SDR": "Site Description Record",
    "WIR": "Wafer Information Record",
    "WRR": "Wafer Results Record",
    "WCR": "Wafer Configuration Record",
    "PIR": "Part Information Record",
    "PRR": "Part Results Record",
    "TSR": "Test Synopsis Record",
    "PTR": "Parametric Test Record",
    "MPR": "Multiple-Result Parametric Record",
    "FTR": "Functional Test Record",
    "BPS": "Begin Program Section Record",
    "EPS": "End Program Section Record",
    "GDR": "Generic Data Record",
    "DTR": "Datalog Text Record",
}


class RecordKind(str, Enum):
    """STDF V4 record kinds, valued by their type name."""

    FAR = "FAR"
    ATR = "ATR"
    MIR = "MIR"
    MRR = "MRR"
    PCR = "PCR"
    HBR = "HBR"
    SBR = "SBR"
    PMR = "PMR"
    PGR = "PGR"
    PLR = "PLR"
    RDR = "RDR"
    SDR = "SDR"
    WIR = "WIR"
    WRR = "WRR"
    WCR = "WCR"
    PIR = "PIR"
    PRR = "PRR"
    TSR = "TSR"
    PTR = "PTR"
    MPR = "MPR"
    FTR = "FTR"
    BPS = "BPS"
    EPS = "EPS"
    GDR = "GDR"
    DTR = "DTR"

    @classmethod
    def from_codes(cls, rec_typ: int, rec_sub: int) -> "RecordKind | None":
        """Look up a kind by its header codes. Unknown pairs return None."""
        name = RECORD_CODES.get((rec_typ, rec_sub))
        return cls(name) if name is not None else None

    @property
    def codes(self) -> tuple[int, int]:
        for codes, name in RECORD_CODES.items():
            if name == self.value:
                return codes
        raise KeyError(self.value)

    @property
    def description(self) -> str:
        return RECORD_DESCRIPTIONS.get(self.value, "")


def is_known_kind(rec_typ: int, rec_sub: int) -> bool:
    """Check whether a header's type codes name a defined STDF record."""
    return (rec_typ, rec_sub) in RECORD_CODES


@dataclass(frozen=True)
class RawRecord:
    """One length-prefixed record as read from the byte stream."""

    rec_typ: int
    rec_sub: int
    length: int
    payload: bytes
    offset: int

    @property
    def kind(self) -> RecordKind | None:
        return RecordKind.from_codes(self.rec_typ, self.rec_sub)

    @property
    def name(self) -> str:
        kind = self.kind
        if kind is None:
            return f"OTHER({self.rec_typ},{self.rec_sub})"
        return kind.value
