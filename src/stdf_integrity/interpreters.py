"""Typed decoders for the STDF record kinds the aggregator consumes."""

import math
import re
import struct
from dataclasses import dataclass
from typing import Any, Callable

from .exceptions import InterpretError
from .records import RECORD_LAYOUTS, RawRecord, RecordKind
from .scanner import BYTE_ORDER_PREFIX


# STDF numeric data types -> struct format characters
NUMERIC_FORMATS = {
    "U1": "B",
    "U2": "H",
    "U4": "I",
    "U8": "Q",
    "I1": "b",
    "I2": "h",
    "I4": "i",
    "I8": "q",
    "R4": "f",
    "R8": "d",
    "B1": "B",
    "N1": "B",
}

_FIXED_CHAR = re.compile(r"^C(\d+)$")

INVALID_COORD = -32768


class FieldReader:
    """Bounds-checked cursor over one record payload."""

    def __init__(self, record: RawRecord, byte_order: str = "big"):
        self.record = record
        self.payload = record.payload
        self.pos = 0
        self.prefix = BYTE_ORDER_PREFIX[byte_order]

    @property
    def remaining(self) -> int:
        return len(self.payload) - self.pos

    def _take(self, size: int, field_name: str) -> bytes:
        if size > self.remaining:
            raise InterpretError(
                self.record.name,
                f"field {field_name} needs {size} bytes, {self.remaining} remain",
                self.record.offset,
            )
        chunk = self.payload[self.pos:self.pos + size]
        self.pos += size
        return chunk

    def read(self, field_name: str, data_type: str) -> Any:
        """Read one field of the given STDF data type."""
        if data_type in NUMERIC_FORMATS:
            fmt = self.prefix + NUMERIC_FORMATS[data_type]
            return struct.unpack(fmt, self._take(struct.calcsize(fmt), field_name))[0]

        if data_type == "Cn":
            count = self._take(1, field_name)[0]
            return self._take(count, field_name).decode("ascii", errors="replace").rstrip("\x00")

        fixed = _FIXED_CHAR.match(data_type)
        if fixed:
            size = int(fixed.group(1))
            return self._take(size, field_name).decode("ascii", errors="replace")

        if data_type == "Bn":
            count = self._take(1, field_name)[0]
            return self._take(count, field_name)

        if data_type == "Dn":
            (bits,) = struct.unpack(self.prefix + "H", self._take(2, field_name))
            return self._take((bits + 7) // 8, field_name)

        raise InterpretError(
            self.record.name,
            f"field {field_name} has unsupported data type {data_type}",
            self.record.offset,
        )


def decode_fields(record: RawRecord, byte_order: str = "big") -> dict[str, Any]:
    """
    Decode a record payload against its STDF V4 field layout.

    STDF allows trailing fields to be omitted. A payload that ends on a field
    boundary leaves the remaining fields as None, while a payload that ends
    inside a field raises.

    Args:
        record: Raw record from the scanner
        byte_order: "big" or "little"

    Returns:
        Dictionary of field name to decoded value

    Raises:
        InterpretError: On any read past the payload end
    """
    layout = RECORD_LAYOUTS.get(record.name)
    if layout is None:
        raise InterpretError(record.name, "no field layout for record", record.offset)

    reader = FieldReader(record, byte_order)
    values: dict[str, Any] = {}
    for field_name, data_type in layout:
        if reader.remaining == 0:
            values[field_name] = None
            continue
        values[field_name] = reader.read(field_name, data_type)
    return values


def _require(record: RawRecord, values: dict[str, Any], *names: str) -> None:
    missing = [name for name in names if values.get(name) is None]
    if missing:
        raise InterpretError(record.name, f"missing required field(s) {', '.join(missing)}", record.offset)


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _coord(value: int | None) -> int | None:
    if value is None or value == INVALID_COORD:
        return None
    return value


def _real(value: float | None) -> float | None:
    if value is None or math.isnan(value):
        return None
    return float(value)


# ---------------------------------------------------------------------------
# Typed payloads
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FileAttributes:
    cpu_type: int
    stdf_version: int


@dataclass(frozen=True)
class MasterInfo:
    setup_time: int | None
    start_time: int | None
    lot_id: str
    part_type: str
    job_name: str
    job_rev: str
    operator: str
    tester_type: str
    test_temperature: str
    test_code: str


@dataclass(frozen=True)
class WaferStart:
    head_num: int
    start_time: int | None
    wafer_id: str


@dataclass(frozen=True)
class WaferConfig:
    wafer_size: float | None
    die_height: float | None
    die_width: float | None
    units: int | None
    flat: str
    center_x: int | None
    center_y: int | None


@dataclass(frozen=True)
class PartStart:
    head_num: int
    site_num: int


@dataclass(frozen=True)
class PartResult:
    head_num: int
    site_num: int
    part_flag: int
    num_test: int | None
    hard_bin: int
    soft_bin: int
    x_coord: int | None
    y_coord: int | None
    test_time: int
    part_id: str


@dataclass(frozen=True)
class ParametricResult:
    test_num: int
    head_num: int
    site_num: int
    test_flag: int
    parm_flag: int
    result: float
    test_text: str
    opt_flag: int | None
    lo_limit: float | None
    hi_limit: float | None
    units: str | None

    @property
    def result_valid(self) -> bool:
        # TEST_FLG bit 1: RESULT is not valid
        return not self.test_flag & 0x02 and not math.isnan(self.result)

    @property
    def flag_valid(self) -> bool:
        # TEST_FLG bit 6: pass/fail flag is not valid
        return not self.test_flag & 0x40

    @property
    def flagged_failed(self) -> bool:
        return bool(self.test_flag & 0x80)

    @property
    def has_lo_limit(self) -> bool:
        # OPT_FLAG bits 4 and 6 mark LO_LIMIT invalid / absent
        return self.opt_flag is not None and self.lo_limit is not None and not self.opt_flag & 0x50

    @property
    def has_hi_limit(self) -> bool:
        return self.opt_flag is not None and self.hi_limit is not None and not self.opt_flag & 0xA0


@dataclass(frozen=True)
class TestSynopsis:
    head_num: int
    site_num: int
    test_type: str
    test_num: int
    exec_count: int | None
    fail_count: int | None
    test_name: str


@dataclass(frozen=True)
class BinDefinition:
    hardware: bool
    head_num: int
    site_num: int
    bin_num: int
    count: int | None
    pass_fail: str
    name: str


Payload = (
    FileAttributes | MasterInfo | WaferStart | WaferConfig | PartStart
    | PartResult | ParametricResult | TestSynopsis | BinDefinition
)


# ---------------------------------------------------------------------------
# Interpreters
# ---------------------------------------------------------------------------


def interpret_far(record: RawRecord, byte_order: str = "big") -> FileAttributes:
    values = decode_fields(record, byte_order)
    _require(record, values, "CPU_TYPE", "STDF_VER")
    return FileAttributes(cpu_type=values["CPU_TYPE"], stdf_version=values["STDF_VER"])


def interpret_mir(record: RawRecord, byte_order: str = "big") -> MasterInfo:
    values = decode_fields(record, byte_order)
    _require(record, values, "SETUP_T", "START_T")
    return MasterInfo(
        setup_time=values["SETUP_T"],
        start_time=values["START_T"],
        lot_id=_text(values.get("LOT_ID")),
        part_type=_text(values.get("PART_TYP")),
        job_name=_text(values.get("JOB_NAM")),
        job_rev=_text(values.get("JOB_REV")),
        operator=_text(values.get("OPER_NAM")),
        tester_type=_text(values.get("TSTR_TYP")),
        test_temperature=_text(values.get("TST_TEMP")),
        test_code=_text(values.get("TEST_COD")),
    )


def interpret_wir(record: RawRecord, byte_order: str = "big") -> WaferStart:
    values = decode_fields(record, byte_order)
    _require(record, values, "HEAD_NUM", "START_T", "WAFER_ID")
    return WaferStart(
        head_num=values["HEAD_NUM"],
        start_time=values["START_T"],
        wafer_id=_text(values["WAFER_ID"]),
    )


def interpret_wcr(record: RawRecord, byte_order: str = "big") -> WaferConfig:
    values = decode_fields(record, byte_order)
    return WaferConfig(
        wafer_size=_real(values.get("WAFR_SIZ")),
        die_height=_real(values.get("DIE_HT")),
        die_width=_real(values.get("DIE_WID")),
        units=values.get("WF_UNITS"),
        flat=_text(values.get("WF_FLAT")),
        center_x=_coord(values.get("CENTER_X")),
        center_y=_coord(values.get("CENTER_Y")),
    )


def interpret_pir(record: RawRecord, byte_order: str = "big") -> PartStart:
    values = decode_fields(record, byte_order)
    _require(record, values, "HEAD_NUM", "SITE_NUM")
    return PartStart(head_num=values["HEAD_NUM"], site_num=values["SITE_NUM"])


def interpret_prr(record: RawRecord, byte_order: str = "big") -> PartResult:
    values = decode_fields(record, byte_order)
    _require(record, values, "HEAD_NUM", "SITE_NUM", "PART_FLG", "NUM_TEST", "HARD_BIN", "SOFT_BIN")
    return PartResult(
        head_num=values["HEAD_NUM"],
        site_num=values["SITE_NUM"],
        part_flag=values["PART_FLG"],
        num_test=values["NUM_TEST"],
        hard_bin=values["HARD_BIN"],
        soft_bin=values["SOFT_BIN"],
        x_coord=_coord(values.get("X_COORD")),
        y_coord=_coord(values.get("Y_COORD")),
        test_time=values.get("TEST_T") or 0,
        part_id=_text(values.get("PART_ID")),
    )


def interpret_ptr(record: RawRecord, byte_order: str = "big") -> ParametricResult:
    values = decode_fields(record, byte_order)
    _require(record, values, "TEST_NUM", "HEAD_NUM", "SITE_NUM", "TEST_FLG", "PARM_FLG", "RESULT")
    units = values.get("UNITS")
    return ParametricResult(
        test_num=values["TEST_NUM"],
        head_num=values["HEAD_NUM"],
        site_num=values["SITE_NUM"],
        test_flag=values["TEST_FLG"],
        parm_flag=values["PARM_FLG"],
        result=float(values["RESULT"]),
        test_text=_text(values.get("TEST_TXT")),
        opt_flag=values.get("OPT_FLAG"),
        lo_limit=_real(values.get("LO_LIMIT")),
        hi_limit=_real(values.get("HI_LIMIT")),
        units=units.strip() if isinstance(units, str) else None,
    )


def interpret_tsr(record: RawRecord, byte_order: str = "big") -> TestSynopsis:
    values = decode_fields(record, byte_order)
    _require(record, values, "HEAD_NUM", "SITE_NUM", "TEST_TYP", "TEST_NUM")
    return TestSynopsis(
        head_num=values["HEAD_NUM"],
        site_num=values["SITE_NUM"],
        test_type=_text(values["TEST_TYP"]),
        test_num=values["TEST_NUM"],
        exec_count=values.get("EXEC_CNT"),
        fail_count=values.get("FAIL_CNT"),
        test_name=_text(values.get("TEST_NAM")),
    )


def _interpret_bin(record: RawRecord, byte_order: str, prefix: str) -> BinDefinition:
    values = decode_fields(record, byte_order)
    _require(record, values, "HEAD_NUM", "SITE_NUM", f"{prefix}_NUM")
    return BinDefinition(
        hardware=prefix == "HBIN",
        head_num=values["HEAD_NUM"],
        site_num=values["SITE_NUM"],
        bin_num=values[f"{prefix}_NUM"],
        count=values.get(f"{prefix}_CNT"),
        pass_fail=_text(values.get(f"{prefix}_PF")),
        name=_text(values.get(f"{prefix}_NAM")),
    )


def interpret_hbr(record: RawRecord, byte_order: str = "big") -> BinDefinition:
    return _interpret_bin(record, byte_order, "HBIN")


def interpret_sbr(record: RawRecord, byte_order: str = "big") -> BinDefinition:
    return _interpret_bin(record, byte_order, "SBIN")


INTERPRETERS: dict[RecordKind, Callable[[RawRecord, str], Payload]] = {
    RecordKind.FAR: interpret_far,
    RecordKind.MIR: interpret_mir,
    RecordKind.WIR: interpret_wir,
    RecordKind.WCR: interpret_wcr,
    RecordKind.PIR: interpret_pir,
    RecordKind.PRR: interpret_prr,
    RecordKind.PTR: interpret_ptr,
    RecordKind.TSR: interpret_tsr,
    RecordKind.HBR: interpret_hbr,
    RecordKind.SBR: interpret_sbr,
}


def interpret(record: RawRecord, byte_order: str = "big") -> Payload | None:
    """
    Decode one record into its typed payload.

    Args:
        record: Raw record from the scanner
        byte_order: Stream byte order

    Returns:
        Typed payload, or None for kinds that are not interpreted

    Raises:
        InterpretError: When the payload violates the record layout
    """
    kind = record.kind
    if kind is None or kind not in INTERPRETERS:
        return None
    return INTERPRETERS[kind](record, byte_order)
