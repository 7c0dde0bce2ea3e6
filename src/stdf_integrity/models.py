"""Data structures produced by the decoder, map parsers and validator."""

from dataclasses import dataclass, field, fields, is_dataclass
from datetime import datetime
from enum import Enum
from typing import Any


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Diagnostic:
    """A structured event recorded while decoding or parsing a source."""

    level: str  # "info", "warning" or "error"
    message: str
    offset: int | None = None


@dataclass
class ScanTally:
    """Error tally reported by the record scanner."""

    parse_errors: int = 0
    recovered_records: int = 0
    bytes_consumed: int = 0
    records: int = 0
    error_cap: int = 0
    unreliable: bool = False
    cancelled: bool = False
    byte_order: str = "big"

    def merge(self, other: "ScanTally") -> "ScanTally":
        return ScanTally(
            parse_errors=self.parse_errors + other.parse_errors,
            recovered_records=self.recovered_records + other.recovered_records,
            bytes_consumed=self.bytes_consumed + other.bytes_consumed,
            records=self.records + other.records,
            error_cap=self.error_cap + other.error_cap,
            unreliable=self.unreliable or other.unreliable,
            cancelled=self.cancelled or other.cancelled,
            byte_order=self.byte_order if self.byte_order == other.byte_order else "mixed",
        )


# ---------------------------------------------------------------------------
# Binary test data
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TestValue:
    """One test measurement on one part."""

    value: float
    passed: bool
    units: str = ""


@dataclass(frozen=True)
class DecodedPart:
    """One tested die and its outcome."""

    part_id: str
    x_coord: int | None
    y_coord: int | None
    hard_bin: int
    soft_bin: int
    site_number: int
    test_time_ms: int
    test_results: dict[str, TestValue] = field(default_factory=dict)

    @property
    def passed(self) -> bool:
        return self.hard_bin == 1


@dataclass
class LotHeader:
    """File-scope lot metadata.

    Fields listed in ``heuristic_fields`` were guessed from the source file
    name instead of being read from a Master Information Record.
    """

    file_version: str = "UNKNOWN"
    lot_id: str = "UNKNOWN"
    part_type: str = "UNKNOWN"
    test_program: str = "UNKNOWN"
    test_time_start: datetime | None = None
    operator_id: str = "UNKNOWN"
    test_temperature: float | None = None
    heuristic_fields: frozenset[str] = frozenset()

    @property
    def derived_heuristically(self) -> bool:
        return bool(self.heuristic_fields)


@dataclass
class WaferInfo:
    """Wafer identity and geometry, present only if a WIR was observed."""

    wafer_id: str
    size_x: float | None = None
    size_y: float | None = None
    units: str | None = None
    flat_direction: str | None = None
    center_x: int | None = None
    center_y: int | None = None
    wafer_size: float | None = None
    heuristic_fields: frozenset[str] = frozenset()

    @property
    def derived_heuristically(self) -> bool:
        return bool(self.heuristic_fields)


@dataclass
class BinEntry:
    count: int
    description: str


@dataclass(frozen=True)
class TestStatistic:
    min: float
    max: float
    mean: float
    std_dev: float
    count: int


@dataclass(frozen=True)
class TestSummary:
    total_parts: int
    pass_parts: int
    fail_parts: int
    yield_percent: float
    test_names: tuple[str, ...]


@dataclass
class ParsedTestData:
    """Aggregate root for one decoded (or merged) STDF source."""

    source_name: str
    header: LotHeader
    wafer_info: WaferInfo | None
    parts: list[DecodedPart]
    summary: TestSummary
    bin_summary: dict[int, BinEntry]
    test_statistics: dict[str, TestStatistic]
    scan: ScanTally
    interpret_errors: int = 0
    record_counts: dict[str, int] = field(default_factory=dict)
    degraded: bool = False
    degraded_reasons: list[str] = field(default_factory=list)
    diagnostics: list[Diagnostic] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Text sources
# ---------------------------------------------------------------------------


class MapFlavor(str, Enum):
    EDS = "eds"  # .01 - .25
    FOUNDRY = "foundry"  # .f01 - .f25


@dataclass
class MapHeader:
    device: str = ""
    lot_number: str = ""
    slot_number: int = 0
    wafer_id: str = ""
    wafer_size: str = ""
    flat_direction: str = ""
    total_test_die: int = 0
    pass_die: int = 0
    fail_die: int = 0
    declared_yield: float = 0.0
    grid_x: int | None = None
    grid_y: int | None = None


@dataclass
class CoordinateMap:
    """A per-die pass/fail grid and its header block."""

    source_name: str
    flavor: MapFlavor
    header: MapHeader
    rows: list[list[str]] = field(default_factory=list)
    bin_counts: dict[str, int] = field(default_factory=dict)
    diagnostics: list[Diagnostic] = field(default_factory=list)

    @property
    def cell_count(self) -> int:
        return sum(len(row) for row in self.rows)

    @property
    def has_grid(self) -> bool:
        return bool(self.rows)

    @property
    def pass_count(self) -> int:
        """Observed pass die: grid '1' cells, or the header value without a grid."""
        if self.has_grid:
            return self.bin_counts.get("1", 0)
        return self.header.pass_die

    @property
    def fail_count(self) -> int:
        if self.has_grid:
            return self.bin_counts.get("X", 0)
        return self.header.fail_die

    @property
    def tested_die_count(self) -> int:
        """Pass plus fail die. Foundry 'T' cells are test-only and not counted."""
        if self.has_grid:
            return self.pass_count + self.fail_count
        return self.header.total_test_die

    @property
    def observed_yield(self) -> float:
        tested = self.tested_die_count
        return self.pass_count / tested * 100 if tested > 0 else 0.0

    @property
    def calculated_yield(self) -> float:
        """Yield from the header's pass and total die, or the grid without them."""
        if self.header.total_test_die > 0:
            return self.header.pass_die / self.header.total_test_die * 100
        return self.observed_yield


@dataclass(frozen=True)
class WaferMapping:
    mapping: str
    wafer_id: str
    bin1_count: int


@dataclass
class FarSummary:
    """Declared per-wafer BIN1 counts from a .FAR file."""

    title: str = ""
    device: str = ""
    lot_number: str = ""
    total_wafer: int = 0
    wafer_mappings: list[WaferMapping] = field(default_factory=list)


@dataclass
class LotSummaryHeader:
    lot_number: str = ""
    device: str = ""
    test_program: str = ""
    tester_type: str = ""
    start_time: str = ""
    end_time: str = ""
    total_wafers: int = 0


@dataclass(frozen=True)
class WaferSummary:
    wafer_number: int
    wafer_id: str
    total_dies: int
    pass_dies: int
    fail_dies: int
    yield_percent: float


@dataclass(frozen=True)
class LotTotals:
    total_wafers: int = 0
    total_dies: int = 0
    total_pass: int = 0
    total_fail: int = 0
    overall_yield: float = 0.0


@dataclass
class LotSummary:
    header: LotSummaryHeader
    wafer_summaries: list[WaferSummary]
    overall: LotTotals


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class OverallStatus(str, Enum):
    PASS = "pass"
    WARNING = "warning"
    FAIL = "fail"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]

    @classmethod
    def for_severity(cls, severity: Severity) -> "OverallStatus":
        return _SEVERITY_STATUS[severity]


_STATUS_RANK = {OverallStatus.PASS: 0, OverallStatus.WARNING: 1, OverallStatus.FAIL: 2}
_SEVERITY_STATUS = {
    Severity.INFO: OverallStatus.PASS,
    Severity.WARNING: OverallStatus.WARNING,
    Severity.ERROR: OverallStatus.FAIL,
}


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    severity: Severity
    message: str
    details: str | None = None


@dataclass
class IntegrityReport:
    """Outcome of cross-checking wafer maps against declared summaries."""

    overall_status: OverallStatus
    wafer_count: ValidationResult
    bin1_count: ValidationResult
    lot_summary: ValidationResult
    cross_file: list[ValidationResult] = field(default_factory=list)
    per_wafer: list[ValidationResult] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)

    @property
    def results(self) -> list[ValidationResult]:
        """All per-check results, in evaluation order."""
        return [self.wafer_count, self.bin1_count, self.lot_summary, *self.cross_file, *self.per_wafer]


@dataclass
class TextSourceResult:
    coordinate_maps: list[CoordinateMap]
    far_summary: FarSummary | None
    lot_summary: LotSummary | None
    report: IntegrityReport
    skipped: list[str] = field(default_factory=list)


def to_jsonable(value: Any) -> Any:
    """Convert dataclasses, enums and sets into JSON-compatible values."""
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_jsonable(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (frozenset, set)):
        return sorted(to_jsonable(v) for v in value)
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value
