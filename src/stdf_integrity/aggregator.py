"""Aggregation of interpreted STDF records into ParsedTestData."""

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import reduce
from pathlib import PurePath
from typing import Iterable

import numpy as np

from .exceptions import InterpretError, ParseCancelled
from .interpreters import (
    BinDefinition,
    FileAttributes,
    MasterInfo,
    ParametricResult,
    PartResult,
    PartStart,
    TestSynopsis,
    WaferConfig,
    WaferStart,
    interpret,
)
from .models import (
    BinEntry,
    DecodedPart,
    Diagnostic,
    LotHeader,
    ParsedTestData,
    ScanTally,
    TestStatistic,
    TestSummary,
    TestValue,
    WaferInfo,
)
from .records import RawRecord
from .scanner import RecordScanner

logger = logging.getLogger(__name__)

# Fallback patterns applied to the source file name when no usable MIR/WIR exists
LOT_ID_PATTERN = re.compile(r"([A-Z0-9]+[-_][A-Z0-9]+)")
PART_TYPE_PATTERN = re.compile(r"([A-Z]\d+[A-Z]+)")
WAFER_ID_PATTERN = re.compile(r"W[A-Z0-9]+\d+[-_][A-Z]\d+")

WAFER_UNITS = {1: "IN", 2: "CM", 3: "MM", 4: "MIL"}
FLAT_DIRECTIONS = {"U": "UP", "D": "DOWN", "L": "LEFT", "R": "RIGHT"}

_TEMPERATURE = re.compile(r"[-+]?\d+(?:\.\d+)?")


def lot_id_from_filename(file_name: str) -> str | None:
    match = LOT_ID_PATTERN.search(PurePath(file_name).name)
    return match.group(1) if match else None


def part_type_from_filename(file_name: str) -> str | None:
    match = PART_TYPE_PATTERN.search(PurePath(file_name).name)
    return match.group(1) if match else None


def wafer_id_from_filename(file_name: str) -> str | None:
    match = WAFER_ID_PATTERN.search(PurePath(file_name).name)
    return match.group(0) if match else None


def _unix_to_datetime(unix_ts: int | None) -> datetime | None:
    """Convert Unix timestamp to datetime. Returns None for invalid values."""
    if unix_ts is None or unix_ts <= 0:
        return None
    try:
        return datetime.fromtimestamp(unix_ts, tz=timezone.utc)
    except (OSError, ValueError, OverflowError):
        return None


def _parse_temperature(text: str) -> float | None:
    match = _TEMPERATURE.search(text or "")
    return float(match.group(0)) if match else None


def summarize(parts: list[DecodedPart]) -> TestSummary:
    """Derive part counts and yield from a part list."""
    total_parts = len(parts)
    pass_parts = sum(1 for part in parts if part.hard_bin == 1)
    test_names: dict[str, None] = {}
    for part in parts:
        for name in part.test_results:
            test_names.setdefault(name, None)

    return TestSummary(
        total_parts=total_parts,
        pass_parts=pass_parts,
        fail_parts=total_parts - pass_parts,
        yield_percent=(pass_parts / total_parts) * 100 if total_parts > 0 else 0.0,
        test_names=tuple(test_names),
    )


def compute_test_statistics(parts: list[DecodedPart]) -> dict[str, TestStatistic]:
    """
    Compute population statistics per test name.

    Only parts that reported a test contribute to that test's statistics.

    Args:
        parts: Decoded parts

    Returns:
        Dictionary mapping test name to its statistics
    """
    values: dict[str, list[float]] = {}
    for part in parts:
        for name, test_value in part.test_results.items():
            values.setdefault(name, []).append(test_value.value)

    statistics = {}
    for name, samples in values.items():
        arr = np.asarray(samples, dtype=np.float64)
        statistics[name] = TestStatistic(
            min=float(arr.min()),
            max=float(arr.max()),
            mean=float(arr.mean()),
            std_dev=float(arr.std()),
            count=int(arr.size),
        )
    return statistics


@dataclass
class _PartDraft:
    """A closed part whose test names are resolved at finalization."""
    index: int
    result: PartResult
    tests: dict[int, TestValue] = field(default_factory=dict)


class TestDataAggregator:
    """Consumes raw records and builds one ParsedTestData."""

    def __init__(self, source_name: str = "", byte_order: str = "big"):
        self.source_name = source_name
        self.byte_order = byte_order

        self._file_attributes: FileAttributes | None = None
        self._master: MasterInfo | None = None
        self._wafer_start: WaferStart | None = None
        self._wafer_config: WaferConfig | None = None

        self._drafts: list[_PartDraft] = []
        self._bin_counts: dict[int, int] = {}
        self._bin_names: dict[int, str] = {}

        # Per test number, first value seen wins
        self._ptr_names: dict[int, str] = {}
        self._tsr_names: dict[int, str] = {}
        self._test_units: dict[int, str] = {}
        self._test_limits: dict[int, tuple[float | None, float | None]] = {}

        # PTRs waiting for the PRR of their (head, site)
        self._pending: dict[tuple[int, int], list[ParametricResult]] = {}

        self._record_counts: Counter = Counter()
        self.interpret_errors = 0
        self.diagnostics: list[Diagnostic] = []

    def add_record(self, record: RawRecord) -> None:
        """Interpret one record and fold it into the running state."""
        self._record_counts[record.name] += 1

        try:
            payload = interpret(record, self.byte_order)
        except InterpretError as e:
            self.interpret_errors += 1
            self.diagnostics.append(Diagnostic("warning", str(e), record.offset))
            logger.debug("Skipping record: %s", e)
            return

        if payload is None:
            return

        if isinstance(payload, PartResult):
            self._handle_prr(payload)
        elif isinstance(payload, ParametricResult):
            self._handle_ptr(payload)
        elif isinstance(payload, PartStart):
            self._pending.pop((payload.head_num, payload.site_num), None)
        elif isinstance(payload, MasterInfo):
            if self._master is None:
                self._master = payload
        elif isinstance(payload, WaferStart):
            if self._wafer_start is None:
                self._wafer_start = payload
        elif isinstance(payload, WaferConfig):
            if self._wafer_config is None:
                self._wafer_config = payload
        elif isinstance(payload, TestSynopsis):
            if payload.test_name:
                self._tsr_names.setdefault(payload.test_num, payload.test_name)
        elif isinstance(payload, BinDefinition):
            if payload.hardware and payload.name:
                self._bin_names.setdefault(payload.bin_num, payload.name)
        elif isinstance(payload, FileAttributes):
            if self._file_attributes is None:
                self._file_attributes = payload

    def _handle_ptr(self, ptr: ParametricResult) -> None:
        """Handle Parametric Test Record."""
        if ptr.test_text:
            self._ptr_names.setdefault(ptr.test_num, ptr.test_text)
        if ptr.units:
            self._test_units.setdefault(ptr.test_num, ptr.units)
        if ptr.opt_flag is not None and ptr.test_num not in self._test_limits:
            self._test_limits[ptr.test_num] = (
                ptr.lo_limit if ptr.has_lo_limit else None,
                ptr.hi_limit if ptr.has_hi_limit else None,
            )
        self._pending.setdefault((ptr.head_num, ptr.site_num), []).append(ptr)

    def _passed(self, ptr: ParametricResult) -> bool:
        if ptr.flag_valid:
            return not ptr.flagged_failed
        lo_limit, hi_limit = self._test_limits.get(ptr.test_num, (None, None))
        if lo_limit is not None and ptr.result < lo_limit:
            return False
        if hi_limit is not None and ptr.result > hi_limit:
            return False
        return True

    def _handle_prr(self, prr: PartResult) -> None:
        """Handle Part Results Record."""
        draft = _PartDraft(index=len(self._drafts) + 1, result=prr)
        for ptr in self._pending.pop((prr.head_num, prr.site_num), []):
            if not ptr.result_valid:
                continue
            draft.tests[ptr.test_num] = TestValue(
                value=ptr.result,
                passed=self._passed(ptr),
                units=self._test_units.get(ptr.test_num, ""),
            )
        self._drafts.append(draft)
        self._bin_counts[prr.hard_bin] = self._bin_counts.get(prr.hard_bin, 0) + 1

    def _test_name(self, test_num: int) -> str:
        return self._ptr_names.get(test_num) or self._tsr_names.get(test_num) or f"Test {test_num}"

    def _resolve_test_names(self) -> dict[int, str]:
        """Map every test number seen in the file to one unique name.

        The first test number to use a name keeps it; later test numbers
        sharing that name get a ``[test_num]`` suffix in every part.
        """
        resolved: dict[int, str] = {}
        owners: dict[str, int] = {}
        for draft in self._drafts:
            for test_num in draft.tests:
                if test_num in resolved:
                    continue
                name = self._test_name(test_num)
                if owners.setdefault(name, test_num) != test_num:
                    name = f"{name} [{test_num}]"
                resolved[test_num] = name
        return resolved

    def _build_part(self, draft: _PartDraft, test_names: dict[int, str]) -> DecodedPart:
        prr = draft.result
        test_results = {test_names[test_num]: value for test_num, value in draft.tests.items()}

        return DecodedPart(
            part_id=prr.part_id or f"P{draft.index}",
            x_coord=prr.x_coord,
            y_coord=prr.y_coord,
            hard_bin=prr.hard_bin,
            soft_bin=prr.soft_bin,
            site_number=prr.site_num,
            test_time_ms=prr.test_time,
            test_results=test_results,
        )

    def _build_header(self) -> LotHeader:
        mir = self._master
        guessed = set()

        lot_id = mir.lot_id if mir else ""
        if not lot_id:
            lot_id = lot_id_from_filename(self.source_name) or "UNKNOWN_LOT"
            guessed.add("lot_id")

        part_type = mir.part_type if mir else ""
        if not part_type:
            part_type = part_type_from_filename(self.source_name) or "UNKNOWN_PART"
            guessed.add("part_type")

        if mir is None:
            self.diagnostics.append(
                Diagnostic("warning", "No MIR record found; lot header derived from file name")
            )

        return LotHeader(
            file_version=str(self._file_attributes.stdf_version) if self._file_attributes else "UNKNOWN",
            lot_id=lot_id,
            part_type=part_type,
            test_program=(mir.job_name if mir and mir.job_name else "UNKNOWN"),
            test_time_start=_unix_to_datetime(mir.start_time) if mir else None,
            operator_id=(mir.operator if mir and mir.operator else "UNKNOWN"),
            test_temperature=_parse_temperature(mir.test_temperature) if mir else None,
            heuristic_fields=frozenset(guessed),
        )

    def _build_wafer_info(self) -> WaferInfo | None:
        if self._wafer_start is None:
            return None

        guessed = set()
        wafer_id = self._wafer_start.wafer_id
        if not wafer_id:
            wafer_id = wafer_id_from_filename(self.source_name) or "UNKNOWN_WAFER"
            guessed.add("wafer_id")

        wcr = self._wafer_config
        if wcr is None:
            return WaferInfo(wafer_id=wafer_id, heuristic_fields=frozenset(guessed))

        return WaferInfo(
            wafer_id=wafer_id,
            size_x=wcr.die_width,
            size_y=wcr.die_height,
            units=WAFER_UNITS.get(wcr.units),
            flat_direction=FLAT_DIRECTIONS.get(wcr.flat.upper()) if wcr.flat else None,
            center_x=wcr.center_x,
            center_y=wcr.center_y,
            wafer_size=wcr.wafer_size,
            heuristic_fields=frozenset(guessed),
        )

    def finalize(self, tally: ScanTally, scan_diagnostics: Iterable[Diagnostic] = ()) -> ParsedTestData:
        """
        Build the final result once every record has been consumed.

        Args:
            tally: Error tally from the scanner
            scan_diagnostics: Diagnostics recorded by the scanner

        Returns:
            Parsed test data, flagged as degraded when the source was unreliable
            or produced no parts
        """
        test_names = self._resolve_test_names()
        parts = [self._build_part(draft, test_names) for draft in self._drafts]
        header = self._build_header()

        bin_summary = {
            bin_num: BinEntry(
                count=count,
                description=self._bin_names.get(bin_num, "Pass" if bin_num == 1 else "Fail"),
            )
            for bin_num, count in sorted(self._bin_counts.items())
        }

        degraded_reasons = []
        if tally.unreliable:
            degraded_reasons.append(
                f"Error cap exceeded ({tally.parse_errors} structural errors); source is unreliable"
            )
        if not parts:
            degraded_reasons.append("No parts decoded")

        return ParsedTestData(
            source_name=self.source_name,
            header=header,
            wafer_info=self._build_wafer_info(),
            parts=parts,
            summary=summarize(parts),
            bin_summary=bin_summary,
            test_statistics=compute_test_statistics(parts),
            scan=tally,
            interpret_errors=self.interpret_errors,
            record_counts=dict(self._record_counts),
            degraded=bool(degraded_reasons),
            degraded_reasons=degraded_reasons,
            diagnostics=[*scan_diagnostics, *self.diagnostics],
        )


def aggregate(scanner: RecordScanner, source_name: str = "") -> ParsedTestData:
    """
    Drain a scanner through a fresh aggregator.

    Args:
        scanner: Unconsumed record scanner
        source_name: File name, used for heuristic header fields

    Returns:
        Parsed test data

    Raises:
        ParseCancelled: If the scanner's cancellation flag was set
    """
    aggregator = TestDataAggregator(source_name, scanner.byte_order)
    for record in scanner:
        aggregator.add_record(record)

    if scanner.tally.cancelled:
        raise ParseCancelled(f"Parsing of {source_name or 'buffer'} was cancelled")

    return aggregator.finalize(scanner.tally, scanner.diagnostics)


def combine_results(results: list[ParsedTestData]) -> ParsedTestData:
    """
    Merge several parsed sources into one.

    Parts are concatenated and bin counts re-summed. Summary and statistics are
    derived again from the merged part list.

    Args:
        results: Parsed results, one per source

    Returns:
        Merged result

    Raises:
        ValueError: If no results are given
    """
    if not results:
        raise ValueError("No STDF results to combine")

    if len(results) == 1:
        return results[0]

    parts = [part for result in results for part in result.parts]

    bin_summary: dict[int, BinEntry] = {}
    for result in results:
        for bin_num, entry in result.bin_summary.items():
            if bin_num not in bin_summary:
                bin_summary[bin_num] = BinEntry(count=0, description=entry.description)
            bin_summary[bin_num].count += entry.count

    primary = next((result for result in results if not result.degraded), results[0])

    degraded_reasons = [
        f"{result.source_name}: {reason}"
        for result in results
        for reason in result.degraded_reasons
    ]

    return ParsedTestData(
        source_name=", ".join(result.source_name for result in results),
        header=primary.header,
        wafer_info=primary.wafer_info,
        parts=parts,
        summary=summarize(parts),
        bin_summary=dict(sorted(bin_summary.items())),
        test_statistics=compute_test_statistics(parts),
        scan=reduce(ScanTally.merge, (result.scan for result in results)),
        interpret_errors=sum(result.interpret_errors for result in results),
        record_counts=dict(sum((Counter(result.record_counts) for result in results), Counter())),
        degraded=bool(degraded_reasons),
        degraded_reasons=degraded_reasons,
        diagnostics=[diag for result in results for diag in result.diagnostics],
    )
