"""Parser for lot summary text files (``*lotSum*``)."""

import logging
import re

from .models import LotSummary, LotSummaryHeader, LotTotals, WaferSummary

logger = logging.getLogger(__name__)

# Header markers, checked in order, -> LotSummaryHeader attribute
HEADER_MARKERS = (
    (("Lot Number:", "LOT_NO:"), "lot_number"),
    (("Device:", "DEVICE:"), "device"),
    (("Test Program:", "PROGRAM:"), "test_program"),
    (("Tester:", "TESTER:"), "tester_type"),
    (("Start Time:", "START_TIME:"), "start_time"),
    (("End Time:", "END_TIME:"), "end_time"),
    (("Total Wafers:", "WAFER_COUNT:"), "total_wafers"),
)

TABLE_END_MARKERS = ("SUMMARY", "Total:", "Overall:")

_SEPARATOR = re.compile(r"^[-=\s]+$")


def _extract_value(line: str) -> str:
    colon = line.find(":")
    if colon != -1:
        return line[colon + 1:].strip()
    return ""


def _is_table_header(line: str) -> bool:
    return "WAFER" in line and "DIES" in line and "YIELD" in line


def _parse_wafer_line(line: str) -> WaferSummary | None:
    """Parse ``number id total pass ...``; returns None for non-data lines."""
    parts = line.split()
    if len(parts) < 4:
        return None

    try:
        total_dies = int(parts[2])
        pass_dies = int(parts[3])
    except ValueError:
        logger.debug("Skipping lot summary line: %s", line)
        return None

    try:
        wafer_number = int(parts[0])
    except ValueError:
        wafer_number = 0

    return WaferSummary(
        wafer_number=wafer_number,
        wafer_id=parts[1] or f"W{wafer_number}",
        total_dies=total_dies,
        pass_dies=pass_dies,
        fail_dies=total_dies - pass_dies,
        yield_percent=(pass_dies / total_dies) * 100 if total_dies > 0 else 0.0,
    )


def calculate_totals(wafer_summaries: list[WaferSummary]) -> LotTotals:
    """Derive lot totals from the per-wafer rows."""
    total_dies = sum(w.total_dies for w in wafer_summaries)
    total_pass = sum(w.pass_dies for w in wafer_summaries)
    return LotTotals(
        total_wafers=len(wafer_summaries),
        total_dies=total_dies,
        total_pass=total_pass,
        total_fail=sum(w.fail_dies for w in wafer_summaries),
        overall_yield=(total_pass / total_dies) * 100 if total_dies > 0 else 0.0,
    )


def parse_lot_summary(content: str) -> LotSummary:
    """
    Parse a lot summary file.

    Args:
        content: File content

    Returns:
        LotSummary with header fields, one WaferSummary per table row and
        totals derived from those rows
    """
    header = LotSummaryHeader()
    wafer_summaries: list[WaferSummary] = []
    in_table = False

    for raw_line in content.splitlines():
        line = raw_line.strip()
        if not line:
            continue

        if not in_table:
            if _is_table_header(line):
                in_table = True
                continue
            for markers, attr in HEADER_MARKERS:
                if any(marker in line for marker in markers):
                    value = _extract_value(line)
                    if attr == "total_wafers":
                        header.total_wafers = int(value) if value.isdigit() else 0
                    else:
                        setattr(header, attr, value)
                    break
            continue

        if _SEPARATOR.match(line):
            continue
        if any(marker in line for marker in TABLE_END_MARKERS):
            break

        wafer = _parse_wafer_line(line)
        if wafer is not None:
            wafer_summaries.append(wafer)

    return LotSummary(
        header=header,
        wafer_summaries=wafer_summaries,
        overall=calculate_totals(wafer_summaries),
    )
