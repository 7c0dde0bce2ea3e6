"""Parsers for wafer coordinate maps and FAR summary files.

Two map flavors are supported. EDS maps (``.01`` - ``.25``) carry a header
block such as::

    Device       : ABC123
    Lot NO       : LOT001
    Slot No      : 1
    Wafer ID     : LOT001-01
    Total test die : 25
    Pass Die     : 20
    Fail Die     : 5
    Yield        : 80.00%

followed by a grid of ``1`` (pass), ``X`` (fail) and ``.`` (no die) cells.
Foundry maps (``.f01`` - ``.f25``) use ``DEVICE``, ``WAFERID``, ``X``, ``Y``,
``GOOD``, ``FAIL`` and ``FLAT`` keys and may also contain ``T`` cells.
"""

import logging
import re
from collections import Counter
from pathlib import PurePath

from .models import CoordinateMap, Diagnostic, FarSummary, MapFlavor, MapHeader, WaferMapping

logger = logging.getLogger(__name__)

ROW_PATTERNS = {
    MapFlavor.EDS: re.compile(r"^[1X.\s]+$"),
    MapFlavor.FOUNDRY: re.compile(r"^[1X.T\s]+$"),
}

# Normalized key -> MapHeader attribute
EDS_KEYS = {
    "device": "device",
    "lot no": "lot_number",
    "slot no": "slot_number",
    "wafer id": "wafer_id",
    "wafer size": "wafer_size",
    "flat dir": "flat_direction",
    "total test die": "total_test_die",
    "pass die": "pass_die",
    "fail die": "fail_die",
    "yield": "declared_yield",
}

FOUNDRY_KEYS = {
    "device": "device",
    "waferid": "wafer_id",
    "x": "grid_x",
    "y": "grid_y",
    "good": "pass_die",
    "fail": "fail_die",
    "flat": "flat_direction",
}

INT_FIELDS = {"slot_number", "total_test_die", "pass_die", "fail_die", "grid_x", "grid_y"}

_SLOT_SUFFIX = re.compile(r"\.f?(\d{2})$", re.IGNORECASE)
_LEADING_INT = re.compile(r"[-+]?\d+")
_LEADING_FLOAT = re.compile(r"[-+]?\d+(?:\.\d+)?")


def _split_key_value(line: str) -> tuple[str, str] | None:
    """Split ``Key : Value`` into a normalized key and a stripped value."""
    if ":" not in line:
        return None
    key, value = line.split(":", 1)
    return " ".join(key.split()).lower(), value.strip()


def _to_int(value: str) -> int:
    match = _LEADING_INT.match(value.strip())
    return int(match.group(0)) if match else 0


def _to_float(value: str) -> float:
    match = _LEADING_FLOAT.match(value.strip().rstrip("%").strip())
    return float(match.group(0)) if match else 0.0


def slot_from_filename(file_name: str) -> int | None:
    """Slot number encoded in a ``.NN`` or ``.fNN`` extension."""
    match = _SLOT_SUFFIX.search(PurePath(file_name).name)
    return int(match.group(1)) if match else None


def parse_coordinate_map(
    content: str,
    source_name: str = "",
    flavor: MapFlavor = MapFlavor.EDS,
) -> CoordinateMap:
    """
    Parse one wafer map text file.

    Header lines are only read before the first grid row. Lines that are
    neither a known header key nor a grid row are skipped.

    Args:
        content: File content
        source_name: File name, used for the slot number fallback
        flavor: Map layout (EDS or foundry)

    Returns:
        CoordinateMap with its header, grid rows and per-code cell counts
    """
    key_table = FOUNDRY_KEYS if flavor == MapFlavor.FOUNDRY else EDS_KEYS
    row_pattern = ROW_PATTERNS[flavor]

    header = MapHeader()
    rows: list[list[str]] = []
    bin_counts: Counter = Counter()
    diagnostics: list[Diagnostic] = []
    seen_keys = set()

    for line in content.splitlines():
        line = line.strip()
        if not line:
            continue

        if row_pattern.match(line):
            row = list("".join(line.split()))
            rows.append(row)
            bin_counts.update(row)
            continue

        if rows:
            continue

        pair = _split_key_value(line)
        if pair is None:
            continue
        key, value = pair
        attr = key_table.get(key)
        if attr is None:
            continue

        seen_keys.add(attr)
        if attr in INT_FIELDS:
            setattr(header, attr, _to_int(value))
        elif attr == "declared_yield":
            header.declared_yield = _to_float(value)
        else:
            setattr(header, attr, value)

    if "slot_number" not in seen_keys:
        header.slot_number = slot_from_filename(source_name) or 0

    if flavor == MapFlavor.FOUNDRY:
        header.total_test_die = header.pass_die + header.fail_die
        if header.total_test_die > 0:
            header.declared_yield = header.pass_die / header.total_test_die * 100

        if rows:
            for label, attr, code in (("GOOD", "pass_die", "1"), ("FAIL", "fail_die", "X")):
                declared = getattr(header, attr)
                actual = bin_counts.get(code, 0)
                if attr in seen_keys and declared != actual:
                    message = f"{label} count mismatch: header={declared}, grid={actual}"
                    diagnostics.append(Diagnostic("warning", message))
                    logger.warning("%s: %s", source_name or "map", message)

    if not rows:
        logger.debug("%s: no grid rows found", source_name or "map")

    return CoordinateMap(
        source_name=source_name,
        flavor=flavor,
        header=header,
        rows=rows,
        bin_counts=dict(bin_counts),
        diagnostics=diagnostics,
    )


def parse_far_summary(content: str) -> FarSummary:
    """
    Parse a FAR summary file.

    The file has a title line, ``Device``, ``Lot NO`` and ``Total wafer``
    header lines, then a header row naming MAPPING, WAFER_ID and BIN columns
    followed by tab-delimited ``mapping, wafer_id, bin1_count`` rows.

    Args:
        content: File content

    Returns:
        FarSummary with the declared per-wafer BIN1 counts
    """
    summary = FarSummary()
    in_table = False

    for raw_line in content.splitlines():
        line = raw_line.strip()
        if not line:
            continue

        if not in_table:
            if "MAPPING" in line and "WAFER_ID" in line and "BIN" in line:
                in_table = True
                continue
            if "FARADAY" in line.upper() and not summary.title:
                summary.title = line
                continue

            pair = _split_key_value(line)
            if pair is None:
                continue
            key, value = pair
            if key == "device":
                summary.device = value
            elif key == "lot no":
                summary.lot_number = value
            elif key == "total wafer":
                summary.total_wafer = _to_int(value)
            continue

        if "\t" not in line:
            continue
        columns = [column.strip() for column in line.split("\t")]
        if len(columns) < 3:
            continue
        summary.wafer_mappings.append(
            WaferMapping(mapping=columns[0], wafer_id=columns[1], bin1_count=_to_int(columns[2]))
        )

    return summary
