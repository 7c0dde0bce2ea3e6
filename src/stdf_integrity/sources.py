"""Source classification, ZIP unpacking and text-source bundles."""

import io
import logging
import re
import zipfile
from enum import Enum
from pathlib import Path, PurePath
from typing import Iterable, Mapping

from .config import ValidationConfig
from .exceptions import SourceReadError
from .lot_summary import parse_lot_summary
from .maps import parse_coordinate_map, parse_far_summary
from .models import CoordinateMap, FarSummary, LotSummary, MapFlavor, TextSourceResult
from .validator import validate

logger = logging.getLogger(__name__)

_EDS_SUFFIX = re.compile(r"\.(\d{2})$")
_FOUNDRY_SUFFIX = re.compile(r"\.f(\d{2})$", re.IGNORECASE)

MAX_SLOT = 25


class SourceKind(str, Enum):
    STDF = "stdf"
    EDS_MAP = "eds_map"
    FOUNDRY_MAP = "foundry_map"
    FAR = "far"
    LOT_SUMMARY = "lot_summary"
    ZIP = "zip"
    UNKNOWN = "unknown"


TEXT_KINDS = (SourceKind.EDS_MAP, SourceKind.FOUNDRY_MAP, SourceKind.FAR, SourceKind.LOT_SUMMARY)


def _slot_in_range(match: re.Match | None) -> bool:
    return match is not None and 1 <= int(match.group(1)) <= MAX_SLOT


def classify_source(name: str) -> SourceKind:
    """
    Classify a file by name.

    Args:
        name: File name or path

    Returns:
        SourceKind for the file
    """
    base = PurePath(name).name
    lower = base.lower()

    if "lotsum" in lower:
        return SourceKind.LOT_SUMMARY
    if lower.endswith(".far"):
        return SourceKind.FAR
    if lower.endswith(".zip"):
        return SourceKind.ZIP
    if lower.endswith((".stdf", ".std", ".stdf.gz", ".std.gz")):
        return SourceKind.STDF
    if _slot_in_range(_FOUNDRY_SUFFIX.search(base)):
        return SourceKind.FOUNDRY_MAP
    if _slot_in_range(_EDS_SUFFIX.search(base)):
        return SourceKind.EDS_MAP
    return SourceKind.UNKNOWN


def extract_zip(data: bytes) -> dict[str, bytes]:
    """
    Unpack the supported members of a ZIP archive.

    Args:
        data: Archive bytes

    Returns:
        Dictionary mapping member name to its bytes. Directories, nested
        archives and unsupported files are left out.

    Raises:
        SourceReadError: If the archive is corrupt
    """
    members = {}
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            for info in archive.infolist():
                if info.is_dir():
                    continue
                kind = classify_source(info.filename)
                if kind in (SourceKind.UNKNOWN, SourceKind.ZIP):
                    logger.debug("Skipping archive member %s", info.filename)
                    continue
                members[info.filename] = archive.read(info)
    except (zipfile.BadZipFile, zipfile.LargeZipFile, OSError) as e:
        raise SourceReadError(f"Corrupt ZIP archive: {e}") from e
    return members


def load_sources(paths: Iterable[Path]) -> dict[str, bytes]:
    """
    Read files, directories and ZIP archives into named buffers.

    Directories are walked recursively. ZIP archives are expanded in place.

    Args:
        paths: Files or directories

    Returns:
        Dictionary mapping file name to its bytes

    Raises:
        SourceReadError: If a file cannot be read
    """
    files: list[Path] = []
    for path in paths:
        path = Path(path)
        if path.is_dir():
            files.extend(sorted(p for p in path.rglob("*") if p.is_file()))
        else:
            files.append(path)

    buffers = {}
    for file_path in files:
        kind = classify_source(file_path.name)
        if kind == SourceKind.UNKNOWN:
            logger.debug("Skipping unsupported file %s", file_path)
            continue
        try:
            data = file_path.read_bytes()
        except OSError as e:
            raise SourceReadError(f"Cannot read {file_path}: {e}") from e

        if kind == SourceKind.ZIP:
            buffers.update(extract_zip(data))
        else:
            buffers[file_path.name] = data
    return buffers


def parse_text_sources(
    buffers: Mapping[str, bytes],
    config: ValidationConfig | None = None,
) -> TextSourceResult:
    """
    Parse a bundle of wafer maps, FAR and lot summary files and validate them.

    Args:
        buffers: File name to content bytes
        config: Validation thresholds

    Returns:
        TextSourceResult with maps sorted by slot number, the summaries found
        and the integrity report
    """
    maps: list[CoordinateMap] = []
    far_summary: FarSummary | None = None
    lot_summary: LotSummary | None = None
    skipped = []

    for name, data in buffers.items():
        kind = classify_source(name)
        if kind not in TEXT_KINDS:
            skipped.append(name)
            continue

        content = data.decode("utf-8", errors="replace")
        if kind == SourceKind.EDS_MAP:
            maps.append(parse_coordinate_map(content, name, MapFlavor.EDS))
        elif kind == SourceKind.FOUNDRY_MAP:
            maps.append(parse_coordinate_map(content, name, MapFlavor.FOUNDRY))
        elif kind == SourceKind.FAR:
            if far_summary is not None:
                logger.warning("Multiple FAR files; ignoring %s", name)
                skipped.append(name)
                continue
            far_summary = parse_far_summary(content)
        elif kind == SourceKind.LOT_SUMMARY:
            if lot_summary is not None:
                logger.warning("Multiple lot summary files; ignoring %s", name)
                skipped.append(name)
                continue
            lot_summary = parse_lot_summary(content)

    maps.sort(key=lambda m: (m.header.slot_number, m.source_name))

    return TextSourceResult(
        coordinate_maps=maps,
        far_summary=far_summary,
        lot_summary=lot_summary,
        report=validate(maps, far_summary, lot_summary, config),
        skipped=skipped,
    )
