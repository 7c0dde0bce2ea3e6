"""Entry points for decoding STDF files and buffers."""

import gzip
import logging
import threading
import zlib
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable

from .aggregator import aggregate
from .config import DecoderConfig
from .exceptions import DecoderError, EmptySourceError, SourceReadError, SourceTooLargeError
from .models import ParsedTestData
from .scanner import RecordScanner

logger = logging.getLogger(__name__)

GZIP_SUFFIXES = (".gz", ".gzip")


@dataclass
class FileOutcome:
    """Result of decoding one file in a batch."""

    path: Path
    result: ParsedTestData | None = None
    error: DecoderError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def parse_stdf_bytes(
    data: bytes,
    source_name: str = "",
    config: DecoderConfig | None = None,
    cancel: threading.Event | None = None,
) -> ParsedTestData:
    """
    Decode an in-memory STDF byte stream.

    Args:
        data: Uncompressed STDF bytes
        source_name: Name used in diagnostics and for header heuristics
        config: Decoder limits
        cancel: Optional cancellation flag

    Returns:
        ParsedTestData for the buffer

    Raises:
        EmptySourceError: If the buffer is empty
        SourceTooLargeError: If the buffer exceeds the configured size limit
        ParseCancelled: If the cancellation flag was set during the scan
    """
    config = config or DecoderConfig()

    if not data:
        raise EmptySourceError(f"{source_name or 'buffer'} is empty")
    if len(data) > config.max_file_size:
        raise SourceTooLargeError(source_name or "buffer", len(data), config.max_file_size)

    scanner = RecordScanner(data, config, cancel)
    result = aggregate(scanner, source_name)

    logger.info(
        "Decoded %s: %d parts, %d records, %d parse errors",
        source_name or "buffer",
        result.summary.total_parts,
        result.scan.records,
        result.scan.parse_errors,
    )
    if result.degraded:
        logger.warning("%s is degraded: %s", source_name or "buffer", "; ".join(result.degraded_reasons))
    return result


def read_source(file_path: Path) -> bytes:
    """
    Read a file, transparently decompressing gzip.

    Args:
        file_path: Path to an STDF file (.stdf, .std, or .gz)

    Returns:
        Raw STDF bytes

    Raises:
        SourceReadError: If the file cannot be read or the gzip stream is corrupt
    """
    try:
        if file_path.suffix.lower() in GZIP_SUFFIXES:
            with gzip.open(file_path, "rb") as f:
                return f.read()
        with open(file_path, "rb") as f:
            return f.read()
    except (OSError, EOFError, zlib.error) as e:
        raise SourceReadError(f"Cannot read {file_path}: {e}") from e


def parse_stdf(
    file_path: Path,
    config: DecoderConfig | None = None,
    cancel: threading.Event | None = None,
) -> ParsedTestData:
    """
    Convenience function to parse an STDF file.

    Args:
        file_path: Path to STDF file
        config: Decoder limits
        cancel: Optional cancellation flag

    Returns:
        ParsedTestData containing all parsed records
    """
    file_path = Path(file_path)
    config = config or DecoderConfig()

    try:
        size = file_path.stat().st_size
    except OSError as e:
        raise SourceReadError(f"Cannot read {file_path}: {e}") from e
    if size > config.max_file_size:
        raise SourceTooLargeError(file_path.name, size, config.max_file_size)

    return parse_stdf_bytes(read_source(file_path), file_path.name, config, cancel)


def parse_stdf_files(
    file_paths: Iterable[Path],
    max_workers: int = 4,
    config: DecoderConfig | None = None,
    cancel: threading.Event | None = None,
    on_complete: Callable[[FileOutcome], None] | None = None,
) -> list[FileOutcome]:
    """
    Parse several STDF files concurrently.

    Files are independent. A failure in one file is reported in its outcome
    and does not affect the others.

    Args:
        file_paths: Files to decode
        max_workers: Maximum number of files decoded at once
        config: Decoder limits
        cancel: Optional cancellation flag shared by every file
        on_complete: Optional callback invoked as each file finishes

    Returns:
        One FileOutcome per input path, in input order
    """
    paths = [Path(p) for p in file_paths]
    if not paths:
        return []

    def run(path: Path) -> FileOutcome:
        try:
            outcome = FileOutcome(path, result=parse_stdf(path, config, cancel))
        except DecoderError as e:
            logger.warning("Failed to decode %s: %s", path, e)
            outcome = FileOutcome(path, error=e)
        if on_complete is not None:
            on_complete(outcome)
        return outcome

    with ThreadPoolExecutor(max_workers=max(1, max_workers)) as executor:
        return list(executor.map(run, paths))
