"""Record scanner for STDF byte streams.

Walks a byte buffer header by header and yields ``RawRecord`` objects. Malformed
headers never raise: they are counted, and the cursor is moved forward to the
next plausible record header (resynchronization). Resynchronization is a
heuristic. A corrupted stream can still yield records that happen to look
valid.
"""

import logging
import struct
import threading
from collections import Counter
from typing import Iterator

from .config import DecoderConfig
from .models import Diagnostic, ScanTally
from .records import RawRecord, is_known_kind

logger = logging.getLogger(__name__)

HEADER_SIZE = 4  # REC_LEN (U2) + REC_TYP (U1) + REC_SUB (U1)
FAR_CODES = (0, 10)

BYTE_ORDER_PREFIX = {"big": ">", "little": "<"}


def detect_byte_order(buffer: bytes) -> str:
    """
    Determine the stream byte order from its leading FAR record.

    A FAR always has a two byte payload, so its REC_LEN reads ``00 02`` when
    written big-endian and ``02 00`` when written little-endian.

    Args:
        buffer: Raw STDF bytes

    Returns:
        "little" for a little-endian FAR header, otherwise "big"
    """
    if len(buffer) >= HEADER_SIZE and (buffer[2], buffer[3]) == FAR_CODES:
        if bytes(buffer[0:2]) == b"\x02\x00":
            return "little"
    return "big"


def error_cap_for(size: int, config: DecoderConfig) -> int:
    """Number of structural errors tolerated before a buffer is unreliable."""
    return max(config.min_error_cap, size // config.error_cap_divisor)


class RecordScanner:
    """Lazy, single-use iterator over the records of one byte buffer."""

    def __init__(
        self,
        buffer: bytes,
        config: DecoderConfig | None = None,
        cancel: threading.Event | None = None,
    ):
        """
        Initialize the scanner.

        Args:
            buffer: Complete STDF byte stream (already decompressed)
            config: Decoder limits; defaults are used when omitted
            cancel: Optional flag checked between records to abort the scan
        """
        self.buffer = bytes(buffer)
        self.config = config or DecoderConfig()
        self.cancel = cancel

        byte_order = self.config.byte_order
        if byte_order == "auto":
            byte_order = detect_byte_order(self.buffer)
        if byte_order not in BYTE_ORDER_PREFIX:
            raise ValueError(f"Unknown byte order: {byte_order!r}")
        self.byte_order = byte_order
        self._rec_len = struct.Struct(BYTE_ORDER_PREFIX[byte_order] + "H")

        self.tally = ScanTally(
            error_cap=error_cap_for(len(self.buffer), self.config),
            byte_order=byte_order,
        )
        self.diagnostics: list[Diagnostic] = []
        self._started = False

    def __iter__(self) -> Iterator[RawRecord]:
        if self._started:
            raise RuntimeError("RecordScanner can only be iterated once")
        self._started = True
        return self._scan()

    def _note(self, level: str, message: str, offset: int | None = None) -> None:
        self.diagnostics.append(Diagnostic(level, message, offset))
        logger.log(logging.WARNING if level != "info" else logging.DEBUG, "%s (offset %s)", message, offset)

    def _read_header(self, offset: int) -> tuple[int, int, int]:
        (rec_len,) = self._rec_len.unpack_from(self.buffer, offset)
        return rec_len, self.buffer[offset + 2], self.buffer[offset + 3]

    def _is_plausible(self, offset: int) -> bool:
        rec_len, rec_typ, rec_sub = self._read_header(offset)
        return (
            0 < rec_len <= self.config.max_record_length
            and is_known_kind(rec_typ, rec_sub)
            and offset + HEADER_SIZE + rec_len <= len(self.buffer)
        )

    def resync(self, start: int) -> int:
        """
        Find the next plausible record header at or after ``start``.

        Args:
            start: First offset to try (one past the failure point)

        Returns:
            Offset of the next plausible header, or the buffer end when none
            exists. Never smaller than ``start``.
        """
        size = len(self.buffer)
        for candidate in range(start, size - HEADER_SIZE + 1):
            if self._is_plausible(candidate):
                return candidate
        return max(start, size)

    def _scan(self) -> Iterator[RawRecord]:
        buffer = self.buffer
        size = len(buffer)
        tally = self.tally
        offset = 0

        while size - offset >= HEADER_SIZE:
            if self.cancel is not None and self.cancel.is_set():
                tally.cancelled = True
                self._note("warning", "Scan cancelled", offset)
                break

            rec_len, rec_typ, rec_sub = self._read_header(offset)
            end = offset + HEADER_SIZE + rec_len

            if rec_len > self.config.max_record_length or end > size:
                tally.parse_errors += 1
                if rec_len > self.config.max_record_length:
                    self._note("warning", f"Invalid record length {rec_len}", offset)
                else:
                    self._note(
                        "warning",
                        f"Record ({rec_typ},{rec_sub}) length {rec_len} overruns buffer "
                        f"({size - offset - HEADER_SIZE} bytes remaining)",
                        offset,
                    )

                if tally.parse_errors >= tally.error_cap:
                    tally.unreliable = True
                    self._note("error", f"Maximum parse errors ({tally.error_cap}) reached", offset)
                    break

                next_offset = self.resync(offset + 1)
                if next_offset < size:
                    tally.recovered_records += 1
                    self._note("info", f"Resynchronized at offset {next_offset}", offset)
                offset = next_offset
                tally.bytes_consumed = offset
                continue

            record = RawRecord(
                rec_typ=rec_typ,
                rec_sub=rec_sub,
                length=rec_len,
                payload=buffer[offset + HEADER_SIZE:end],
                offset=offset,
            )
            offset = end
            tally.records += 1
            tally.bytes_consumed = offset
            yield record

        logger.debug(
            "Scan finished: %d records, %d errors, %d/%d bytes",
            tally.records, tally.parse_errors, tally.bytes_consumed, size,
        )


def scan_records(
    buffer: bytes,
    config: DecoderConfig | None = None,
) -> tuple[list[RawRecord], ScanTally]:
    """
    Scan a buffer eagerly.

    Args:
        buffer: STDF byte stream
        config: Decoder limits

    Returns:
        Tuple of (records, tally)
    """
    scanner = RecordScanner(buffer, config)
    records = list(scanner)
    return records, scanner.tally


def get_record_counts(buffer: bytes, config: DecoderConfig | None = None) -> dict[str, int]:
    """
    Get counts of each record type in a buffer.

    Args:
        buffer: STDF byte stream
        config: Decoder limits

    Returns:
        Dictionary mapping record type name to count
    """
    return dict(Counter(record.name for record in RecordScanner(buffer, config)))
