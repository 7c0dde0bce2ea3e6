"""stdf-integrity - resilient STDF decoding and wafer-map integrity checks."""

__version__ = "0.1.0"

from .aggregator import combine_results
from .exceptions import (
    DecoderError,
    EmptySourceError,
    InterpretError,
    ParseCancelled,
    SourceReadError,
    SourceTooLargeError,
)
from .maps import parse_coordinate_map, parse_far_summary
from .lot_summary import parse_lot_summary
from .parser import parse_stdf, parse_stdf_bytes, parse_stdf_files
from .sources import parse_text_sources
from .validator import validate

__all__ = [
    "__version__",
    "combine_results",
    "DecoderError",
    "EmptySourceError",
    "InterpretError",
    "ParseCancelled",
    "SourceReadError",
    "SourceTooLargeError",
    "parse_coordinate_map",
    "parse_far_summary",
    "parse_lot_summary",
    "parse_stdf",
    "parse_stdf_bytes",
    "parse_stdf_files",
    "parse_text_sources",
    "validate",
]
