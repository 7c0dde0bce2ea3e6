"""Exception types raised by the decoder."""


class DecoderError(Exception):
    """Base class for fatal decoder errors."""


class EmptySourceError(DecoderError):
    """The source contained no bytes at all."""


class SourceReadError(DecoderError):
    """The source could not be read or decompressed."""


class SourceTooLargeError(DecoderError):
    """The source exceeds the configured maximum file size."""

    def __init__(self, name: str, size: int, limit: int):
        super().__init__(
            f"{name} is {size / 1024 / 1024:.2f} MB, limit is {limit / 1024 / 1024:.2f} MB"
        )
        self.name = name
        self.size = size
        self.limit = limit


class ParseCancelled(DecoderError):
    """Parsing was aborted through the cancellation flag."""


class InterpretError(DecoderError):
    """A single record's payload does not match its expected layout.

    Raised by the record interpreters and caught by the aggregator, which
    skips the offending record and keeps going.
    """

    def __init__(self, record_name: str, message: str, offset: int | None = None):
        location = f" at offset {offset}" if offset is not None else ""
        super().__init__(f"{record_name}{location}: {message}")
        self.record_name = record_name
        self.offset = offset
