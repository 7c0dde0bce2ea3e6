import gzip
import threading

import pytest

from stdf_integrity.config import DecoderConfig
from stdf_integrity.exceptions import (
    EmptySourceError,
    ParseCancelled,
    SourceReadError,
    SourceTooLargeError,
)
from stdf_integrity.parser import parse_stdf, parse_stdf_bytes, parse_stdf_files, read_source

from builders import simple_file


class TestParseBytes:
    def test_empty_buffer_raises(self, decoder_config):
        with pytest.raises(EmptySourceError):
            parse_stdf_bytes(b"", "empty.stdf", decoder_config)

    def test_buffer_over_limit_raises(self):
        config = DecoderConfig(byte_order="big", max_file_size=16)
        with pytest.raises(SourceTooLargeError) as exc:
            parse_stdf_bytes(simple_file([1]), "big.stdf", config)
        assert exc.value.limit == 16

    def test_cancelled_before_start(self, decoder_config):
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(ParseCancelled):
            parse_stdf_bytes(simple_file([1, 1]), "x.stdf", decoder_config, cancel)

    def test_garbage_is_degraded_not_fatal(self, decoder_config):
        result = parse_stdf_bytes(b"\xff" * 64, "junk.stdf", decoder_config)
        assert result.degraded
        assert result.parts == []

    def test_default_config_detects_byte_order(self):
        result = parse_stdf_bytes(simple_file([1, 2, 1], order="<"), "le.stdf")
        assert result.scan.byte_order == "little"
        assert result.summary.total_parts == 3
        assert result.header.lot_id == "LOT001"


class TestParseFile:
    def test_plain_file(self, stdf_file, decoder_config):
        result = parse_stdf(stdf_file, decoder_config)
        assert result.source_name == stdf_file.name
        assert result.summary.total_parts == 4
        assert result.summary.yield_percent == 75.0

    def test_gzip_file(self, tmp_path, decoder_config):
        path = tmp_path / "lot.stdf.gz"
        with gzip.open(path, "wb") as f:
            f.write(simple_file([1, 2]))
        result = parse_stdf(path, decoder_config)
        assert result.summary.total_parts == 2

    def test_corrupt_gzip_raises(self, tmp_path):
        path = tmp_path / "broken.stdf.gz"
        path.write_bytes(b"\x1f\x8b\x08\x00garbage")
        with pytest.raises(SourceReadError):
            read_source(path)

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(SourceReadError):
            parse_stdf(tmp_path / "missing.stdf")

    def test_file_over_limit_checked_before_read(self, stdf_file):
        with pytest.raises(SourceTooLargeError):
            parse_stdf(stdf_file, DecoderConfig(max_file_size=10))


class TestParseFiles:
    def test_outcomes_in_input_order(self, tmp_path, decoder_config):
        paths = []
        for index, bins in enumerate([[1], [1, 2], [2, 2, 2]]):
            path = tmp_path / f"f{index}.stdf"
            path.write_bytes(simple_file(bins))
            paths.append(path)
        empty = tmp_path / "empty.stdf"
        empty.write_bytes(b"")
        paths.insert(1, empty)

        completed = []
        outcomes = parse_stdf_files(paths, max_workers=3, config=decoder_config, on_complete=completed.append)

        assert [o.path for o in outcomes] == paths
        assert [o.ok for o in outcomes] == [True, False, True, True]
        assert isinstance(outcomes[1].error, EmptySourceError)
        assert [o.result.summary.total_parts for o in outcomes if o.ok] == [1, 2, 3]
        assert len(completed) == 4

    def test_no_paths(self):
        assert parse_stdf_files([]) == []

    def test_shared_cancel_flag(self, stdf_file, decoder_config):
        cancel = threading.Event()
        cancel.set()
        outcomes = parse_stdf_files([stdf_file], config=decoder_config, cancel=cancel)
        assert isinstance(outcomes[0].error, ParseCancelled)
