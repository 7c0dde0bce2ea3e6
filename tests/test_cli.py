import json

import pytest
from click.testing import CliRunner

from stdf_integrity.cli import main

from builders import simple_file

FAR_FILE = "FARADAY FAR\nLot NO : LOT001\nTotal wafer : {total}\nMAPPING\tWAFER_ID\tBIN1\n01\tLOT001-01\t19\n"


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "decoder:\n"
        "  byte_order: big\n"
        "storage:\n"
        f"  data_dir: {tmp_path / 'data'}\n"
        f"  session_file: {tmp_path / 'data' / 'sessions.json'}\n"
    )
    return path


@pytest.fixture
def map_dir(tmp_path, make_eds_map):
    directory = tmp_path / "maps"
    directory.mkdir()
    (directory / "LOT001.01").write_text(make_eds_map())
    return directory


def invoke(runner, config_file, *args):
    return runner.invoke(main, ["--config", str(config_file), *map(str, args)])


class TestDecode:
    def test_prints_summary(self, runner, config_file, stdf_file):
        result = invoke(runner, config_file, "decode", stdf_file)
        assert result.exit_code == 0, result.output
        assert "Lot ID: LOT001" in result.output
        assert "Yield: 75.00%" in result.output

    def test_json_output(self, runner, config_file, stdf_file):
        result = invoke(runner, config_file, "decode", "--json", stdf_file)
        assert result.exit_code == 0
        payload = json.loads(result.stdout)
        assert payload["summary"]["total_parts"] == 4
        assert payload["bin_summary"]["1"]["count"] == 3
        assert payload["errors"] == {}

    def test_failed_file_does_not_abort_batch(self, runner, config_file, stdf_file, tmp_path):
        empty = tmp_path / "empty.stdf"
        empty.write_bytes(b"")
        result = invoke(runner, config_file, "decode", "--json", stdf_file, empty)
        assert result.exit_code == 0
        payload = json.loads(result.stdout)
        assert list(payload["errors"]) == [str(empty)]
        assert payload["summary"]["total_parts"] == 4

    def test_all_files_failing_exits_non_zero(self, runner, config_file, tmp_path):
        empty = tmp_path / "empty.stdf"
        empty.write_bytes(b"")
        result = invoke(runner, config_file, "decode", empty)
        assert result.exit_code == 1

    def test_multiple_files_are_combined(self, runner, config_file, stdf_file, tmp_path):
        other = tmp_path / "LOT001-W02.stdf"
        other.write_bytes(simple_file([1, 3]))
        result = invoke(runner, config_file, "decode", "--json", "-w", "2", stdf_file, other)
        payload = json.loads(result.stdout)
        assert payload["summary"]["total_parts"] == 6
        assert payload["summary"]["pass_parts"] == 4

    def test_save(self, runner, config_file, stdf_file, tmp_path):
        result = invoke(runner, config_file, "decode", "--save", stdf_file)
        assert result.exit_code == 0, result.output
        assert (tmp_path / "data" / "lots" / "lot_id=LOT001" / "data.parquet").exists()
        assert "Saved Records" in result.output


class TestScan:
    def test_lists_records(self, runner, config_file, stdf_file):
        result = invoke(runner, config_file, "scan", stdf_file)
        assert result.exit_code == 0, result.output
        assert "FAR" in result.output
        assert "Records: 15" in result.output

    def test_limit(self, runner, config_file, stdf_file):
        result = invoke(runner, config_file, "scan", "-n", "2", stdf_file)
        assert "Showing first 2 records" in result.output


class TestCheck:
    def test_consistent_maps_pass(self, runner, config_file, map_dir):
        result = invoke(runner, config_file, "check", map_dir)
        assert result.exit_code == 0, result.output
        assert "PASS" in result.output

    def test_wafer_count_mismatch_fails(self, runner, config_file, map_dir):
        (map_dir / "LOT001.FAR").write_text(FAR_FILE.format(total=3))
        result = invoke(runner, config_file, "check", map_dir)
        assert result.exit_code == 1
        assert "FAIL" in result.output

    def test_strict_fails_on_warning(self, runner, config_file, tmp_path, make_eds_map):
        low = tmp_path / "LOT001.02"
        low.write_text(make_eds_map(slot=2, yield_pct="50.00"))
        assert invoke(runner, config_file, "check", low).exit_code == 0
        assert invoke(runner, config_file, "check", "--strict", low).exit_code == 1

    def test_json_output(self, runner, config_file, map_dir):
        (map_dir / "LOT001.FAR").write_text(FAR_FILE.format(total=1))
        result = invoke(runner, config_file, "check", "--json", map_dir)
        assert result.exit_code == 0
        payload = json.loads(result.stdout)
        assert payload["report"]["overall_status"] == "pass"
        assert payload["far_summary"]["total_wafer"] == 1
        assert len(payload["coordinate_maps"]) == 1

    def test_no_sources(self, runner, config_file, tmp_path):
        (tmp_path / "notes.txt").write_text("nothing")
        result = invoke(runner, config_file, "check", tmp_path / "notes.txt")
        assert result.exit_code == 1

    def test_save(self, runner, config_file, map_dir, tmp_path):
        result = invoke(runner, config_file, "check", "--save", map_dir)
        assert result.exit_code == 0
        assert (tmp_path / "data" / "wafer_maps" / "lot_id=LOT001" / "data.parquet").exists()


def test_list_records(runner):
    result = runner.invoke(main, ["list-records"])
    assert result.exit_code == 0
    assert "PTR" in result.output
    assert "MIR" in result.output


def test_sessions(runner, config_file, stdf_file):
    result = invoke(runner, config_file, "sessions")
    assert "No sessions recorded yet." in result.output

    invoke(runner, config_file, "decode", stdf_file)
    result = invoke(runner, config_file, "sessions")
    assert result.exit_code == 0
    assert "decode" in result.output
