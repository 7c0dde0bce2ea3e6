from stdf_integrity.maps import parse_coordinate_map, parse_far_summary, slot_from_filename
from stdf_integrity.models import MapFlavor


FOUNDRY_MAP = """\
DEVICE:DEV100
WAFERID:LOT001-03
X:5
Y:3
GOOD:{good}
FAIL:{fail}
FLAT:D

11T11
1XX1.
11111
"""

FAR_FILE = """\
FARADAY Final Assembly Report
Device : DEV100
Lot NO : LOT001
Total wafer : 2

MAPPING\tWAFER_ID\tBIN1
01\tLOT001-01\t19
02\tLOT001-02\t18
not a row
"""


class TestEdsMap:
    def test_header_block(self, make_eds_map):
        wafer_map = parse_coordinate_map(make_eds_map(slot=7), "LOT001.07")
        header = wafer_map.header
        assert header.device == "DEV100"
        assert header.lot_number == "LOT001"
        assert header.slot_number == 7
        assert header.wafer_id == "LOT001-01"
        assert header.wafer_size == "8 inch"
        assert header.flat_direction == "Down"
        assert header.total_test_die == 24
        assert header.pass_die == 19
        assert header.fail_die == 5
        assert header.declared_yield == 79.17

    def test_grid_counts(self, make_eds_map):
        wafer_map = parse_coordinate_map(make_eds_map(), "LOT001.01")
        assert wafer_map.bin_counts == {"1": 19, "X": 5, ".": 1}
        assert wafer_map.cell_count == 25
        assert wafer_map.tested_die_count == 24
        assert wafer_map.pass_count == 19
        assert wafer_map.fail_count == 5
        assert len(wafer_map.rows) == 5

    def test_five_by_five_grid(self):
        content = (
            "Wafer ID : W1\nTotal test die : 25\nPass Die : 20\nFail Die : 5\n"
            + "\n".join(["11111", "11111", "11111", "11111", "XXXXX"])
        )
        wafer_map = parse_coordinate_map(content, "x.01")
        assert wafer_map.bin_counts == {"1": 20, "X": 5}
        assert wafer_map.tested_die_count == 25
        assert wafer_map.observed_yield == 80.0
        assert wafer_map.calculated_yield == 80.0

    def test_counts_cover_every_cell_of_ragged_rows(self):
        wafer_map = parse_coordinate_map("..11..\n.1XX1.\n11X\n1\n", "x.05")
        assert sum(wafer_map.bin_counts.values()) == wafer_map.cell_count == 16
        assert wafer_map.tested_die_count == 10

    def test_spaced_grid_rows(self):
        wafer_map = parse_coordinate_map("1 1 X\n. 1 1\n", "x.02")
        assert wafer_map.rows == [["1", "1", "X"], [".", "1", "1"]]
        assert wafer_map.header.slot_number == 2

    def test_header_lines_after_grid_are_ignored(self):
        content = "Pass Die : 3\n111\nPass Die : 99\n"
        assert parse_coordinate_map(content).header.pass_die == 3

    def test_unknown_lines_skipped(self):
        content = "Operator : Bob\nrandom text\nDevice : D1\n1X\n"
        wafer_map = parse_coordinate_map(content)
        assert wafer_map.header.device == "D1"
        assert wafer_map.bin_counts == {"1": 1, "X": 1}

    def test_header_only_map_uses_declared_counts(self):
        content = "Total test die : 10\nPass Die : 8\nFail Die : 2\n"
        wafer_map = parse_coordinate_map(content, "x.03")
        assert not wafer_map.has_grid
        assert wafer_map.pass_count == 8
        assert wafer_map.tested_die_count == 10

    def test_empty_content(self):
        wafer_map = parse_coordinate_map("", "x.04")
        assert wafer_map.rows == []
        assert wafer_map.bin_counts == {}
        assert wafer_map.header.slot_number == 4


class TestFoundryMap:
    def test_header_and_derived_totals(self):
        content = FOUNDRY_MAP.format(good=11, fail=2)
        wafer_map = parse_coordinate_map(content, "LOT001.f03", MapFlavor.FOUNDRY)
        header = wafer_map.header
        assert header.device == "DEV100"
        assert header.wafer_id == "LOT001-03"
        assert (header.grid_x, header.grid_y) == (5, 3)
        assert header.flat_direction == "D"
        assert header.slot_number == 3
        assert header.total_test_die == 13
        assert round(header.declared_yield, 2) == 84.62
        assert wafer_map.bin_counts == {"1": 11, "T": 1, "X": 2, ".": 1}
        assert wafer_map.tested_die_count == 13
        assert wafer_map.diagnostics == []

    def test_count_mismatch_is_reported(self):
        content = FOUNDRY_MAP.format(good=12, fail=2)
        wafer_map = parse_coordinate_map(content, "LOT001.f03", MapFlavor.FOUNDRY)
        assert len(wafer_map.diagnostics) == 1
        assert "GOOD count mismatch" in wafer_map.diagnostics[0].message

    def test_t_cells_are_not_eds_rows(self):
        wafer_map = parse_coordinate_map("11T11\n", "x.01", MapFlavor.EDS)
        assert wafer_map.rows == []


class TestSlotFromFilename:
    def test_suffixes(self):
        assert slot_from_filename("LOT001.07") == 7
        assert slot_from_filename("/maps/LOT001.F12") == 12
        assert slot_from_filename("LOT001.txt") is None


class TestFarSummary:
    def test_parse(self):
        summary = parse_far_summary(FAR_FILE)
        assert summary.title == "FARADAY Final Assembly Report"
        assert summary.device == "DEV100"
        assert summary.lot_number == "LOT001"
        assert summary.total_wafer == 2
        assert [(m.mapping, m.wafer_id, m.bin1_count) for m in summary.wafer_mappings] == [
            ("01", "LOT001-01", 19),
            ("02", "LOT001-02", 18),
        ]

    def test_short_rows_skipped(self):
        content = "MAPPING\tWAFER_ID\tBIN1\n01\tW1\n02\tW2\t7\n"
        summary = parse_far_summary(content)
        assert len(summary.wafer_mappings) == 1
        assert summary.wafer_mappings[0].bin1_count == 7

    def test_empty(self):
        summary = parse_far_summary("")
        assert summary.total_wafer == 0
        assert summary.wafer_mappings == []
