"""Parquet storage for decoded test data and wafer maps."""

from pathlib import Path

import pyarrow as pa
import pyarrow.parquet as pq

from .config import StorageConfig
from .models import CoordinateMap, ParsedTestData


# PyArrow schemas for each table
LOTS_SCHEMA = pa.schema([
    ("lot_id", pa.string()),
    ("source_name", pa.string()),
    ("file_version", pa.string()),
    ("part_type", pa.string()),
    ("test_program", pa.string()),
    ("operator_id", pa.string()),
    ("start_time", pa.timestamp("ms", tz="UTC")),
    ("test_temperature", pa.float64()),
    ("heuristic_fields", pa.string()),
    ("wafer_id", pa.string()),
    ("total_parts", pa.int64()),
    ("pass_parts", pa.int64()),
    ("yield_percent", pa.float64()),
    ("parse_errors", pa.int64()),
    ("degraded", pa.bool_()),
])

PARTS_SCHEMA = pa.schema([
    ("lot_id", pa.string()),
    ("part_id", pa.string()),
    ("x_coord", pa.int64()),
    ("y_coord", pa.int64()),
    ("hard_bin", pa.int64()),
    ("soft_bin", pa.int64()),
    ("site_num", pa.int64()),
    ("passed", pa.bool_()),
    ("test_count", pa.int64()),
    ("test_time", pa.int64()),
])

BINS_SCHEMA = pa.schema([
    ("lot_id", pa.string()),
    ("hard_bin", pa.int64()),
    ("count", pa.int64()),
    ("description", pa.string()),
])

TEST_STATS_SCHEMA = pa.schema([
    ("lot_id", pa.string()),
    ("test_name", pa.string()),
    ("min", pa.float64()),
    ("max", pa.float64()),
    ("mean", pa.float64()),
    ("std_dev", pa.float64()),
    ("count", pa.int64()),
])

TEST_RESULTS_SCHEMA = pa.schema([
    ("lot_id", pa.string()),
    ("part_id", pa.string()),
    ("test_name", pa.string()),
    ("result", pa.float64()),
    ("passed", pa.bool_()),
    ("units", pa.string()),
])

WAFER_MAPS_SCHEMA = pa.schema([
    ("lot_id", pa.string()),
    ("source_name", pa.string()),
    ("flavor", pa.string()),
    ("device", pa.string()),
    ("slot_number", pa.int64()),
    ("wafer_id", pa.string()),
    ("total_test_die", pa.int64()),
    ("pass_die", pa.int64()),
    ("fail_die", pa.int64()),
    ("declared_yield", pa.float64()),
    ("observed_pass", pa.int64()),
    ("observed_fail", pa.int64()),
    ("observed_yield", pa.float64()),
    ("cell_count", pa.int64()),
])


class ParquetStorage:
    """Parquet storage with Hive-style ``lot_id=`` partitioning."""

    def __init__(self, config: StorageConfig):
        self.config = config
        self.data_dir = config.data_dir
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def _get_partition_path(self, table_name: str, lot_id: str) -> Path:
        path = self.data_dir / table_name / f"lot_id={lot_id}"
        path.mkdir(parents=True, exist_ok=True)
        return path

    def _write_parquet(self, table: pa.Table, path: Path, compression: str = "snappy"):
        """
        Write Parquet file with maximum compatibility settings.

        Uses Parquet 1.0 format and conservative options for viewer compatibility.
        """
        pq.write_table(
            table,
            path,
            compression=compression,
            version="1.0",
            use_dictionary=True,
            write_statistics=True,
            coerce_timestamps="ms",
            allow_truncated_timestamps=True,
        )

    def save_test_data(self, data: ParsedTestData, compression: str = "snappy") -> dict[str, int]:
        """
        Save decoded STDF data to Parquet files.

        Args:
            data: Parsed (or combined) test data
            compression: Parquet compression method

        Returns:
            Dictionary with counts of rows saved per table
        """
        counts = {}
        lot_id = data.header.lot_id
        header = data.header

        lot_table = pa.table({
            "lot_id": [lot_id],
            "source_name": [data.source_name],
            "file_version": [header.file_version],
            "part_type": [header.part_type],
            "test_program": [header.test_program],
            "operator_id": [header.operator_id],
            "start_time": [header.test_time_start],
            "test_temperature": [header.test_temperature],
            "heuristic_fields": [",".join(sorted(header.heuristic_fields))],
            "wafer_id": [data.wafer_info.wafer_id if data.wafer_info else None],
            "total_parts": [data.summary.total_parts],
            "pass_parts": [data.summary.pass_parts],
            "yield_percent": [data.summary.yield_percent],
            "parse_errors": [data.scan.parse_errors],
            "degraded": [data.degraded],
        }, schema=LOTS_SCHEMA)
        self._write_parquet(lot_table, self._get_partition_path("lots", lot_id) / "data.parquet", compression)
        counts["lots"] = 1

        if data.parts:
            parts = data.parts
            part_table = pa.table({
                "lot_id": [lot_id for _ in parts],
                "part_id": [p.part_id for p in parts],
                "x_coord": [p.x_coord for p in parts],
                "y_coord": [p.y_coord for p in parts],
                "hard_bin": [p.hard_bin for p in parts],
                "soft_bin": [p.soft_bin for p in parts],
                "site_num": [p.site_number for p in parts],
                "passed": [p.passed for p in parts],
                "test_count": [len(p.test_results) for p in parts],
                "test_time": [p.test_time_ms for p in parts],
            }, schema=PARTS_SCHEMA)
            self._write_parquet(part_table, self._get_partition_path("parts", lot_id) / "data.parquet", compression)
            counts["parts"] = len(parts)

            results = [
                (p.part_id, name, value)
                for p in parts
                for name, value in p.test_results.items()
            ]
            if results:
                result_table = pa.table({
                    "lot_id": [lot_id for _ in results],
                    "part_id": [part_id for part_id, _, _ in results],
                    "test_name": [name for _, name, _ in results],
                    "result": [value.value for _, _, value in results],
                    "passed": [value.passed for _, _, value in results],
                    "units": [value.units for _, _, value in results],
                }, schema=TEST_RESULTS_SCHEMA)
                self._write_parquet(
                    result_table, self._get_partition_path("test_results", lot_id) / "data.parquet", compression
                )
                counts["test_results"] = len(results)

        if data.bin_summary:
            bins = list(data.bin_summary.items())
            bin_table = pa.table({
                "lot_id": [lot_id for _ in bins],
                "hard_bin": [bin_num for bin_num, _ in bins],
                "count": [entry.count for _, entry in bins],
                "description": [entry.description for _, entry in bins],
            }, schema=BINS_SCHEMA)
            self._write_parquet(bin_table, self._get_partition_path("bins", lot_id) / "data.parquet", compression)
            counts["bins"] = len(bins)

        if data.test_statistics:
            stats = list(data.test_statistics.items())
            stats_table = pa.table({
                "lot_id": [lot_id for _ in stats],
                "test_name": [name for name, _ in stats],
                "min": [s.min for _, s in stats],
                "max": [s.max for _, s in stats],
                "mean": [s.mean for _, s in stats],
                "std_dev": [s.std_dev for _, s in stats],
                "count": [s.count for _, s in stats],
            }, schema=TEST_STATS_SCHEMA)
            self._write_parquet(
                stats_table, self._get_partition_path("test_stats", lot_id) / "data.parquet", compression
            )
            counts["test_stats"] = len(stats)

        return counts

    def save_wafer_maps(self, maps: list[CoordinateMap], compression: str = "snappy") -> dict[str, int]:
        """
        Save wafer map headers and observed counts, one row per map.

        Args:
            maps: Parsed coordinate maps
            compression: Parquet compression method

        Returns:
            Dictionary mapping lot ID to the number of maps saved
        """
        map_groups: dict[str, list[CoordinateMap]] = {}
        for coordinate_map in maps:
            lot_id = coordinate_map.header.lot_number or "UNKNOWN"
            if lot_id not in map_groups:
                map_groups[lot_id] = []
            map_groups[lot_id].append(coordinate_map)

        counts = {}
        for lot_id, group in map_groups.items():
            map_table = pa.table({
                "lot_id": [lot_id for _ in group],
                "source_name": [m.source_name for m in group],
                "flavor": [m.flavor.value for m in group],
                "device": [m.header.device for m in group],
                "slot_number": [m.header.slot_number for m in group],
                "wafer_id": [m.header.wafer_id for m in group],
                "total_test_die": [m.header.total_test_die for m in group],
                "pass_die": [m.header.pass_die for m in group],
                "fail_die": [m.header.fail_die for m in group],
                "declared_yield": [m.header.declared_yield for m in group],
                "observed_pass": [m.pass_count for m in group],
                "observed_fail": [m.fail_count for m in group],
                "observed_yield": [m.observed_yield for m in group],
                "cell_count": [m.cell_count for m in group],
            }, schema=WAFER_MAPS_SCHEMA)
            self._write_parquet(
                map_table, self._get_partition_path("wafer_maps", lot_id) / "data.parquet", compression
            )
            counts[lot_id] = len(group)
        return counts

    def get_lots(self) -> list[str]:
        """Get list of lot IDs with saved test data."""
        lots_path = self.data_dir / "lots"
        if not lots_path.exists():
            return []

        lots = []
        for p in lots_path.iterdir():
            if p.is_dir() and p.name.startswith("lot_id="):
                lots.append(p.name[7:])  # Remove "lot_id=" prefix
        return sorted(lots)
