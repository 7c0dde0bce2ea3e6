"""Cross-source validation of wafer maps against FAR and lot summaries."""

import logging

from .config import ValidationConfig
from .models import (
    CoordinateMap,
    FarSummary,
    IntegrityReport,
    LotSummary,
    OverallStatus,
    Severity,
    ValidationResult,
)

logger = logging.getLogger(__name__)

ALL_CONSISTENT = "Data integrity validation passed - all files appear consistent"


def _not_performed(reason: str) -> ValidationResult:
    return ValidationResult(True, Severity.INFO, "No validation performed", reason)


def _relative_variance(a: int, b: int) -> float:
    largest = max(a, b)
    return abs(a - b) / largest * 100 if largest > 0 else 0.0


class _ReportBuilder:
    """Tracks overall status and recommendations while checks run."""

    def __init__(self):
        self.status = OverallStatus.PASS
        self.recommendations: list[str] = []

    def record(self, result: ValidationResult, recommendation: str | None = None) -> ValidationResult:
        status = OverallStatus.for_severity(result.severity)
        if status.rank > self.status.rank:
            self.status = status
        if recommendation and result.severity != Severity.INFO:
            self.recommendations.append(recommendation)
        return result


def check_wafer_count(
    maps: list[CoordinateMap],
    far_summary: FarSummary | None,
    lot_summary: LotSummary | None,
    builder: _ReportBuilder,
) -> ValidationResult:
    if far_summary is not None:
        declared, origin = far_summary.total_wafer, "FAR"
    elif lot_summary is not None and lot_summary.header.total_wafers > 0:
        declared, origin = lot_summary.header.total_wafers, "Lot summary"
    else:
        return _not_performed("No declared wafer count available")

    if declared == len(maps):
        return builder.record(
            ValidationResult(True, Severity.INFO, f"Wafer count matches: {len(maps)} wafers")
        )

    return builder.record(
        ValidationResult(
            False,
            Severity.ERROR,
            f"Wafer count mismatch: {origin} reports {declared}, found {len(maps)} map files",
            "This indicates missing wafer map files or incorrect summary data",
        ),
        f"Check for missing wafer map files or verify {origin} file accuracy",
    )


def check_bin1_count(
    maps: list[CoordinateMap],
    far_summary: FarSummary | None,
    config: ValidationConfig,
    builder: _ReportBuilder,
) -> ValidationResult:
    if far_summary is None or not maps:
        return _not_performed("FAR summary and wafer maps are both required")

    declared = sum(m.bin1_count for m in far_summary.wafer_mappings)
    observed = sum(m.pass_count for m in maps)

    if declared == observed:
        return builder.record(
            ValidationResult(True, Severity.INFO, f"BIN1 counts match: {observed} total pass dies")
        )

    variance = _relative_variance(declared, observed)
    significant = variance > config.bin1_variance_pct
    return builder.record(
        ValidationResult(
            False,
            Severity.ERROR if significant else Severity.WARNING,
            f"BIN1 count mismatch: FAR total {declared}, Map total {observed} "
            f"({abs(declared - observed)} difference)",
            f"Variance: {variance:.2f}%",
        ),
        "Significant BIN1 count variance detected - verify test data integrity"
        if significant
        else "Minor BIN1 count variance - check for rounding differences",
    )


def check_lot_summary(
    maps: list[CoordinateMap],
    lot_summary: LotSummary | None,
    config: ValidationConfig,
    builder: _ReportBuilder,
) -> ValidationResult:
    if lot_summary is None or not maps:
        return _not_performed("Lot summary and wafer maps are both required")

    map_dies = sum(m.tested_die_count for m in maps)
    map_pass = sum(m.pass_count for m in maps)
    lot_dies = lot_summary.overall.total_dies
    lot_pass = lot_summary.overall.total_pass

    if abs(lot_dies - map_dies) <= config.lot_tolerance and abs(lot_pass - map_pass) <= config.lot_tolerance:
        return builder.record(
            ValidationResult(
                True,
                Severity.INFO,
                "Lot Summary data matches wafer maps",
                f"Dies: {map_dies}, Pass: {map_pass}",
            )
        )

    return builder.record(
        ValidationResult(
            False,
            Severity.WARNING,
            "Lot Summary data mismatch with wafer maps",
            f"Map dies: {map_dies}, Lot dies: {lot_dies}; Map pass: {map_pass}, Lot pass: {lot_pass}",
        ),
        "Check lot summary calculation methodology",
    )


def check_cross_file(
    maps: list[CoordinateMap],
    far_summary: FarSummary | None,
    config: ValidationConfig,
    builder: _ReportBuilder,
) -> list[ValidationResult]:
    if far_summary is None or not maps:
        return []

    by_wafer_id = {}
    for coordinate_map in maps:
        by_wafer_id.setdefault(coordinate_map.header.wafer_id, coordinate_map)

    results = []
    for mapping in far_summary.wafer_mappings:
        match = by_wafer_id.get(mapping.wafer_id)
        if match is None:
            results.append(builder.record(
                ValidationResult(False, Severity.ERROR, f"Wafer {mapping.wafer_id} in FAR not found in map files"),
                f"Locate the wafer map for {mapping.wafer_id}",
            ))
            continue

        variance = abs(match.pass_count - mapping.bin1_count)
        if variance == 0:
            continue
        results.append(builder.record(
            ValidationResult(
                False,
                Severity.ERROR if variance > config.cross_file_variance else Severity.WARNING,
                f"BIN1 mismatch for {mapping.wafer_id}",
                f"FAR: {mapping.bin1_count}, Map: {match.pass_count}",
            ),
            f"Reconcile BIN1 count for wafer {mapping.wafer_id}",
        ))
    return results


def check_wafer(
    coordinate_map: CoordinateMap,
    config: ValidationConfig,
    builder: _ReportBuilder,
) -> list[ValidationResult]:
    header = coordinate_map.header
    wafer_id = header.wafer_id or coordinate_map.source_name or f"slot {header.slot_number}"
    calculated = coordinate_map.calculated_yield
    variance = abs(calculated - header.declared_yield)
    detail = f"Reported: {header.declared_yield:.2f}%, Calculated: {calculated:.2f}%"

    results = []
    if variance <= config.yield_variance:
        results.append(builder.record(
            ValidationResult(True, Severity.INFO, f"Yield consistent for {wafer_id}", detail)
        ))
    else:
        results.append(builder.record(
            ValidationResult(
                False,
                Severity.WARNING if variance > config.yield_warning_variance else Severity.INFO,
                f"Yield calculation variance for {wafer_id}",
                detail,
            ),
            f"Verify yield calculation for wafer {wafer_id}",
        ))

    if header.declared_yield > config.excellent_yield:
        results.append(builder.record(
            ValidationResult(True, Severity.INFO, f"Excellent yield for {wafer_id}: {header.declared_yield:.2f}%")
        ))
    elif header.declared_yield < config.low_yield:
        results.append(builder.record(
            ValidationResult(False, Severity.WARNING, f"Low yield detected for {wafer_id}: {header.declared_yield:.2f}%"),
            f"Investigate low yield on wafer {wafer_id}",
        ))
    return results


def validate(
    coordinate_maps: list[CoordinateMap],
    far_summary: FarSummary | None = None,
    lot_summary: LotSummary | None = None,
    config: ValidationConfig | None = None,
) -> IntegrityReport:
    """
    Cross-check wafer maps against the declared FAR and lot summaries.

    Overall status only ever rises while checks run: an Error result makes it
    Fail, a Warning makes it at least Warning.

    Args:
        coordinate_maps: Parsed wafer maps
        far_summary: Declared per-wafer BIN1 counts
        lot_summary: Declared lot totals
        config: Validation thresholds

    Returns:
        IntegrityReport with one entry per check
    """
    config = config or ValidationConfig()
    maps = list(coordinate_maps)
    builder = _ReportBuilder()

    wafer_count = check_wafer_count(maps, far_summary, lot_summary, builder)
    bin1_count = check_bin1_count(maps, far_summary, config, builder)
    lot_result = check_lot_summary(maps, lot_summary, config, builder)
    cross_file = check_cross_file(maps, far_summary, config, builder)

    per_wafer = []
    for coordinate_map in maps:
        per_wafer.extend(check_wafer(coordinate_map, config, builder))

    recommendations = builder.recommendations
    if builder.status == OverallStatus.PASS and not recommendations:
        recommendations = [ALL_CONSISTENT]

    logger.info("Validated %d wafer maps: %s", len(maps), builder.status.value)

    return IntegrityReport(
        overall_status=builder.status,
        wafer_count=wafer_count,
        bin1_count=bin1_count,
        lot_summary=lot_result,
        cross_file=cross_file,
        per_wafer=per_wafer,
        recommendations=recommendations,
    )
