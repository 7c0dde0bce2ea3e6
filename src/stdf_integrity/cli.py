"""CLI interface for stdf-integrity."""

import json
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from . import __version__
from .aggregator import combine_results
from .config import Config
from .exceptions import DecoderError, InterpretError
from .interpreters import INTERPRETERS, interpret
from .models import IntegrityReport, OverallStatus, ParsedTestData, Severity, to_jsonable
from .parser import parse_stdf_files, read_source
from .records import RecordKind
from .scanner import RecordScanner
from .sessions import SessionStore
from .sources import load_sources, parse_text_sources
from .storage import ParquetStorage


console = Console()

SEVERITY_STYLE = {
    Severity.INFO: "green",
    Severity.WARNING: "yellow",
    Severity.ERROR: "red",
}

STATUS_STYLE = {
    OverallStatus.PASS: "green",
    OverallStatus.WARNING: "yellow",
    OverallStatus.FAIL: "red",
}


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


@click.group()
@click.version_option(version=__version__, prog_name="stdf-integrity")
@click.option("--config", "-c", type=click.Path(path_type=Path), help="Config file path")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx, config: Path | None, verbose: bool):
    """stdf-integrity - STDF decoder and wafer map integrity checker."""
    _setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["config"] = Config.load(config)
    ctx.obj["verbose"] = verbose


def _print_test_data(data: ParsedTestData) -> None:
    header = data.header
    guessed = header.heuristic_fields

    def mark(field_name: str, value) -> str:
        return f"{value} [dim](from file name)[/dim]" if field_name in guessed else str(value)

    console.print(f"  Lot ID: {mark('lot_id', header.lot_id)}")
    console.print(f"  Part Type: {mark('part_type', header.part_type)}")
    console.print(f"  Program: {header.test_program}")
    console.print(f"  Operator: {header.operator_id}")
    if header.test_time_start:
        console.print(f"  Start: {header.test_time_start:%Y-%m-%d %H:%M:%S}")
    if data.wafer_info:
        console.print(f"  Wafer: {data.wafer_info.wafer_id}")
    console.print(
        f"  Parts: {data.summary.total_parts:,}  Pass: {data.summary.pass_parts:,}  "
        f"Fail: {data.summary.fail_parts:,}  Yield: {data.summary.yield_percent:.2f}%"
    )
    console.print()

    if data.bin_summary:
        table = Table(title="Hard Bins")
        table.add_column("Bin", justify="right", style="cyan")
        table.add_column("Description")
        table.add_column("Count", justify="right", style="green")
        table.add_column("%", justify="right")
        for bin_num, entry in data.bin_summary.items():
            pct = entry.count / data.summary.total_parts * 100 if data.summary.total_parts else 0.0
            table.add_row(str(bin_num), entry.description, f"{entry.count:,}", f"{pct:.2f}")
        console.print(table)

    if data.test_statistics:
        table = Table(title="Test Statistics")
        table.add_column("Test", style="cyan")
        table.add_column("Count", justify="right")
        table.add_column("Min", justify="right")
        table.add_column("Max", justify="right")
        table.add_column("Mean", justify="right", style="green")
        table.add_column("Std Dev", justify="right")
        for name, stat in data.test_statistics.items():
            table.add_row(
                name, f"{stat.count:,}", f"{stat.min:.4g}", f"{stat.max:.4g}", f"{stat.mean:.4g}", f"{stat.std_dev:.4g}"
            )
        console.print(table)

    scan = data.scan
    console.print(
        f"  Records: {scan.records:,}  Parse errors: {scan.parse_errors}  "
        f"Recovered: {scan.recovered_records}  Interpret errors: {data.interpret_errors}  "
        f"Byte order: {scan.byte_order}"
    )
    if data.degraded:
        for reason in data.degraded_reasons:
            console.print(f"[yellow]Warning:[/yellow] Degraded result: {reason}")


@main.command()
@click.argument("files", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--workers", "-w", type=int, default=None, help="Files decoded in parallel (default from config)")
@click.option("--save", is_flag=True, help="Save decoded data to Parquet")
@click.option("--json", "as_json", is_flag=True, help="Print JSON instead of tables")
@click.pass_context
def decode(ctx, files: tuple[Path, ...], workers: int | None, save: bool, as_json: bool):
    """
    Decode STDF files and print a combined summary.

    FILES: STDF files (.stdf, .std, optionally .gz)
    """
    config: Config = ctx.obj["config"]
    config.ensure_directories()
    workers = workers or config.processing.max_workers
    sessions = SessionStore(config.storage.session_file)

    if as_json:
        outcomes = parse_stdf_files(files, workers, config.decoder)
    else:
        console.print("\n[bold]stdf-integrity - Decode[/bold]")
        console.print(f"  Files: {len(files)}  Workers: {workers}")
        console.print()
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("{task.completed}/{task.total}"),
            console=console,
        ) as progress:
            task = progress.add_task("Decoding...", total=len(files))
            outcomes = parse_stdf_files(
                files, workers, config.decoder,
                on_complete=lambda outcome: progress.advance(task),
            )

    failed = [o for o in outcomes if not o.ok]
    results = [o.result for o in outcomes if o.ok]

    if not as_json:
        for outcome in failed:
            console.print(f"[red]Error:[/red] {outcome.path.name}: {outcome.error}")

    if not results:
        sessions.record("decode", [f.name for f in files], "error")
        if as_json:
            click.echo(json.dumps({"errors": {str(o.path): str(o.error) for o in failed}}, indent=2))
        sys.exit(1)

    combined = combine_results(results)
    status = "degraded" if combined.degraded else "ok"

    saved = {}
    if save:
        storage = ParquetStorage(config.storage)
        saved = storage.save_test_data(combined, compression=config.processing.compression)

    sessions.record(
        "decode",
        [f.name for f in files],
        status,
        {
            "lot_id": combined.header.lot_id,
            "total_parts": combined.summary.total_parts,
            "yield_percent": round(combined.summary.yield_percent, 2),
        },
    )

    if as_json:
        payload = to_jsonable(combined)
        payload["errors"] = {str(o.path): str(o.error) for o in failed}
        payload["saved"] = saved
        click.echo(json.dumps(payload, indent=2))
        return

    _print_test_data(combined)

    if saved:
        table = Table(title="Saved Records")
        table.add_column("Table", style="cyan")
        table.add_column("Count", justify="right", style="green")
        for table_name, count in saved.items():
            table.add_row(table_name, f"{count:,}")
        console.print(table)
        console.print(f"\n[green]✓[/green] Saved to {config.storage.data_dir}")


@main.command()
@click.argument("stdf_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--limit", "-n", type=int, default=50, help="Maximum records to list")
@click.option("--decode", "decode_fields", is_flag=True, help="Show interpreted fields")
@click.pass_context
def scan(ctx, stdf_file: Path, limit: int, decode_fields: bool):
    """
    List the raw records of an STDF file.

    STDF_FILE: Path to the STDF file
    """
    config: Config = ctx.obj["config"]

    try:
        scanner = RecordScanner(read_source(stdf_file), config.decoder)
    except (DecoderError, ValueError) as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    table = Table(title=f"Records in {stdf_file.name}")
    table.add_column("Offset", justify="right", style="dim")
    table.add_column("Record", style="cyan")
    table.add_column("Length", justify="right")
    if decode_fields:
        table.add_column("Fields")

    for index, record in enumerate(scanner):
        if index >= limit:
            continue
        row = [f"{record.offset:,}", record.name, str(record.length)]
        if decode_fields:
            try:
                payload = interpret(record, scanner.byte_order)
                row.append("" if payload is None else str(to_jsonable(payload)))
            except InterpretError as e:
                row.append(f"[red]{e}[/red]")
        table.add_row(*row)

    console.print(table)

    tally = scanner.tally
    console.print(
        f"  Records: {tally.records:,}  Parse errors: {tally.parse_errors}/{tally.error_cap}  "
        f"Recovered: {tally.recovered_records}  Bytes: {tally.bytes_consumed:,}/{len(scanner.buffer):,}  "
        f"Byte order: {tally.byte_order}"
    )
    if tally.records > limit:
        console.print(f"  [dim]Showing first {limit} records[/dim]")
    if tally.unreliable:
        console.print("[yellow]Warning:[/yellow] Error cap reached; source is unreliable")


def _print_report(report: IntegrityReport) -> None:
    table = Table(title="Integrity Checks")
    table.add_column("Check", style="cyan")
    table.add_column("Severity")
    table.add_column("Message")
    table.add_column("Details", style="dim")

    rows = [
        ("Wafer count", report.wafer_count),
        ("BIN1 count", report.bin1_count),
        ("Lot summary", report.lot_summary),
        *(("Cross-file", r) for r in report.cross_file),
        *(("Wafer", r) for r in report.per_wafer),
    ]
    for label, result in rows:
        style = SEVERITY_STYLE[result.severity]
        table.add_row(label, f"[{style}]{result.severity.value}[/{style}]", result.message, result.details or "")
    console.print(table)

    style = STATUS_STYLE[report.overall_status]
    console.print(f"\n  Overall status: [{style}]{report.overall_status.value.upper()}[/{style}]")
    for recommendation in report.recommendations:
        console.print(f"  - {recommendation}")


@main.command()
@click.argument("paths", nargs=-1, required=True, type=click.Path(exists=True, path_type=Path))
@click.option("--strict", is_flag=True, help="Exit with an error on warnings too")
@click.option("--json", "as_json", is_flag=True, help="Print JSON instead of tables")
@click.option("--save", is_flag=True, help="Save wafer map summaries to Parquet")
@click.pass_context
def check(ctx, paths: tuple[Path, ...], strict: bool, as_json: bool, save: bool):
    """
    Validate wafer maps against FAR and lot summary files.

    PATHS: Map files (.01-.25, .f01-.f25), .FAR, lot summaries, directories or ZIP archives
    """
    config: Config = ctx.obj["config"]
    config.ensure_directories()
    sessions = SessionStore(config.storage.session_file)

    try:
        buffers = load_sources(paths)
    except DecoderError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    result = parse_text_sources(buffers, config.validation)
    report = result.report

    if not result.coordinate_maps and result.far_summary is None and result.lot_summary is None:
        console.print("[red]Error:[/red] No wafer map, FAR or lot summary files found")
        sys.exit(1)

    if save and result.coordinate_maps:
        ParquetStorage(config.storage).save_wafer_maps(result.coordinate_maps, config.processing.compression)

    sessions.record(
        "check",
        list(buffers),
        report.overall_status.value,
        {"wafer_maps": len(result.coordinate_maps), "recommendations": len(report.recommendations)},
    )

    if as_json:
        click.echo(json.dumps(to_jsonable(result), indent=2))
    else:
        console.print("\n[bold]stdf-integrity - Check[/bold]")
        console.print(f"  Sources: {len(buffers)}  Wafer maps: {len(result.coordinate_maps)}")
        if result.far_summary is not None:
            console.print(f"  FAR: {result.far_summary.lot_number} ({result.far_summary.total_wafer} wafers)")
        if result.lot_summary is not None:
            console.print(f"  Lot summary: {result.lot_summary.header.lot_number}")
        console.print()

        if result.coordinate_maps:
            table = Table(title="Wafer Maps")
            table.add_column("Slot", justify="right", style="cyan")
            table.add_column("Wafer ID")
            table.add_column("Tested", justify="right")
            table.add_column("Pass", justify="right", style="green")
            table.add_column("Fail", justify="right", style="red")
            table.add_column("Declared %", justify="right")
            table.add_column("Observed %", justify="right")
            for m in result.coordinate_maps:
                table.add_row(
                    str(m.header.slot_number),
                    m.header.wafer_id,
                    f"{m.tested_die_count:,}",
                    f"{m.pass_count:,}",
                    f"{m.fail_count:,}",
                    f"{m.header.declared_yield:.2f}",
                    f"{m.observed_yield:.2f}",
                )
            console.print(table)

        _print_report(report)

    if report.overall_status == OverallStatus.FAIL:
        sys.exit(1)
    if strict and report.overall_status == OverallStatus.WARNING:
        sys.exit(1)


@main.command("list-records")
def list_records():
    """List STDF record types and which ones are interpreted."""
    table = Table(title="STDF V4 Record Types")
    table.add_column("Record Type", style="cyan")
    table.add_column("Code", justify="right")
    table.add_column("Description")
    table.add_column("Interpreted", justify="center")

    for kind in RecordKind:
        rec_typ, rec_sub = kind.codes
        table.add_row(
            kind.value,
            f"{rec_typ},{rec_sub}",
            kind.description,
            "[green]✓[/green]" if kind in INTERPRETERS else "",
        )

    console.print(table)


@main.command("sessions")
@click.option("--limit", "-n", type=int, default=10, help="Number of sessions to show")
@click.pass_context
def sessions_cmd(ctx, limit: int):
    """Show recent decode and check sessions."""
    config: Config = ctx.obj["config"]
    entries = SessionStore(config.storage.session_file).recent(limit)

    if not entries:
        console.print("[yellow]No sessions recorded yet.[/yellow]")
        return

    table = Table(title="Recent Sessions")
    table.add_column("When", style="dim")
    table.add_column("Command", style="cyan")
    table.add_column("Status")
    table.add_column("Sources")

    for entry in entries:
        sources = entry.get("sources", [])
        shown = ", ".join(sources[:3]) + (f" (+{len(sources) - 3})" if len(sources) > 3 else "")
        table.add_row(entry.get("recorded_at", ""), entry.get("command", ""), entry.get("status", ""), shown)

    console.print(table)


if __name__ == "__main__":
    main()
