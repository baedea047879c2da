"""
dvirsync CLI - command-line front end for DVIR synchronization.

Features:
- Colored output with rich library
- Live progress bar while a sync runs
- Table formatting for results
- JSON output option (--json flag)
- CSV export of the fleet summary and defect detail

Usage:
    dvirsync sync --preset 7days
    dvirsync sync --preset 30days --group b27A4 --detail-csv defects.csv
    dvirsync sync --from 2024-03-01 --to 2024-03-15 --status outstanding
    dvirsync vehicles
"""

import asyncio
import json
import logging
import sys
from datetime import UTC, datetime, timedelta
from typing import Any, List, NoReturn, Optional

import click
from rich import box
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.table import Table

from dvirsync import __version__
from dvirsync.core.config import settings
from dvirsync.core.exceptions import DvirSyncException
from dvirsync.core.logging import setup_logging as setup_json_logging
from dvirsync.schemas.sync import (
    DateRange,
    IntermediateResultEvent,
    ProgressEvent,
    SyncEvent,
    SyncOutcome,
    SyncState,
    VehicleFilter,
)
from dvirsync.services.chunker import DatePreset, preset_range
from dvirsync.services.export import DETAIL_EXPORT_FIELDS, SUMMARY_EXPORT_FIELDS, format_value, write_csv
from dvirsync.services.geotab_client import GeotabClient
from dvirsync.services.row_query import (
    DETAIL_SEARCH_FIELDS,
    SUMMARY_SEARCH_FIELDS,
    filter_by_status,
    search_rows,
    sort_rows,
)
from dvirsync.services.sync_pipeline import SyncSession

console = Console()
err_console = Console(stderr=True)

PHASE_LABELS = {
    SyncState.FETCHING_STUBS: "Fetching inspections...",
    SyncState.RESOLVING_EARLY_DRIVERS: "Resolving drivers...",
    SyncState.ENRICHING_DETAIL: "Loading defect details...",
    SyncState.RESOLVING_LATE_DRIVERS: "Resolving repair users...",
    SyncState.AGGREGATING: "Aggregating...",
    SyncState.DONE: "Done",
}

STATUS_CHOICES = ["all", "outstanding", "notNecessary", "repaired", "other"]

SUMMARY_SORT_COLUMNS = ["vehicle", "driver", "date", "log_type", "safe_to_operate", "total_defects",
                        "outstanding_defects", "not_necessary", "repaired"]


# =============================================================================
# Helper Functions
# =============================================================================

def setup_logging(verbosity: int, json_logs: bool) -> None:
    """Configure logging based on verbosity level."""
    if json_logs:
        setup_json_logging()
        return

    if verbosity == 0:
        level = logging.WARNING
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False, show_time=False)],
    )


def output_json(data: Any) -> None:
    """Output data as formatted JSON."""
    console.print_json(json.dumps(data, ensure_ascii=False, default=str))


def fail(message: str) -> NoReturn:
    err_console.print(f"[red]Error: {message}[/red]")
    sys.exit(1)


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=UTC)


def resolve_range(preset: str, start: Optional[datetime], end: Optional[datetime]) -> DateRange:
    """An explicit --from/--to wins over the preset; naive dates are UTC."""
    if start is None and end is None:
        return preset_range(preset, datetime.now(UTC))

    now = datetime.now(UTC)
    start = _as_utc(start) if start else now - timedelta(days=7)
    end = _as_utc(end) if end else now
    return DateRange(from_date=start, to_date=end)


def build_client() -> GeotabClient:
    try:
        return GeotabClient.from_settings(settings)
    except DvirSyncException as e:
        fail(e.message)


class Context:
    """CLI context for passing options between commands."""

    def __init__(self):
        self.verbose: int = 0
        self.json_output: bool = False


pass_context = click.make_pass_decorator(Context, ensure=True)


@click.group()
@click.option("-v", "--verbose", count=True, help="Increase verbosity (-v, -vv)")
@click.option("--json", "json_output", is_flag=True, help="Output results as JSON")
@click.option("--log-json", is_flag=True, help="Emit structured JSON logs to stderr")
@click.version_option(version=__version__, prog_name="dvirsync")
@pass_context
def cli(ctx: Context, verbose: int, json_output: bool, log_json: bool):
    """
    dvirsync - DVIR inspection sync for MyGeotab.

    Reads the MyGeotab session from GEOTAB_* environment variables.
    """
    ctx.verbose = verbose
    ctx.json_output = json_output
    setup_logging(verbose, log_json)


# =============================================================================
# Sync Command
# =============================================================================

@cli.command("sync")
@click.option("--preset", "-p", type=click.Choice([p.value for p in DatePreset]), default=DatePreset.LAST_7_DAYS.value,
              show_default=True, help="Date range preset")
@click.option("--from", "start", type=click.DateTime(), help="Range start (overrides --preset)")
@click.option("--to", "end", type=click.DateTime(), help="Range end (overrides --preset)")
@click.option("--vehicle", help="Only this vehicle (device id)")
@click.option("--group", help="Only vehicles in this group (group id)")
@click.option("--search", "-s", help="Filter rows by vehicle or driver")
@click.option("--status", type=click.Choice(STATUS_CHOICES), default="all", help="Filter defects by repair status")
@click.option("--sort", "sort_column", type=click.Choice(SUMMARY_SORT_COLUMNS), default="date", show_default=True)
@click.option("--desc/--asc", default=True, show_default=True, help="Sort direction")
@click.option("--limit", "-l", default=50, show_default=True, help="Maximum table rows")
@click.option("--summary-csv", type=click.Path(dir_okay=False), help="Write the fleet summary to CSV")
@click.option("--detail-csv", type=click.Path(dir_okay=False), help="Write the defect detail to CSV")
@pass_context
def sync_cmd(
    ctx: Context,
    preset: str,
    start: Optional[datetime],
    end: Optional[datetime],
    vehicle: Optional[str],
    group: Optional[str],
    search: Optional[str],
    status: str,
    sort_column: str,
    desc: bool,
    limit: int,
    summary_csv: Optional[str],
    detail_csv: Optional[str],
):
    """
    Synchronize DVIR logs and show the fleet summary.

    Examples:
        dvirsync sync --preset yesterday
        dvirsync sync --vehicle b1A --detail-csv defects.csv
    """
    date_range = resolve_range(preset, start, end)
    vehicle_filter = VehicleFilter(vehicle_id=vehicle, group_id=group)

    try:
        outcome = asyncio.run(_run_sync(ctx, date_range, vehicle_filter))
    except DvirSyncException as e:
        fail(e.user_message)

    if outcome.state is SyncState.FAILED:
        if ctx.json_output:
            output_json({"state": outcome.state.value, **(outcome.error.to_dict() if outcome.error else {})})
        fail(outcome.error.user_message if outcome.error else "Sync failed")

    result = outcome.latest
    if result is None:
        fail("Sync produced no result")

    summary_rows = sort_rows(search_rows(result.summary_rows, search, SUMMARY_SEARCH_FIELDS), sort_column, desc)
    detail_rows = filter_by_status(search_rows(result.detail_rows, search, DETAIL_SEARCH_FIELDS), status)
    detail_rows = sort_rows(detail_rows, "date", descending=True)

    if summary_csv:
        path = write_csv(summary_csv, summary_rows, SUMMARY_EXPORT_FIELDS)
        err_console.print(f"[green]Fleet summary written to {path}[/green]")
    if detail_csv:
        path = write_csv(detail_csv, detail_rows, DETAIL_EXPORT_FIELDS)
        err_console.print(f"[green]Defect detail written to {path}[/green]")

    if ctx.json_output:
        output_json({
            "state": outcome.state.value,
            "from": date_range.from_date.isoformat(),
            "to": date_range.to_date.isoformat(),
            "detail_complete": result.detail_complete,
            "failed_batches": result.failed_batches,
            "warning": result.warning.to_dict() if result.warning else None,
            "kpis": result.kpis.model_dump(),
            "summary": [row.model_dump(mode="json") for row in summary_rows],
            "defects": [row.model_dump(mode="json") for row in detail_rows],
        })
        return

    _display_result(outcome, result.kpis, summary_rows, detail_rows, limit)


async def _run_sync(ctx: Context, date_range: DateRange, vehicle_filter: VehicleFilter) -> SyncOutcome:
    """Run one sync with a live progress bar."""
    client = build_client()
    async with client:
        session = SyncSession(client, config=settings)
        await session.load_foundation()

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            console=err_console,
            transient=True,
            disable=ctx.json_output,
        ) as progress:
            task = progress.add_task(PHASE_LABELS[SyncState.FETCHING_STUBS], total=100)

            def on_event(event: SyncEvent) -> None:
                if isinstance(event, ProgressEvent):
                    progress.update(
                        task,
                        completed=event.percent,
                        description=PHASE_LABELS.get(event.phase, str(event.phase)),
                    )
                elif isinstance(event, IntermediateResultEvent):
                    count = len(event.result.summary_rows)
                    progress.update(task, description=f"{count} DVIRs - loading defect details...")

            handle = session.start_sync(date_range, vehicle_filter, on_event)
            try:
                return await handle.wait()
            finally:
                await session.close()


def _display_result(outcome: SyncOutcome, kpis, summary_rows: List, detail_rows: List, limit: int) -> None:
    result = outcome.latest

    kpi_lines = [
        f"[bold]Inspections:[/bold] {kpis.total_inspections}",
        f"[bold red]Outstanding:[/bold red] {kpis.outstanding_inspections}",
        f"[bold yellow]Not necessary:[/bold yellow] {kpis.not_necessary_inspections}",
        f"[bold]Defects:[/bold] {kpis.total_defects}",
    ]
    console.print()
    console.print(Panel("    ".join(kpi_lines), title="[bold blue]DVIR FLEET SUMMARY[/bold blue]", box=box.DOUBLE))

    if outcome.state is SyncState.CANCELLED:
        console.print("[yellow]Sync was cancelled; showing the last available result.[/yellow]")
    if result is not None and result.warning is not None:
        console.print(f"[yellow]Warning: {result.warning.message}[/yellow]")

    if not summary_rows:
        console.print("[yellow]No inspections in this range.[/yellow]")
        return

    table = Table(
        title=f"Inspections ({len(summary_rows)})",
        box=box.ROUNDED,
        show_header=True,
        header_style="bold cyan",
    )
    table.add_column("Vehicle", style="bold")
    table.add_column("Driver")
    table.add_column("Date")
    table.add_column("Type")
    table.add_column("Safe", justify="center")
    table.add_column("Defects", justify="right")
    table.add_column("Outstanding", justify="right")
    table.add_column("Not Nec.", justify="right")
    table.add_column("Repaired", justify="right")

    for row in summary_rows[:limit]:
        safe = "[green]yes[/green]" if row.safe_to_operate else "[red]no[/red]"
        outstanding = f"[red]{row.outstanding_defects}[/red]" if row.outstanding_defects else "0"
        table.add_row(
            row.vehicle,
            row.driver,
            format_value(row.date),
            row.log_type,
            safe,
            str(row.total_defects),
            outstanding,
            str(row.not_necessary),
            str(row.repaired),
        )
    console.print(table)

    if detail_rows:
        defects = Table(
            title=f"Defects ({len(detail_rows)})",
            box=box.ROUNDED,
            show_header=True,
            header_style="bold cyan",
        )
        for column in ("Vehicle", "Part", "Defect", "Severity", "Status", "Repaired By", "Remarks"):
            defects.add_column(column)
        for row in detail_rows[:limit]:
            defects.add_row(
                row.vehicle, row.part, row.defect, row.severity, row.repair_status, row.repaired_by, row.remarks
            )
        console.print(defects)

    if len(summary_rows) > limit or len(detail_rows) > limit:
        console.print(f"[dim]Showing at most {limit} rows per table; use --summary-csv/--detail-csv for all.[/dim]")


# =============================================================================
# Vehicles Command
# =============================================================================

@cli.command("vehicles")
@pass_context
def vehicles_cmd(ctx: Context):
    """List the vehicles and groups available as sync filters."""
    session = asyncio.run(_load_session())
    vehicles = session.context.selectable_vehicles()
    groups = session.context.selectable_groups()

    if ctx.json_output:
        output_json({
            "vehicles": [{"id": d.id, "name": d.name} for d in vehicles],
            "groups": [{"id": g.id, "name": g.name} for g in groups],
        })
        return

    table = Table(title=f"Vehicles ({len(vehicles)})", box=box.ROUNDED, header_style="bold cyan")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="bold")
    for device in vehicles:
        table.add_row(device.id, device.name or device.id)
    console.print(table)

    table = Table(title=f"Groups ({len(groups)})", box=box.ROUNDED, header_style="bold cyan")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="bold")
    for group in groups:
        table.add_row(group.id, group.name)
    console.print(table)


async def _load_session() -> SyncSession:
    client = build_client()
    async with client:
        session = SyncSession(client, config=settings)
        try:
            await session.load_foundation()
        except DvirSyncException as e:
            fail(e.user_message)
    return session


# =============================================================================
# Main Entry Point
# =============================================================================

def main():
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
