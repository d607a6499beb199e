"""Command-line interface for the work checker."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional

import typer

from . import clock
from .config import MONTH_DAYS, WEEK_DAYS, TrackerSettings
from .db import StorageError
from .reporting import SummaryPrinter, format_duration
from .server_runner import run_dashboard
from .sessions import SessionManager, session_manager

app = typer.Typer(help="Track working sessions and daily totals.")

MAX_SEGMENT_ID = 2**63 - 1


@app.callback(no_args_is_help=True)
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logs."),
    db_path: Optional[Path] = typer.Option(
        None,
        "--db",
        envvar="WORK_CHECKER_DB",
        path_type=Path,
        help="Location of the SQLite database.",
    ),
    state_path: Optional[Path] = typer.Option(
        None,
        "--state",
        envvar="WORK_CHECKER_STATE",
        path_type=Path,
        help="Location of the open-session settings file.",
    ),
    timezone_name: Optional[str] = typer.Option(
        None,
        "--timezone",
        envvar="WORK_CHECKER_TIMEZONE",
        help="IANA zone used for day boundaries (defaults to the local calendar).",
    ),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    try:
        ctx.obj = TrackerSettings.from_options(
            db_path=db_path, state_path=state_path, timezone_name=timezone_name
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--timezone") from exc


@contextmanager
def _manager(ctx: typer.Context) -> Iterator[SessionManager]:
    with session_manager(ctx.obj) as manager:
        try:
            yield manager
        except StorageError as exc:
            typer.echo(f"Storage error: {exc}", err=True)
            raise typer.Exit(code=1) from exc


@app.command()
def start(ctx: typer.Context) -> None:
    """Start a working session."""
    with _manager(ctx) as manager:
        if manager.start_working():
            typer.echo("Started working.")
        else:
            typer.echo("Already working.")


@app.command()
def stop(ctx: typer.Context) -> None:
    """Stop the working session and record it."""
    with _manager(ctx) as manager:
        if not manager.is_session_active:
            typer.echo("Not working.")
            return
        segments = manager.stop_working()
        recorded = sum(segment.duration for segment in segments)
        typer.echo(f"Stopped working; recorded {format_duration(recorded)} in {len(segments)} segment(s).")


@app.command()
def status(
    ctx: typer.Context,
    average: bool = typer.Option(
        False, "--average", help="Show daily averages for the 7 and 30 day windows."
    ),
) -> None:
    """Print the current session and today / 7 / 30 day totals."""
    with _manager(ctx) as manager:
        SummaryPrinter(manager).print_status(average=average)


@app.command()
def history(ctx: typer.Context) -> None:
    """Print recorded day totals grouped by month."""
    with _manager(ctx) as manager:
        SummaryPrinter(manager).print_history(manager.month_history())


@app.command()
def segments(
    ctx: typer.Context,
    since: Optional[str] = typer.Option(
        None, "--since", help="Only segments starting on or after this date (YYYY-MM-DD)."
    ),
    from_id: Optional[int] = typer.Option(None, "--from-id", min=1, help="First segment id."),
    to_id: Optional[int] = typer.Option(None, "--to-id", min=1, help="Last segment id."),
) -> None:
    """List stored work segments."""
    settings: TrackerSettings = ctx.obj
    with _manager(ctx) as manager:
        if from_id is not None or to_id is not None:
            found = manager.segments.get_segments_by_id_range(
                from_id or 1, to_id if to_id is not None else MAX_SEGMENT_ID
            )
        elif since:
            day = _parse_date(since, "--since")
            found = manager.segments.get_segments_starting_at_or_after(
                clock.start_of_date(day.year, day.month, day.day, settings.timezone)
            )
        else:
            found = manager.segments.get_all_segments()
        SummaryPrinter(manager).print_segments(found)


@app.command("edit-segment")
def edit_segment(
    ctx: typer.Context,
    segment_id: int = typer.Argument(..., help="Segment id."),
    start_time: str = typer.Option(..., "--start", help="New start, YYYY-MM-DDTHH:MM:SS."),
    stop_time: str = typer.Option(..., "--stop", help="New stop, YYYY-MM-DDTHH:MM:SS."),
    day_id: Optional[int] = typer.Option(None, "--day-id", help="Day the segment belongs to."),
) -> None:
    """Correct a stored segment. Day totals are left unchanged."""
    settings: TrackerSettings = ctx.obj
    new_start = _parse_timestamp(start_time, "--start", settings)
    new_stop = _parse_timestamp(stop_time, "--stop", settings)
    if new_stop <= new_start:
        raise typer.BadParameter("must be after --start", param_hint="--stop")
    with _manager(ctx) as manager:
        if not manager.segments.update_segment(segment_id, new_start, new_stop, day_id):
            typer.echo(f"No segment with id {segment_id}.", err=True)
            raise typer.Exit(code=1)
        typer.echo(f"Segment {segment_id} updated.")


@app.command("delete-segment")
def delete_segment(
    ctx: typer.Context,
    segment_id: int = typer.Argument(..., help="Segment id."),
) -> None:
    """Delete a stored segment. Day totals are left unchanged."""
    with _manager(ctx) as manager:
        if not manager.segments.delete_segment(segment_id):
            typer.echo(f"No segment with id {segment_id}.", err=True)
            raise typer.Exit(code=1)
        typer.echo(f"Segment {segment_id} deleted.")


@app.command()
def verify(
    ctx: typer.Context,
    days: list[int] = typer.Option(
        [WEEK_DAYS, MONTH_DAYS], "--days", help="Window lengths to check."
    ),
) -> None:
    """Check that day totals agree with the stored segments."""
    if any(n_days < 1 for n_days in days):
        raise typer.BadParameter("window lengths must be at least 1", param_hint="--days")
    failed = False
    with _manager(ctx) as manager:
        for n_days in days:
            report = manager.check_consistency(n_days)
            mark = "ok" if report.is_consistent else "MISMATCH"
            typer.echo(
                f"{n_days:>4} days: totals {format_duration(report.aggregate_total)}"
                f" / segments {format_duration(report.segment_total)}  {mark}"
            )
            if report.detached_total:
                typer.echo(
                    f"      {format_duration(report.detached_total)} in segments without a day"
                )
            failed = failed or not report.is_consistent
    if failed:
        raise typer.Exit(code=1)


@app.command()
def web(
    ctx: typer.Context,
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind the API."),
    port: int = typer.Option(
        8765, "--port", min=1, max=65535, help="TCP port for the API."
    ),
) -> None:
    """Serve the local JSON API."""
    run_dashboard(host=host, port=port, settings=ctx.obj)


def _parse_date(value: str, hint: str) -> datetime:
    try:
        return datetime.strptime(value, "%Y-%m-%d")
    except ValueError as exc:
        raise typer.BadParameter("expected YYYY-MM-DD", param_hint=hint) from exc


def _parse_timestamp(value: str, hint: str, settings: TrackerSettings) -> int:
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as exc:
        raise typer.BadParameter("expected YYYY-MM-DDTHH:MM:SS", param_hint=hint) from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=settings.timezone)
    return int(parsed.timestamp())
