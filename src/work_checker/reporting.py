"""Simple reporting utilities for CLI output."""

from __future__ import annotations

import calendar
from dataclasses import dataclass, field
from datetime import datetime, tzinfo
from typing import TYPE_CHECKING, Iterable, Optional

from .config import MONTH_DAYS, WEEK_DAYS
from .models import DayAggregate, WorkSegment

if TYPE_CHECKING:
    from .sessions import SessionManager


@dataclass(slots=True)
class MonthGroup:
    year: int
    month: int
    days: list[DayAggregate] = field(default_factory=list)

    @property
    def total(self) -> int:
        return sum(day.total_worked_duration for day in self.days)

    @property
    def label(self) -> str:
        return f"{calendar.month_name[self.month]} {self.year}"


def group_days_by_month(days: Iterable[DayAggregate]) -> list[MonthGroup]:
    """Group days into consecutive months, keeping the input order."""
    groups: list[MonthGroup] = []
    for day in days:
        if not groups or (groups[-1].year, groups[-1].month) != (day.year, day.month):
            groups.append(MonthGroup(year=day.year, month=day.month))
        groups[-1].days.append(day)
    return groups


class SummaryPrinter:
    """Render human-readable summaries in the console."""

    def __init__(self, manager: "SessionManager") -> None:
        self.manager = manager

    def print_status(self, *, average: bool = False) -> None:
        manager = self.manager
        if manager.is_session_active:
            started = _format_timestamp(manager.session_start, manager.tz)
            print(f"Working since {started} ({format_duration(manager.current_session_duration())})")
        else:
            print("Not working.")
        print("-" * 40)
        print(f"Today:         {format_optional(manager.today_duration())}")
        if average:
            print(f"Past {WEEK_DAYS} days:   {format_optional(manager.daily_average(WEEK_DAYS))} / day")
            print(f"Past {MONTH_DAYS} days:  {format_optional(manager.daily_average(MONTH_DAYS))} / day")
        else:
            print(f"Past {WEEK_DAYS} days:   {format_optional(manager.windowed_duration(WEEK_DAYS))}")
            print(f"Past {MONTH_DAYS} days:  {format_optional(manager.windowed_duration(MONTH_DAYS))}")

    def print_history(self, groups: list[MonthGroup]) -> None:
        if not groups:
            print("No working time recorded yet.")
            return
        for group in groups:
            print(f"{group.label:<28} {format_duration(group.total)}")
            for day in group.days:
                print(f"  {day.date.strftime('%a %d %b %Y'):<26} {format_duration(day.total_worked_duration)}")

    def print_segments(self, segments: list[WorkSegment]) -> None:
        if not segments:
            print("No segments found.")
            return
        tz = self.manager.tz
        for segment in segments:
            day = segment.day_id if segment.day_id is not None else "-"
            print(
                f"{segment.id:>6}  {_format_timestamp(segment.start_timestamp, tz)}"
                f"  {_format_timestamp(segment.stop_timestamp, tz)}"
                f"  {format_duration(segment.duration)}  day={day}"
            )


def format_duration(seconds: float) -> str:
    total_seconds = int(round(seconds))
    hours, remainder = divmod(total_seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def format_optional(seconds: Optional[float]) -> str:
    return "unavailable" if seconds is None else format_duration(seconds)


def _format_timestamp(timestamp: int, tz: Optional[tzinfo]) -> str:
    return datetime.fromtimestamp(timestamp, tz).strftime("%Y-%m-%d %H:%M:%S")
