"""Domain models for recorded working time."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Optional


@dataclass(frozen=True, slots=True)
class WorkSegment:
    """A stored, day-bounded slice of a working session."""

    id: int
    start_timestamp: int
    stop_timestamp: int
    day_id: Optional[int]

    @property
    def duration(self) -> int:
        return self.stop_timestamp - self.start_timestamp


@dataclass(frozen=True, slots=True)
class DayAggregate:
    """Running total of worked seconds for one calendar day."""

    id: int
    start_of_day_timestamp: int
    year: int
    month: int
    day: int
    total_worked_duration: int

    @property
    def date(self) -> date:
        return date(self.year, self.month, self.day)


@dataclass(slots=True)
class SessionState:
    """Start of the open working session, or ``None`` when idle."""

    start_timestamp: Optional[int] = None

    @property
    def is_active(self) -> bool:
        return self.start_timestamp is not None
