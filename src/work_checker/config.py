"""Configuration models and helpers for the work checker."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .paths import get_db_path, get_state_path

# Trailing windows reported alongside today's total.
WEEK_DAYS = 7
MONTH_DAYS = 30


@dataclass(slots=True)
class TrackerSettings:
    """Where the tracker keeps its data and which calendar it counts days in."""

    db_path: Path
    state_path: Path
    timezone: Optional[ZoneInfo] = None

    @classmethod
    def from_options(
        cls,
        db_path: Optional[Path] = None,
        state_path: Optional[Path] = None,
        timezone_name: Optional[str] = None,
    ) -> "TrackerSettings":
        return cls(
            db_path=Path(db_path) if db_path else get_db_path(),
            state_path=Path(state_path) if state_path else get_state_path(),
            timezone=parse_timezone(timezone_name),
        )

    @property
    def timezone_label(self) -> str:
        return self.timezone.key if self.timezone is not None else "local"


def parse_timezone(name: Optional[str]) -> Optional[ZoneInfo]:
    """Return the named zone, or ``None`` for the system local calendar."""
    if name is None or not name.strip() or name.strip().lower() == "local":
        return None
    try:
        return ZoneInfo(name.strip())
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Invalid timezone: {name}") from exc
