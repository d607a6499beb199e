"""Per-day running totals of worked time."""

from __future__ import annotations

import logging
import sqlite3
from typing import Optional, Sequence

from .db import Database
from .models import DayAggregate

logger = logging.getLogger(__name__)

_COLUMNS = "id, start_of_day_timestamp, year, month, day, total_worked_duration"


class DayStore:
    """Reads and writes rows of the ``days`` table."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def get_day(self, day_id: int) -> Optional[DayAggregate]:
        return self._get_one("id = ?", (day_id,))

    def get_day_by_date(self, year: int, month: int, day: int) -> Optional[DayAggregate]:
        return self._get_one("year = ? AND month = ? AND day = ?", (year, month, day))

    def get_day_by_start(self, start_of_day_timestamp: int) -> Optional[DayAggregate]:
        return self._get_one("start_of_day_timestamp = ?", (start_of_day_timestamp,))

    def create_day(
        self, start_of_day_timestamp: int, year: int, month: int, day: int
    ) -> DayAggregate:
        """Insert a day with a zero total. Callers check for an existing row first."""
        cur = self.db.execute(
            """
            INSERT INTO days (start_of_day_timestamp, year, month, day, total_worked_duration)
            VALUES (?, ?, ?, ?, 0)
            """,
            (start_of_day_timestamp, year, month, day),
        )
        logger.debug("Created day %04d-%02d-%02d.", year, month, day)
        return DayAggregate(
            id=int(cur.lastrowid),
            start_of_day_timestamp=start_of_day_timestamp,
            year=year,
            month=month,
            day=day,
            total_worked_duration=0,
        )

    def add_to_total(self, day_id: int, duration: int) -> Optional[DayAggregate]:
        """Atomically add ``duration`` seconds; ``None`` if the day is unknown."""
        if duration < 0:
            raise ValueError("Day totals can only grow")
        with self.db.transaction():
            cur = self.db.execute(
                """
                UPDATE days
                SET total_worked_duration = total_worked_duration + ?
                WHERE id = ?
                """,
                (duration, day_id),
            )
            if cur.rowcount == 0:
                return None
            return self.get_day(day_id)

    def get_days_starting_at_or_after(self, timestamp: int) -> list[DayAggregate]:
        rows = self.db.fetchall(
            f"""
            SELECT {_COLUMNS}
            FROM days
            WHERE start_of_day_timestamp >= ?
            ORDER BY start_of_day_timestamp
            """,
            (timestamp,),
        )
        return [_row_to_day(row) for row in rows]

    def get_all_days_ordered_by_date(self) -> list[DayAggregate]:
        """Every day, most recent first."""
        rows = self.db.fetchall(
            f"SELECT {_COLUMNS} FROM days ORDER BY start_of_day_timestamp DESC"
        )
        return [_row_to_day(row) for row in rows]

    def _get_one(self, where: str, params: Sequence[object]) -> Optional[DayAggregate]:
        rows = self.db.fetchall(
            f"SELECT {_COLUMNS} FROM days WHERE {where} ORDER BY id", params
        )
        if not rows:
            return None
        if len(rows) > 1:
            logger.warning(
                "Expected at most one day for %s %s, found %d; using id=%s.",
                where,
                tuple(params),
                len(rows),
                rows[0]["id"],
            )
        return _row_to_day(rows[0])


def _row_to_day(row: sqlite3.Row) -> DayAggregate:
    return DayAggregate(
        id=row["id"],
        start_of_day_timestamp=row["start_of_day_timestamp"],
        year=row["year"],
        month=row["month"],
        day=row["day"],
        total_worked_duration=row["total_worked_duration"],
    )
