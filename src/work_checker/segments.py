"""Append-only log of work segments."""

from __future__ import annotations

import logging
import sqlite3
from typing import Optional

from .db import Database
from .models import WorkSegment

logger = logging.getLogger(__name__)

_COLUMNS = "id, start_timestamp, stop_timestamp, day_id"


class SegmentStore:
    """Reads and writes rows of the ``work_segments`` table.

    Every method raises :class:`~work_checker.db.StorageError` when the
    database cannot be used. An empty result is a normal empty list.
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    def add_segment(
        self, start_timestamp: int, stop_timestamp: int, day_id: Optional[int] = None
    ) -> WorkSegment:
        _check_bounds(start_timestamp, stop_timestamp)
        if day_id is None:
            logger.warning(
                "Recording segment %d-%d without a day; it will be missing from day totals.",
                start_timestamp,
                stop_timestamp,
            )
        cur = self.db.execute(
            """
            INSERT INTO work_segments (start_timestamp, stop_timestamp, day_id)
            VALUES (?, ?, ?)
            """,
            (start_timestamp, stop_timestamp, day_id),
        )
        return WorkSegment(
            id=int(cur.lastrowid),
            start_timestamp=start_timestamp,
            stop_timestamp=stop_timestamp,
            day_id=day_id,
        )

    def get_segment(self, segment_id: int) -> Optional[WorkSegment]:
        rows = self.db.fetchall(
            f"SELECT {_COLUMNS} FROM work_segments WHERE id = ?", (segment_id,)
        )
        return _row_to_segment(rows[0]) if rows else None

    def get_all_segments(self) -> list[WorkSegment]:
        rows = self.db.fetchall(
            f"SELECT {_COLUMNS} FROM work_segments ORDER BY start_timestamp, id"
        )
        return [_row_to_segment(row) for row in rows]

    def get_segments_starting_at_or_after(self, timestamp: int) -> list[WorkSegment]:
        rows = self.db.fetchall(
            f"""
            SELECT {_COLUMNS}
            FROM work_segments
            WHERE start_timestamp >= ?
            ORDER BY start_timestamp, id
            """,
            (timestamp,),
        )
        return [_row_to_segment(row) for row in rows]

    def get_segments_by_id_range(self, start_id: int, end_id: int) -> list[WorkSegment]:
        """Segments whose id lies in ``[start_id, end_id]``."""
        rows = self.db.fetchall(
            f"""
            SELECT {_COLUMNS}
            FROM work_segments
            WHERE id >= ? AND id <= ?
            ORDER BY id
            """,
            (start_id, end_id),
        )
        return [_row_to_segment(row) for row in rows]

    def update_segment(
        self,
        segment_id: int,
        new_start: int,
        new_stop: int,
        new_day_id: Optional[int] = None,
    ) -> bool:
        """Corrective edit of a stored segment. Day totals are not adjusted."""
        _check_bounds(new_start, new_stop)
        cur = self.db.execute(
            """
            UPDATE work_segments
            SET start_timestamp = ?, stop_timestamp = ?, day_id = ?
            WHERE id = ?
            """,
            (new_start, new_stop, new_day_id, segment_id),
        )
        updated = cur.rowcount > 0
        if updated:
            logger.info("Segment %d corrected to %d-%d.", segment_id, new_start, new_stop)
        return updated

    def delete_segment(self, segment_id: int) -> bool:
        cur = self.db.execute("DELETE FROM work_segments WHERE id = ?", (segment_id,))
        deleted = cur.rowcount > 0
        if deleted:
            logger.info("Segment %d deleted.", segment_id)
        return deleted


def _check_bounds(start_timestamp: int, stop_timestamp: int) -> None:
    if stop_timestamp <= start_timestamp:
        raise ValueError(
            f"stop_timestamp ({stop_timestamp}) must be after start_timestamp ({start_timestamp})"
        )


def _row_to_segment(row: sqlite3.Row) -> WorkSegment:
    return WorkSegment(
        id=row["id"],
        start_timestamp=row["start_timestamp"],
        stop_timestamp=row["stop_timestamp"],
        day_id=row["day_id"],
    )
