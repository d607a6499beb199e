"""Working session state machine and duration queries."""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import tzinfo
from typing import Callable, Iterator, Optional

from . import clock
from .config import TrackerSettings
from .days import DayStore
from .db import Database, StorageError
from .models import SessionState, WorkSegment
from .reporting import MonthGroup, group_days_by_month
from .segments import SegmentStore
from .state import SessionStateStore

logger = logging.getLogger(__name__)


def epoch_now() -> int:
    return int(time.time())


def split_session(
    start_timestamp: int, stop_timestamp: int, tz: Optional[tzinfo] = None
) -> list[tuple[int, int]]:
    """Split ``[start, stop]`` into pieces that each stay within one calendar day.

    A piece that is cut at a day boundary ends on that day's last second, and
    pieces of zero length are dropped.
    """
    if stop_timestamp <= start_timestamp:
        return []

    stop_day = clock.start_of_day(stop_timestamp, tz)
    if clock.start_of_day(start_timestamp, tz) == stop_day:
        return [(start_timestamp, stop_timestamp)]

    pieces: list[tuple[int, int]] = []
    cursor = start_timestamp
    while clock.start_of_day(cursor, tz) < stop_day:
        pieces.append((cursor, clock.end_of_day(cursor, tz)))
        cursor = clock.start_of_next_day(cursor, tz)
    pieces.append((cursor, stop_timestamp))

    return [(start, stop) for start, stop in pieces if stop > start]


@dataclass(frozen=True, slots=True)
class ConsistencyReport:
    n_days: int
    window_start: int
    aggregate_total: int
    segment_total: int
    detached_total: int = 0

    @property
    def is_consistent(self) -> bool:
        return self.aggregate_total == self.segment_total


class SessionManager:
    """Starts and stops working sessions and answers duration queries.

    The manager owns the single :class:`SessionState`. It is loaded from the
    state store when the manager is created, so a session left open by a
    crash keeps running, and it is saved explicitly after every transition.
    """

    def __init__(
        self,
        db: Database,
        state_store: SessionStateStore,
        *,
        tz: Optional[tzinfo] = None,
        now: Callable[[], int] = epoch_now,
        segments: Optional[SegmentStore] = None,
        days: Optional[DayStore] = None,
    ) -> None:
        self.db = db
        self.segments = segments or SegmentStore(db)
        self.days = days or DayStore(db)
        self.tz = tz
        self._now = now
        self._state_store = state_store
        self._lock = threading.RLock()
        self._state = state_store.load()
        if self._state.is_active:
            logger.info("Resuming working session started at %d.", self._state.start_timestamp)

    @classmethod
    def from_settings(
        cls, settings: TrackerSettings, *, now: Callable[[], int] = epoch_now
    ) -> "SessionManager":
        return cls(
            Database.open(settings.db_path),
            SessionStateStore(settings.state_path),
            tz=settings.timezone,
            now=now,
        )

    def close(self) -> None:
        self.db.close()

    # Session state.

    @property
    def is_session_active(self) -> bool:
        return self._state.is_active

    @property
    def session_start(self) -> Optional[int]:
        return self._state.start_timestamp

    def current_session_duration(self) -> Optional[int]:
        start = self._state.start_timestamp
        if start is None:
            return None
        return self._now() - start

    # Transitions.

    def start_working(self) -> bool:
        """Open a session now. Returns ``False`` if one is already open."""
        with self._lock:
            if self._state.is_active:
                logger.warning("Work has already started!")
                return False
            start = self._now()
            self._save(SessionState(start_timestamp=start))
            logger.info("Started working at %d.", start)
            return True

    def stop_working(self) -> list[WorkSegment]:
        """Close the open session and record it; returns the stored segments.

        Each day-bounded piece is written in its own transaction. If writing
        a piece fails the :class:`StorageError` propagates. When nothing was
        written the session stays open so the stop can be retried; otherwise
        the pieces already written stay recorded and the session is closed.

        The session is idle in memory while its pieces are written, so a
        query never sees the same interval both stored and open.
        """
        with self._lock:
            start = self._state.start_timestamp
            if start is None:
                logger.warning("Work has not started yet!")
                return []

            stop = self._now()
            if stop < start:
                logger.warning(
                    "Clock moved backwards (start=%d, stop=%d); nothing recorded.", start, stop
                )
            open_state = self._state
            self._state = SessionState()
            recorded: list[WorkSegment] = []
            try:
                for piece_start, piece_stop in split_session(start, stop, self.tz):
                    recorded.append(self._record_piece(piece_start, piece_stop))
            except StorageError:
                logger.error(
                    "Stopped recording session %d-%d after %d segment(s).",
                    start,
                    stop,
                    len(recorded),
                    exc_info=True,
                )
                if recorded:
                    self._persist_idle()
                else:
                    self._state = open_state
                raise

            self._persist_idle()
            logger.info(
                "Stopped working at %d; recorded %d segment(s).", stop, len(recorded)
            )
            return recorded

    def _persist_idle(self) -> None:
        # Memory stays idle even when the save fails.
        try:
            self._state_store.save(SessionState())
        except StorageError:
            logger.error(
                "Session recorded but the idle state could not be saved.", exc_info=True
            )

    def _record_piece(self, start: int, stop: int) -> WorkSegment:
        duration = stop - start
        with self.db.transaction():
            day_id = self.resolve_day_id(start)
            if day_id is None:
                logger.error(
                    "Failed to get a day for segment %d-%d; it will not count in day totals.",
                    start,
                    stop,
                )
            else:
                try:
                    updated = self.days.add_to_total(day_id, duration)
                except StorageError:
                    logger.error("Failed to add %ds to day %d.", duration, day_id, exc_info=True)
                    updated = None
                if updated is None:
                    logger.warning(
                        "Day %d was not updated; segment %d-%d is stored without a day.",
                        day_id,
                        start,
                        stop,
                    )
                    day_id = None
            return self.segments.add_segment(start, stop, day_id)

    def _save(self, state: SessionState) -> None:
        previous = self._state
        self._state = state
        try:
            self._state_store.save(state)
        except StorageError:
            self._state = previous
            raise

    # Days.

    def resolve_day_id(self, timestamp: int) -> Optional[int]:
        """Id of the day containing ``timestamp``, creating the day if needed."""
        start_of_day = clock.start_of_day(timestamp, self.tz)
        try:
            existing = self.days.get_day_by_start(start_of_day)
            if existing is not None:
                return existing.id
            year, month, day = clock.date_components(timestamp, self.tz)
            return self.days.create_day(start_of_day, year, month, day).id
        except StorageError:
            logger.error("Cannot find or create the day starting at %d.", start_of_day, exc_info=True)
            return None

    # Queries.

    def windowed_duration(self, n_days: int) -> Optional[int]:
        """Seconds worked today and in the previous ``n_days - 1`` days.

        Returns ``None`` if the stored totals could not be read.
        """
        with self._lock:
            now = self._now()
            window_start = clock.start_of_trailing_window(now, n_days, self.tz)
            start = self._state.start_timestamp

            total = 0
            if start is not None:
                if start < window_start:
                    # The open session covers the whole window.
                    return now - window_start
                total += now - start

            stored = self.stored_window_total(window_start)
            if stored is None:
                return None
            return total + stored

    def today_duration(self) -> Optional[int]:
        return self.windowed_duration(1)

    def daily_average(self, n_days: int) -> Optional[int]:
        total = self.windowed_duration(n_days)
        if total is None:
            return None
        return total // n_days

    def stored_window_total(self, window_start: int) -> Optional[int]:
        try:
            days = self.days.get_days_starting_at_or_after(window_start)
        except StorageError:
            logger.error("Failed to read day totals since %d.", window_start, exc_info=True)
            return None
        return sum(day.total_worked_duration for day in days)

    def segment_window_total(self, n_days: int) -> int:
        """Window total recomputed from raw segments. Raises StorageError."""
        window_start = clock.start_of_trailing_window(self._now(), n_days, self.tz)
        return sum(
            segment.duration
            for segment in self.segments.get_segments_starting_at_or_after(window_start)
        )

    def check_consistency(self, n_days: int) -> ConsistencyReport:
        """Compare day totals with the segments they were built from.

        Segments stored without a day never reached a day total, so they are
        reported separately as ``detached_total`` and left out of the comparison.
        """
        window_start = clock.start_of_trailing_window(self._now(), n_days, self.tz)
        days = self.days.get_days_starting_at_or_after(window_start)
        segments = self.segments.get_segments_starting_at_or_after(window_start)
        report = ConsistencyReport(
            n_days=n_days,
            window_start=window_start,
            aggregate_total=sum(day.total_worked_duration for day in days),
            segment_total=sum(
                segment.duration for segment in segments if segment.day_id is not None
            ),
            detached_total=sum(
                segment.duration for segment in segments if segment.day_id is None
            ),
        )
        if not report.is_consistent:
            logger.warning(
                "Day totals (%ds) disagree with segments (%ds) for the last %d days.",
                report.aggregate_total,
                report.segment_total,
                n_days,
            )
        if report.detached_total:
            logger.warning(
                "%ds of segments in the last %d days are not attached to a day.",
                report.detached_total,
                n_days,
            )
        return report

    def month_history(self) -> list[MonthGroup]:
        """Stored days grouped by month, most recent first. Raises StorageError."""
        return group_days_by_month(self.days.get_all_days_ordered_by_date())


@contextmanager
def session_manager(
    settings: TrackerSettings, *, now: Callable[[], int] = epoch_now
) -> Iterator[SessionManager]:
    manager = SessionManager.from_settings(settings, now=now)
    try:
        yield manager
    finally:
        manager.close()
