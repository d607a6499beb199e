import logging
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from work_checker.days import DayStore
from work_checker.db import Database, StorageError
from work_checker.segments import SegmentStore
from work_checker.sessions import SessionManager, split_session
from work_checker.state import SessionStateStore

UTC = ZoneInfo("UTC")
DAY = 86400


def ts(*args: int) -> int:
    return int(datetime(*args, tzinfo=timezone.utc).timestamp())


class FakeClock:
    def __init__(self, now: int) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


def make_manager(tmp_path, clock: FakeClock, db: Database | None = None, **kwargs) -> SessionManager:
    return SessionManager(
        db or Database.open(":memory:"),
        SessionStateStore(tmp_path / "session.json"),
        tz=UTC,
        now=clock,
        **kwargs,
    )


def work(manager: SessionManager, clock: FakeClock, start: int, stop: int):
    clock.now = start
    assert manager.start_working() is True
    clock.now = stop
    return manager.stop_working()


def test_split_session_within_one_day() -> None:
    assert split_session(ts(2024, 1, 1, 9), ts(2024, 1, 1, 17), UTC) == [
        (ts(2024, 1, 1, 9), ts(2024, 1, 1, 17))
    ]
    assert split_session(ts(2024, 1, 1, 9), ts(2024, 1, 1, 9), UTC) == []


def test_split_session_across_several_days() -> None:
    start = ts(2024, 1, 1, 22)
    stop = ts(2024, 1, 4, 2)

    pieces = split_session(start, stop, UTC)

    assert pieces == [
        (start, ts(2024, 1, 1, 23, 59, 59)),
        (ts(2024, 1, 2), ts(2024, 1, 2, 23, 59, 59)),
        (ts(2024, 1, 3), ts(2024, 1, 3, 23, 59, 59)),
        (ts(2024, 1, 4), stop),
    ]
    # Each of the three midnights drops the boundary second.
    assert sum(b - a for a, b in pieces) == (stop - start) - 3
    for (_, previous_stop), (next_start, _) in zip(pieces, pieces[1:]):
        assert next_start == previous_stop + 1


def test_split_session_drops_zero_length_pieces() -> None:
    assert split_session(ts(2024, 1, 1, 22), ts(2024, 1, 2), UTC) == [
        (ts(2024, 1, 1, 22), ts(2024, 1, 1, 23, 59, 59))
    ]
    assert split_session(ts(2024, 1, 1, 23, 59, 59), ts(2024, 1, 2, 1), UTC) == [
        (ts(2024, 1, 2), ts(2024, 1, 2, 1))
    ]


def test_start_twice_keeps_first_start(tmp_path, caplog) -> None:
    clock = FakeClock(ts(2024, 1, 1, 9))
    manager = make_manager(tmp_path, clock)

    assert manager.start_working() is True
    clock.now += 600
    with caplog.at_level(logging.WARNING, logger="work_checker.sessions"):
        assert manager.start_working() is False

    assert "already started" in caplog.text
    assert manager.session_start == ts(2024, 1, 1, 9)
    assert manager.current_session_duration() == 600


def test_stop_while_idle_is_a_no_op(tmp_path, caplog) -> None:
    manager = make_manager(tmp_path, FakeClock(ts(2024, 1, 1, 9)))

    with caplog.at_level(logging.WARNING, logger="work_checker.sessions"):
        assert manager.stop_working() == []

    assert "not started" in caplog.text
    assert not manager.is_session_active
    assert manager.current_session_duration() is None
    assert manager.segments.get_all_segments() == []


def test_same_day_session_records_one_segment(tmp_path) -> None:
    clock = FakeClock(0)
    manager = make_manager(tmp_path, clock)

    recorded = work(manager, clock, ts(2024, 1, 1, 9), ts(2024, 1, 1, 10, 30))

    assert [segment.duration for segment in recorded] == [5400]
    day = manager.days.get_day_by_date(2024, 1, 1)
    assert day.total_worked_duration == 5400
    assert recorded[0].day_id == day.id
    assert not manager.is_session_active


def test_session_across_midnight_is_split_per_day(tmp_path) -> None:
    clock = FakeClock(0)
    manager = make_manager(tmp_path, clock)

    recorded = work(manager, clock, ts(2024, 1, 1, 23), ts(2024, 1, 2, 1))

    assert [(s.start_timestamp, s.stop_timestamp) for s in recorded] == [
        (ts(2024, 1, 1, 23), ts(2024, 1, 1, 23, 59, 59)),
        (ts(2024, 1, 2), ts(2024, 1, 2, 1)),
    ]
    assert [s.duration for s in recorded] == [3599, 3600]
    jan1 = manager.days.get_day_by_date(2024, 1, 1)
    jan2 = manager.days.get_day_by_date(2024, 1, 2)
    assert (jan1.total_worked_duration, jan2.total_worked_duration) == (3599, 3600)
    assert [s.day_id for s in recorded] == [jan1.id, jan2.id]
    assert manager.segments.get_all_segments() == recorded


def test_open_session_survives_restart(tmp_path) -> None:
    clock = FakeClock(ts(2024, 1, 1, 9))
    db = Database.open(":memory:")
    first = make_manager(tmp_path, clock, db=db)
    first.start_working()

    clock.now = ts(2024, 1, 1, 11)
    second = make_manager(tmp_path, clock, db=db)

    assert second.is_session_active
    assert second.session_start == ts(2024, 1, 1, 9)
    assert second.today_duration() == 7200

    second.stop_working()
    assert not make_manager(tmp_path, clock, db=db).is_session_active


def test_resolve_day_id_is_idempotent(tmp_path) -> None:
    manager = make_manager(tmp_path, FakeClock(ts(2024, 1, 1, 9)))

    first = manager.resolve_day_id(ts(2024, 1, 1, 0, 0, 1))
    second = manager.resolve_day_id(ts(2024, 1, 1, 23, 59, 59))

    assert first == second
    assert len(manager.days.get_all_days_ordered_by_date()) == 1
    assert manager.days.get_day(first).start_of_day_timestamp == ts(2024, 1, 1)


def test_window_short_circuits_for_old_open_session(tmp_path) -> None:
    now = ts(2024, 3, 15, 12)
    clock = FakeClock(now)
    manager = make_manager(tmp_path, clock)
    work(manager, clock, ts(2024, 3, 1, 9), ts(2024, 3, 1, 10))
    day = manager.resolve_day_id(ts(2024, 3, 14, 12))
    manager.days.add_to_total(day, 5000)

    clock.now = now - 40 * DAY
    manager.start_working()
    clock.now = now

    assert manager.windowed_duration(7) == now - ts(2024, 3, 9)
    assert manager.windowed_duration(30) == now - ts(2024, 2, 15)
    assert manager.today_duration() == 12 * 3600


def test_window_adds_open_session_to_stored_totals(tmp_path) -> None:
    clock = FakeClock(0)
    manager = make_manager(tmp_path, clock)
    work(manager, clock, ts(2024, 3, 12, 9), ts(2024, 3, 12, 10))
    work(manager, clock, ts(2024, 3, 15, 8), ts(2024, 3, 15, 8, 5))
    work(manager, clock, ts(2024, 2, 1, 8), ts(2024, 2, 1, 9))

    clock.now = ts(2024, 3, 15, 10)
    manager.start_working()
    clock.now = ts(2024, 3, 15, 12)

    assert manager.today_duration() == 7200 + 300
    assert manager.windowed_duration(7) == 7200 + 300 + 3600
    assert manager.windowed_duration(30) == 7200 + 300 + 3600
    assert manager.daily_average(7) == (7200 + 300 + 3600) // 7


def test_today_counts_only_since_midnight_for_session_from_yesterday(tmp_path) -> None:
    clock = FakeClock(ts(2024, 3, 14, 22))
    manager = make_manager(tmp_path, clock)
    manager.start_working()
    clock.now = ts(2024, 3, 15, 1)

    assert manager.today_duration() == 3600
    assert manager.windowed_duration(7) == 3 * 3600


def test_idle_window_uses_stored_totals_only(tmp_path) -> None:
    clock = FakeClock(0)
    manager = make_manager(tmp_path, clock)
    work(manager, clock, ts(2024, 3, 8, 9), ts(2024, 3, 8, 10))
    work(manager, clock, ts(2024, 3, 9, 9), ts(2024, 3, 9, 9, 30))

    clock.now = ts(2024, 3, 15, 12)

    assert manager.today_duration() == 0
    assert manager.windowed_duration(7) == 1800
    assert manager.windowed_duration(30) == 5400


def test_day_totals_match_segments(tmp_path) -> None:
    clock = FakeClock(0)
    manager = make_manager(tmp_path, clock)
    work(manager, clock, ts(2024, 3, 1, 22), ts(2024, 3, 3, 2))
    work(manager, clock, ts(2024, 3, 10, 9), ts(2024, 3, 10, 17))
    work(manager, clock, ts(2024, 3, 14, 23, 30), ts(2024, 3, 15, 0, 30))

    clock.now = ts(2024, 3, 15, 12)
    for n_days in (1, 7, 30):
        report = manager.check_consistency(n_days)
        assert report.is_consistent
        assert report.aggregate_total == manager.segment_window_total(n_days)
        assert manager.windowed_duration(n_days) == report.aggregate_total


def test_stop_with_unavailable_database_keeps_session_open(tmp_path) -> None:
    clock = FakeClock(ts(2024, 1, 1, 9))
    db = Database.open(tmp_path / "missing" / "work.sqlite3")
    manager = make_manager(tmp_path, clock, db=db)

    assert manager.start_working() is True
    clock.now += 60
    with pytest.raises(StorageError):
        manager.stop_working()

    assert manager.is_session_active
    assert manager.today_duration() is None
    clock.now = ts(2024, 1, 20, 9)
    assert manager.windowed_duration(7) == ts(2024, 1, 20, 9) - ts(2024, 1, 14)


class BrokenDayStore(DayStore):
    def get_day_by_start(self, start_of_day_timestamp):
        raise StorageError("days table is locked")


class UnknownDayStore(DayStore):
    def add_to_total(self, day_id, duration):
        return None


@pytest.mark.parametrize("store_type", [BrokenDayStore, UnknownDayStore])
def test_segment_is_kept_when_day_bookkeeping_fails(tmp_path, caplog, store_type) -> None:
    clock = FakeClock(0)
    db = Database.open(":memory:")
    manager = make_manager(tmp_path, clock, db=db, days=store_type(db))

    with caplog.at_level(logging.WARNING, logger="work_checker"):
        recorded = work(manager, clock, ts(2024, 1, 1, 9), ts(2024, 1, 1, 10))

    assert [(s.duration, s.day_id) for s in recorded] == [(3600, None)]
    assert manager.segments.get_all_segments() == recorded
    assert caplog.records


class FlakySegmentStore(SegmentStore):
    def __init__(self, db: Database, fail_on: int) -> None:
        super().__init__(db)
        self.fail_on = fail_on
        self.calls = 0

    def add_segment(self, start_timestamp, stop_timestamp, day_id=None):
        self.calls += 1
        if self.calls == self.fail_on:
            raise StorageError("disk I/O error")
        return super().add_segment(start_timestamp, stop_timestamp, day_id)


def test_partial_stop_keeps_committed_segments(tmp_path) -> None:
    clock = FakeClock(ts(2024, 1, 1, 23))
    db = Database.open(":memory:")
    manager = make_manager(tmp_path, clock, db=db, segments=FlakySegmentStore(db, fail_on=2))
    manager.start_working()
    clock.now = ts(2024, 1, 2, 1)

    with pytest.raises(StorageError):
        manager.stop_working()

    assert [s.duration for s in manager.segments.get_all_segments()] == [3599]
    assert manager.days.get_day_by_date(2024, 1, 1).total_worked_duration == 3599
    # The failed piece's day bookkeeping was rolled back with it.
    assert manager.days.get_day_by_date(2024, 1, 2) is None
    assert not manager.is_session_active


def test_start_is_rolled_back_when_state_cannot_be_saved(tmp_path) -> None:
    (tmp_path / "session.json").mkdir()
    manager = make_manager(tmp_path, FakeClock(ts(2024, 1, 1, 9)))

    with pytest.raises(StorageError):
        manager.start_working()

    assert not manager.is_session_active


class IdleSaveFailingStateStore(SessionStateStore):
    def save(self, state):
        if state.start_timestamp is None:
            raise StorageError("state file is read-only")
        super().save(state)


def test_stop_is_not_recorded_twice_when_idle_state_cannot_be_saved(tmp_path, caplog) -> None:
    clock = FakeClock(0)
    manager = SessionManager(
        Database.open(":memory:"),
        IdleSaveFailingStateStore(tmp_path / "session.json"),
        tz=UTC,
        now=clock,
    )

    with caplog.at_level(logging.ERROR, logger="work_checker"):
        recorded = work(manager, clock, ts(2024, 1, 1, 9), ts(2024, 1, 1, 10))

    assert [s.duration for s in recorded] == [3600]
    assert "idle state could not be saved" in caplog.text
    assert not manager.is_session_active
    assert manager.stop_working() == []
    assert len(manager.segments.get_all_segments()) == 1
    assert manager.today_duration() == 3600


class ObservingSegmentStore(SegmentStore):
    def __init__(self, db: Database) -> None:
        super().__init__(db)
        self.manager: SessionManager | None = None
        self.seen_today: list[int | None] = []

    def add_segment(self, start_timestamp, stop_timestamp, day_id=None):
        segment = super().add_segment(start_timestamp, stop_timestamp, day_id)
        self.seen_today.append(self.manager.today_duration())
        return segment


def test_queries_during_stop_do_not_count_the_session_twice(tmp_path) -> None:
    clock = FakeClock(0)
    db = Database.open(":memory:")
    store = ObservingSegmentStore(db)
    manager = make_manager(tmp_path, clock, db=db, segments=store)
    store.manager = manager

    work(manager, clock, ts(2024, 1, 1, 9), ts(2024, 1, 1, 10))

    assert store.seen_today == [3600]
    assert manager.today_duration() == 3600


def test_consistency_reports_segments_without_a_day_separately(tmp_path, caplog) -> None:
    clock = FakeClock(0)
    db = Database.open(":memory:")
    manager = make_manager(tmp_path, clock, db=db, days=UnknownDayStore(db))
    work(manager, clock, ts(2024, 1, 1, 9), ts(2024, 1, 1, 10))
    manager.days = DayStore(db)
    work(manager, clock, ts(2024, 1, 1, 11), ts(2024, 1, 1, 11, 30))

    clock.now = ts(2024, 1, 1, 12)
    with caplog.at_level(logging.WARNING, logger="work_checker"):
        report = manager.check_consistency(1)

    assert report.aggregate_total == 1800
    assert report.segment_total == 1800
    assert report.detached_total == 3600
    assert report.is_consistent
    assert "not attached to a day" in caplog.text


def test_month_history_groups_recent_first(tmp_path) -> None:
    clock = FakeClock(0)
    manager = make_manager(tmp_path, clock)
    work(manager, clock, ts(2024, 1, 30, 9), ts(2024, 1, 30, 10))
    work(manager, clock, ts(2024, 2, 2, 9), ts(2024, 2, 2, 9, 30))
    work(manager, clock, ts(2024, 2, 5, 9), ts(2024, 2, 5, 9, 10))

    groups = manager.month_history()

    assert [(g.year, g.month) for g in groups] == [(2024, 2), (2024, 1)]
    assert [d.day for d in groups[0].days] == [5, 2]
    assert [g.total for g in groups] == [2400, 3600]
