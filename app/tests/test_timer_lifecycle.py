import threading
from datetime import datetime, timedelta
from uuid import uuid4

import pytest
from sqlalchemy.exc import IntegrityError

from app.database import SessionLocal
from app.models.time_entry import TimeEntry
from app.services import time_engine
from app.services.errors import NotFound, StateConflict
from app.services.settings_service import update_settings

USER = "timer-user"


def _entries(user_id: str = USER) -> list[TimeEntry]:
    db = SessionLocal()
    try:
        return db.query(TimeEntry).filter(TimeEntry.user_id == user_id).order_by(TimeEntry.start_time.asc()).all()
    finally:
        db.close()


def test_start_and_stop_timer_records_duration(project_factory):
    project = project_factory(user_id=USER)
    started = datetime(2026, 3, 10, 9, 0)

    entry = time_engine.start_timer(USER, project_id=project.id, description="Wireframes", now=started)
    assert entry.is_running
    assert entry.entry_type == "tracked"

    result = time_engine.stop_timer(entry.id, USER, now=started + timedelta(minutes=42, seconds=10))

    assert result.entry.end_time == started + timedelta(minutes=42, seconds=10)
    assert result.entry.duration == 42 * 60 + 10
    assert result.entry.original_duration == result.entry.duration
    assert result.entry.auto_stopped is False
    assert len(result.segments) == 1


def test_second_start_rejected_while_running():
    now = datetime(2026, 3, 10, 9, 0)
    time_engine.start_timer(USER, now=now)

    with pytest.raises(StateConflict) as exc:
        time_engine.start_timer(USER, now=now + timedelta(minutes=1))
    assert exc.value.reason == "timer_already_running"
    assert len(_entries()) == 1


def test_other_users_timer_does_not_block():
    now = datetime(2026, 3, 10, 9, 0)
    time_engine.start_timer(USER, now=now)
    time_engine.start_timer("someone-else", now=now)
    assert len(_entries()) == 1
    assert len(_entries("someone-else")) == 1


def test_unique_running_index_rejects_second_row():
    db1 = SessionLocal()
    db2 = SessionLocal()
    now = datetime(2026, 3, 10, 9, 0)

    try:
        db1.add(TimeEntry(id=str(uuid4()), user_id=USER, start_time=now, entry_type="tracked"))
        db2.add(TimeEntry(id=str(uuid4()), user_id=USER, start_time=now, entry_type="tracked"))

        db1.commit()

        with pytest.raises(IntegrityError):
            db2.commit()
    finally:
        db1.rollback()
        db2.rollback()
        db1.close()
        db2.close()


def test_concurrent_starts_leave_one_running_timer():
    barrier = threading.Barrier(4)
    outcomes = []
    lock = threading.Lock()
    now = datetime(2026, 3, 10, 9, 0)

    def worker():
        barrier.wait()
        try:
            time_engine.start_timer(USER, now=now)
            outcome = "started"
        except StateConflict:
            outcome = "conflict"
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert outcomes.count("started") == 1
    assert outcomes.count("conflict") == 3
    assert len([e for e in _entries() if e.end_time is None]) == 1


def test_stopping_twice_is_a_conflict():
    now = datetime(2026, 3, 10, 9, 0)
    entry = time_engine.start_timer(USER, now=now)
    time_engine.stop_timer(entry.id, USER, now=now + timedelta(minutes=10))

    with pytest.raises(StateConflict) as exc:
        time_engine.stop_timer(entry.id, USER, now=now + timedelta(minutes=20))
    assert exc.value.reason == "timer_not_running"
    assert _entries()[0].duration == 600


def test_stop_by_another_user_is_not_found():
    now = datetime(2026, 3, 10, 9, 0)
    entry = time_engine.start_timer(USER, now=now)
    with pytest.raises(NotFound):
        time_engine.stop_timer(entry.id, "intruder", now=now + timedelta(minutes=5))


def test_timer_across_midnight_is_split_into_two_entries():
    start = datetime(2026, 3, 9, 23, 30)
    entry = time_engine.start_timer(USER, description="Late deploy", now=start)

    result = time_engine.stop_timer(entry.id, USER, now=datetime(2026, 3, 10, 0, 15))

    assert [s.duration for s in result.segments] == [30 * 60, 15 * 60]
    first, second = result.segments
    assert first.end_time == datetime(2026, 3, 10, 0, 0)
    assert second.start_time == datetime(2026, 3, 10, 0, 0)
    assert all(s.auto_stopped and s.auto_stop_reason == "midnight" for s in result.segments)
    assert second.description == "Late deploy"

    rows = _entries()
    assert len(rows) == 2
    assert all(r.end_time is not None for r in rows)


def test_midnight_split_uses_business_timezone():
    update_settings(USER, {"business_timezone": "America/New_York"})
    # 23:30 -> 00:15 New York time (EST, UTC-5)
    start = datetime(2026, 1, 15, 4, 30)
    entry = time_engine.start_timer(USER, now=start)

    result = time_engine.stop_timer(entry.id, USER, now=datetime(2026, 1, 15, 5, 15))

    assert [s.duration for s in result.segments] == [30 * 60, 15 * 60]
    assert result.segments[0].end_time == datetime(2026, 1, 15, 5, 0)


def test_no_split_when_midnight_auto_stop_disabled():
    update_settings(USER, {"auto_stop_at_midnight": False})
    start = datetime(2026, 3, 9, 23, 30)
    entry = time_engine.start_timer(USER, now=start)

    result = time_engine.stop_timer(entry.id, USER, now=datetime(2026, 3, 10, 0, 15))

    assert len(result.segments) == 1
    assert result.entry.duration == 45 * 60
    assert result.entry.auto_stopped is False


def test_stop_applies_rounding_and_minimum():
    update_settings(USER, {"round_to_minutes": 15})
    now = datetime(2026, 3, 10, 9, 0)
    entry = time_engine.start_timer(USER, now=now)

    result = time_engine.stop_timer(entry.id, USER, now=now + timedelta(minutes=7))
    assert result.entry.duration == 900

    entry = time_engine.start_timer(USER, now=now + timedelta(hours=1))
    result = time_engine.stop_timer(entry.id, USER, now=now + timedelta(hours=1, seconds=20))
    assert result.entry.duration == 900


def test_stop_returns_daily_warning():
    update_settings(USER, {"daily_hour_warning": 60})
    now = datetime(2026, 3, 10, 9, 0)
    entry = time_engine.start_timer(USER, now=now)

    result = time_engine.stop_timer(entry.id, USER, now=now + timedelta(minutes=90))
    assert result.entry.duration == 90 * 60
    assert len(result.warnings) == 1
    assert "1h 30m" in result.warnings[0]


def test_rate_snapshot_survives_settings_change():
    update_settings(USER, {"default_hourly_rate": 5000})
    now = datetime(2026, 3, 10, 9, 0)
    entry = time_engine.start_timer(USER, now=now)

    update_settings(USER, {"default_hourly_rate": 9000})
    result = time_engine.stop_timer(entry.id, USER, now=now + timedelta(hours=1))

    assert result.entry.hourly_rate == 5000


def test_heartbeat_updates_last_activity():
    now = datetime(2026, 3, 10, 9, 0)
    entry = time_engine.start_timer(USER, now=now)

    touched = time_engine.heartbeat(entry.id, USER, now=now + timedelta(minutes=12))
    assert touched.last_activity_at == now + timedelta(minutes=12)

    time_engine.stop_timer(entry.id, USER, now=now + timedelta(minutes=20))
    with pytest.raises(StateConflict):
        time_engine.heartbeat(entry.id, USER, now=now + timedelta(minutes=25))


def test_discard_removes_running_timer_only():
    now = datetime(2026, 3, 10, 9, 0)
    entry = time_engine.start_timer(USER, now=now)
    time_engine.discard_timer(entry.id, USER)
    assert _entries() == []

    entry = time_engine.start_timer(USER, now=now)
    time_engine.stop_timer(entry.id, USER, now=now + timedelta(minutes=5))
    with pytest.raises(StateConflict) as exc:
        time_engine.discard_timer(entry.id, USER)
    assert exc.value.reason == "timer_not_running"


def test_start_with_foreign_project_is_not_found(project_factory):
    project = project_factory(user_id="owner")
    with pytest.raises(NotFound):
        time_engine.start_timer(USER, project_id=project.id, now=datetime(2026, 3, 10, 9, 0))
