from datetime import datetime, timedelta

import pytest

from app import database
from app.database import SessionLocal
from app.models.time_entry import TimeEntry
from app.services import time_engine
from app.services.settings_service import update_settings
from app.services.timer_sweeper import sweep_stale_timers, timer_sweep_enabled

USER = "sweep-user"


def _entries(user_id: str = USER) -> list[TimeEntry]:
    db = SessionLocal()
    try:
        return db.query(TimeEntry).filter(TimeEntry.user_id == user_id).order_by(TimeEntry.start_time.asc()).all()
    finally:
        db.close()


def test_sweeper_disabled_under_pytest():
    assert timer_sweep_enabled() is False


def test_idle_timer_stopped_at_last_activity():
    start = datetime(2026, 3, 10, 9, 0)
    entry = time_engine.start_timer(USER, now=start)
    time_engine.heartbeat(entry.id, USER, now=start + timedelta(minutes=20))

    result = sweep_stale_timers(now=start + timedelta(minutes=55))

    assert result.idle_stopped == 1
    row = _entries()[0]
    assert row.end_time == start + timedelta(minutes=20)
    assert row.duration == 20 * 60
    assert row.auto_stopped is True
    assert row.auto_stop_reason == "idle"


def test_active_timer_left_running():
    start = datetime(2026, 3, 10, 9, 0)
    entry = time_engine.start_timer(USER, now=start)
    time_engine.heartbeat(entry.id, USER, now=start + timedelta(minutes=40))

    result = sweep_stale_timers(now=start + timedelta(minutes=50))

    assert result.idle_stopped == 0
    assert _entries()[0].end_time is None


def test_idle_detection_disabled_with_zero_timeout():
    update_settings(USER, {"idle_timeout_minutes": 0})
    start = datetime(2026, 3, 10, 9, 0)
    time_engine.start_timer(USER, now=start)

    result = sweep_stale_timers(now=start + timedelta(hours=5))

    assert result.idle_stopped == 0
    assert _entries()[0].end_time is None


def test_running_timer_rolled_over_at_midnight():
    start = datetime(2026, 3, 9, 23, 30)
    entry = time_engine.start_timer(USER, description="Migration", now=start)
    time_engine.heartbeat(entry.id, USER, now=datetime(2026, 3, 10, 0, 10))

    result = sweep_stale_timers(now=datetime(2026, 3, 10, 0, 20))

    assert result.midnight_rolled == 1
    closed, carry = _entries()
    assert closed.end_time == datetime(2026, 3, 10, 0, 0)
    assert closed.duration == 30 * 60
    assert closed.auto_stop_reason == "midnight"
    assert carry.start_time == datetime(2026, 3, 10, 0, 0)
    assert carry.end_time is None
    assert carry.description == "Migration"

    # the carry-over can be stopped normally
    stopped = time_engine.stop_timer(carry.id, USER, now=datetime(2026, 3, 10, 0, 25))
    assert stopped.entry.duration == 25 * 60


def test_sweeper_ignores_stopped_timers():
    start = datetime(2026, 3, 10, 9, 0)
    entry = time_engine.start_timer(USER, now=start)
    time_engine.stop_timer(entry.id, USER, now=start + timedelta(minutes=5))

    result = sweep_stale_timers(now=start + timedelta(hours=3))

    assert (result.idle_stopped, result.midnight_rolled, result.skipped) == (0, 0, 0)


def test_carry_over_keeps_midnight_flag_when_user_stops_it():
    start = datetime(2026, 3, 9, 23, 30)
    entry = time_engine.start_timer(USER, description="Migration", now=start)
    time_engine.heartbeat(entry.id, USER, now=datetime(2026, 3, 10, 0, 4))

    assert sweep_stale_timers(now=datetime(2026, 3, 10, 0, 5)).midnight_rolled == 1
    carry = _entries()[1]

    time_engine.stop_timer(carry.id, USER, now=datetime(2026, 3, 10, 0, 15))

    first, second = _entries()
    assert first.end_time == second.start_time == datetime(2026, 3, 10, 0, 0)
    assert second.end_time == datetime(2026, 3, 10, 0, 15)
    assert second.auto_stopped is True
    assert second.auto_stop_reason == "midnight"


@pytest.mark.skipif(
    database.engine.dialect.name != "sqlite",
    reason="row locks make the user stop wait for the sweeper on this backend",
)
def test_user_stop_between_sweep_read_and_write_wins(monkeypatch):
    start = datetime(2026, 3, 10, 9, 0)
    entry = time_engine.start_timer(USER, now=start)
    time_engine.heartbeat(entry.id, USER, now=start + timedelta(minutes=20))
    user_stop_at = start + timedelta(minutes=50)

    original_check = time_engine.check_entry
    interleaved = []

    def check_then_user_stops(*args, **kwargs):
        checked = original_check(*args, **kwargs)
        if not interleaved:
            interleaved.append(True)
            time_engine.stop_timer(entry.id, USER, description="Design review", now=user_stop_at)
        return checked

    monkeypatch.setattr(time_engine, "check_entry", check_then_user_stops)

    result = sweep_stale_timers(now=start + timedelta(minutes=55))

    assert interleaved == [True]
    assert (result.idle_stopped, result.skipped) == (0, 1)
    rows = _entries()
    assert len(rows) == 1
    assert rows[0].end_time == user_stop_at
    assert rows[0].duration == 50 * 60
    assert rows[0].description == "Design review"
    assert rows[0].auto_stopped is False
    assert rows[0].auto_stop_reason is None
