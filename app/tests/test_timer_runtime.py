from datetime import datetime, timedelta

import pytest

from app.database import SessionLocal
from app.services import time_engine
from app.services.errors import StateConflict
from app.services.timer_runtime import PAUSED, RUNNING, STOPPED, TimerRuntime

USER = "runtime-user"
T0 = datetime(2026, 3, 10, 9, 0)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
        session.commit()
    finally:
        session.close()


def test_pause_and_resume_exclude_paused_time(db):
    runtime = TimerRuntime(USER, description="Copywriting")

    runtime.start(db=db, now=T0)
    assert runtime.state == RUNNING
    assert runtime.elapsed(T0 + timedelta(minutes=10)) == 600

    runtime.pause(db=db, now=T0 + timedelta(minutes=10))
    assert runtime.state == PAUSED
    assert runtime.elapsed(T0 + timedelta(hours=2)) == 600

    runtime.resume(db=db, now=T0 + timedelta(minutes=30))
    runtime.stop(db=db, now=T0 + timedelta(minutes=35))

    assert runtime.state == STOPPED
    assert runtime.elapsed(T0 + timedelta(hours=3)) == 15 * 60
    assert len(runtime.entry_ids) == 2
    assert time_engine.get_running_timer(USER, db=db) is None


def test_illegal_transitions_raise(db):
    runtime = TimerRuntime(USER)

    with pytest.raises(StateConflict) as exc:
        runtime.pause(db=db, now=T0)
    assert exc.value.reason == "timer_not_running"
    with pytest.raises(StateConflict):
        runtime.resume(db=db, now=T0)

    runtime.start(db=db, now=T0)
    with pytest.raises(StateConflict) as exc:
        runtime.start(db=db, now=T0)
    assert exc.value.reason == "timer_running"

    runtime.pause(db=db, now=T0 + timedelta(minutes=5))
    with pytest.raises(StateConflict) as exc:
        runtime.pause(db=db, now=T0 + timedelta(minutes=6))
    assert exc.value.reason == "timer_not_running"


def test_stop_while_paused_writes_nothing_more(db):
    runtime = TimerRuntime(USER)
    runtime.start(db=db, now=T0)
    runtime.pause(db=db, now=T0 + timedelta(minutes=5))

    assert runtime.stop(db=db, now=T0 + timedelta(minutes=50)) is None
    assert runtime.elapsed() == 300


def test_rehydrate_from_running_entry(db):
    entry = time_engine.start_timer(USER, description="Support", now=T0, db=db)

    runtime = TimerRuntime.from_entry(entry)
    assert runtime.state == RUNNING
    assert runtime.description == "Support"
    assert runtime.elapsed(T0 + timedelta(minutes=3)) == 180

    runtime.stop(db=db, now=T0 + timedelta(minutes=3))
    assert entry.end_time == T0 + timedelta(minutes=3)
