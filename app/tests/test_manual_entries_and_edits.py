from datetime import date, datetime, timedelta

import pytest

from app import database
from app.database import SessionLocal
from app.models.time_entry import TimeEntry
from app.services import time_engine
from app.services.errors import StateConflict, ValidationRejected
from app.services.invoice_linkage import attach_to_invoice
from app.services.settings_service import update_settings
from app.services.time_engine import ByDuration, ByRange

USER = "manual-user"
NOW = datetime(2026, 3, 10, 15, 0)
TODAY = date(2026, 3, 10)


def _history(entry_id: str):
    db = SessionLocal()
    try:
        return time_engine.get_edit_history(entry_id, db=db)
    finally:
        db.close()


def _manual(start, end, description="Client call", **kwargs):
    return time_engine.create_manual(USER, ByRange(start, end), description, now=NOW, **kwargs).entry


def test_short_manual_entry_raised_to_minimum():
    result = time_engine.create_manual(USER, ByDuration(47), "Quick fix", entry_date=TODAY, now=NOW)
    assert result.entry.duration == 60
    assert result.entry.entry_type == "manual"
    assert result.entry.original_duration == 60


def test_manual_entry_rounded_up_to_increment():
    update_settings(USER, {"round_to_minutes": 15})
    result = time_engine.create_manual(USER, ByDuration(7 * 60), "Email triage", entry_date=TODAY, now=NOW)
    assert result.entry.duration == 900


def test_duration_entry_anchored_at_nine_local():
    result = time_engine.create_manual(
        USER, ByDuration(3600), "Planning", entry_date=TODAY - timedelta(days=2), now=NOW
    )
    assert result.entry.start_time == datetime(2026, 3, 8, 9, 0)
    assert result.entry.end_time == datetime(2026, 3, 8, 10, 0)


def test_duration_entry_for_early_today_ends_now():
    early = datetime(2026, 3, 10, 8, 0)
    result = time_engine.create_manual(USER, ByDuration(2 * 3600), "Night shift", entry_date=TODAY, now=early)
    assert result.entry.start_time == datetime(2026, 3, 10, 6, 0)
    assert result.entry.end_time == early


def test_manual_entry_too_far_back_rejected():
    with pytest.raises(ValidationRejected) as exc:
        time_engine.create_manual(USER, ByDuration(3600), "Old work", entry_date=TODAY - timedelta(days=10), now=NOW)
    assert exc.value.reason == "too_far_in_past"
    assert exc.value.message == "You can only add entries up to 7 days in the past"


def test_manual_entry_for_tomorrow_rejected():
    with pytest.raises(ValidationRejected) as exc:
        time_engine.create_manual(USER, ByDuration(3600), "Later", entry_date=TODAY + timedelta(days=1), now=NOW)
    assert exc.value.reason == "future_date"


def test_manual_entry_needs_description():
    with pytest.raises(ValidationRejected) as exc:
        time_engine.create_manual(USER, ByDuration(3600), "  ", entry_date=TODAY, now=NOW)
    assert exc.value.reason == "description_required"


def test_overlapping_manual_entry_rejected():
    _manual(datetime(2026, 3, 10, 9), datetime(2026, 3, 10, 11))
    with pytest.raises(ValidationRejected) as exc:
        _manual(datetime(2026, 3, 10, 10), datetime(2026, 3, 10, 12))
    assert exc.value.reason == "overlap"

    # touching is fine
    _manual(datetime(2026, 3, 10, 11), datetime(2026, 3, 10, 12))


def test_manual_entry_overlapping_running_timer_rejected():
    time_engine.start_timer(USER, now=datetime(2026, 3, 10, 13, 0))
    with pytest.raises(ValidationRejected):
        _manual(datetime(2026, 3, 10, 14), datetime(2026, 3, 10, 14, 30))


def test_explicit_rate_overrides_default():
    update_settings(USER, {"default_hourly_rate": 5000})
    entry = _manual(datetime(2026, 3, 10, 9), datetime(2026, 3, 10, 10), hourly_rate=12000)
    assert entry.hourly_rate == 12000

    entry = _manual(datetime(2026, 3, 10, 10), datetime(2026, 3, 10, 11))
    assert entry.hourly_rate == 5000


def test_edit_appends_one_record_per_changed_field():
    entry = _manual(datetime(2026, 3, 10, 9), datetime(2026, 3, 10, 10))

    result = time_engine.edit_entry(
        entry.id,
        USER,
        {"description": "Client call (extended)", "end_time": datetime(2026, 3, 10, 10, 30), "billable": True},
        reason="forgot the follow-up",
        now=NOW,
    )

    assert result.entry.duration == 90 * 60
    assert result.entry.original_duration == 60 * 60
    assert result.entry.original_end_time == datetime(2026, 3, 10, 10)

    history = _history(entry.id)
    by_field = {h.field: h for h in history}
    assert set(by_field) == {"description", "end_time", "duration"}
    assert by_field["duration"].old_value == 3600
    assert by_field["duration"].new_value == 5400
    assert by_field["end_time"].new_value == "2026-03-10T10:30:00"
    assert all(h.reason == "forgot the follow-up" for h in history)


def test_edit_with_duration_moves_end_time():
    entry = _manual(datetime(2026, 3, 10, 9), datetime(2026, 3, 10, 10))
    result = time_engine.edit_entry(entry.id, USER, {"duration": 1800}, now=NOW)
    assert result.entry.end_time == datetime(2026, 3, 10, 9, 30)
    assert result.entry.duration == 1800


def test_edit_excludes_own_interval_from_overlap():
    entry = _manual(datetime(2026, 3, 10, 9), datetime(2026, 3, 10, 10))
    result = time_engine.edit_entry(entry.id, USER, {"start_time": datetime(2026, 3, 10, 9, 30)}, now=NOW)
    assert result.entry.duration == 30 * 60


def test_edit_into_neighbour_rejected_and_nothing_recorded():
    _manual(datetime(2026, 3, 10, 9), datetime(2026, 3, 10, 10))
    second = _manual(datetime(2026, 3, 10, 11), datetime(2026, 3, 10, 12))

    with pytest.raises(ValidationRejected):
        time_engine.edit_entry(second.id, USER, {"start_time": datetime(2026, 3, 10, 9, 30)}, now=NOW)
    assert _history(second.id) == []


def test_edit_running_timer_rejected():
    entry = time_engine.start_timer(USER, now=NOW - timedelta(minutes=30))
    with pytest.raises(StateConflict) as exc:
        time_engine.edit_entry(entry.id, USER, {"description": "x"}, now=NOW)
    assert exc.value.reason == "timer_running"


def test_edit_rejects_unknown_fields():
    entry = _manual(datetime(2026, 3, 10, 9), datetime(2026, 3, 10, 10))
    with pytest.raises(ValidationRejected):
        time_engine.edit_entry(entry.id, USER, {"invoice_id": "inv-1"}, now=NOW)


def test_locked_entry_cannot_be_edited_or_deleted():
    entry = _manual(datetime(2026, 3, 10, 9), datetime(2026, 3, 10, 10))

    db = SessionLocal()
    try:
        time_engine.lock_entry(entry.id, "invoiced", now=NOW, db=db)
        db.commit()
    finally:
        db.close()
    history_before = [(h.field, h.new_value) for h in _history(entry.id)]

    with pytest.raises(StateConflict) as exc:
        time_engine.edit_entry(entry.id, USER, {"description": "changed"}, now=NOW)
    assert exc.value.reason == "entry_locked"
    assert "locked (invoiced)" in exc.value.message

    with pytest.raises(StateConflict):
        time_engine.delete_entry(entry.id, USER)

    assert [(h.field, h.new_value) for h in _history(entry.id)] == history_before


def _invoice_after_lock_check(monkeypatch, entry_id: str) -> list:
    original = time_engine._ensure_mutable
    attached = []

    def check_then_invoice(entry, action):
        original(entry, action)
        if not attached:
            attached.extend(attach_to_invoice(USER, [entry_id], "inv-1", now=NOW))

    monkeypatch.setattr(time_engine, "_ensure_mutable", check_then_invoice)
    return attached


sqlite_only = pytest.mark.skipif(
    database.engine.dialect.name != "sqlite",
    reason="row locks make the invoice attach wait for the edit on this backend",
)


@sqlite_only
def test_edit_loses_to_invoice_committed_after_lock_check(monkeypatch):
    entry = _manual(datetime(2026, 3, 10, 9), datetime(2026, 3, 10, 10))
    attached = _invoice_after_lock_check(monkeypatch, entry.id)

    with pytest.raises(StateConflict) as exc:
        time_engine.edit_entry(entry.id, USER, {"description": "rewritten after invoicing"}, now=NOW)
    assert exc.value.reason == "entry_locked"
    assert len(attached) == 1

    db = SessionLocal()
    try:
        row = db.query(TimeEntry).filter(TimeEntry.id == entry.id).one()
        assert row.description == "Client call"
        assert row.invoice_id == "inv-1"
        assert row.locked_at is not None
    finally:
        db.close()
    assert [h.field for h in _history(entry.id)] == ["locked_reason"]


@sqlite_only
def test_delete_loses_to_invoice_committed_after_lock_check(monkeypatch):
    entry = _manual(datetime(2026, 3, 10, 9), datetime(2026, 3, 10, 10))
    _invoice_after_lock_check(monkeypatch, entry.id)

    with pytest.raises(StateConflict) as exc:
        time_engine.delete_entry(entry.id, USER)
    assert exc.value.reason == "entry_locked"

    db = SessionLocal()
    try:
        row = db.query(TimeEntry).filter(TimeEntry.id == entry.id).one()
        assert row.invoice_id == "inv-1"
    finally:
        db.close()


def test_lock_is_idempotent():
    entry = _manual(datetime(2026, 3, 10, 9), datetime(2026, 3, 10, 10))

    db = SessionLocal()
    try:
        first = time_engine.lock_entry(entry.id, "invoiced", now=NOW, db=db)
        second = time_engine.lock_entry(entry.id, "invoiced", now=NOW + timedelta(hours=1), db=db)
        db.commit()
        assert second.locked_at == first.locked_at == NOW
    finally:
        db.close()

    assert len(_history(entry.id)) == 1


def test_delete_unlocked_entry():
    entry = _manual(datetime(2026, 3, 10, 9), datetime(2026, 3, 10, 10))
    time_engine.delete_entry(entry.id, USER)

    db = SessionLocal()
    try:
        assert db.query(TimeEntry).filter(TimeEntry.id == entry.id).first() is None
    finally:
        db.close()


def test_milestone_must_belong_to_project(project_factory, milestone_factory):
    website = project_factory(user_id=USER, name="Website")
    app_project = project_factory(user_id=USER, name="App")
    milestone = milestone_factory(app_project, name="Beta")

    with pytest.raises(ValidationRejected):
        _manual(datetime(2026, 3, 10, 9), datetime(2026, 3, 10, 10), project_id=website.id, milestone_id=milestone.id)

    entry = _manual(
        datetime(2026, 3, 10, 9), datetime(2026, 3, 10, 10), project_id=app_project.id, milestone_id=milestone.id
    )
    assert entry.milestone_id == milestone.id
