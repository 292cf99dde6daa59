"""
Time entry lifecycle: timers, manual entries, audited edits, deletion and locking.

Each public function follows the same session contract:
  If db is provided, the function will NOT commit/close. Caller owns the transaction.
  If db is None, the function manages its own session + commit.

State per entry: running -> stopped -> locked. Manual entries start stopped.
Locked is terminal except for unlock_entry() when a draft invoice is deleted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Any, Iterable, Mapping, Optional, Union
from uuid import uuid4

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.database import SessionLocal
from app.models.project import Milestone, Project
from app.models.time_entry import (
    ENTRY_TYPE_MANUAL,
    ENTRY_TYPE_TRACKED,
    LOCK_REASON_INVOICED,
    TimeEntry,
)
from app.models.time_entry_edit import TimeEntryEdit
from app.services.clock import (
    day_bounds_utc,
    local_date,
    local_to_utc,
    next_local_midnight,
    seconds_between,
    to_utc_naive,
    utcnow,
)
from app.services.errors import NotFound, StateConflict, ValidationRejected
from app.services.settings_service import TrackingSettings, get_settings
from app.services.time_validation import Candidate, Interval, check_entry

logger = logging.getLogger(__name__)

AUTO_STOP_IDLE = "idle"
AUTO_STOP_MIDNIGHT = "midnight"

MANUAL_ANCHOR_TIME = time(9, 0)

EDITABLE_FIELDS = (
    "description",
    "project_id",
    "milestone_id",
    "start_time",
    "end_time",
    "duration",
    "billable",
    "hourly_rate",
)


@dataclass(frozen=True)
class ByDuration:
    seconds: int


@dataclass(frozen=True)
class ByRange:
    start: datetime
    end: datetime


ManualSpan = Union[ByDuration, ByRange]


@dataclass
class EntryResult:
    entry: TimeEntry
    warnings: list[str] = field(default_factory=list)
    # Every row written by the operation; more than one when a timer was split at midnight.
    segments: list[TimeEntry] = field(default_factory=list)


# ---------------------------------------------------------------------------
# lookups
# ---------------------------------------------------------------------------


def _get_entry(db: Session, entry_id: str, user_id: Optional[str] = None) -> TimeEntry:
    q = db.query(TimeEntry).filter(TimeEntry.id == str(entry_id))
    if user_id is not None:
        q = q.filter(TimeEntry.user_id == str(user_id))
    entry = q.with_for_update().first()
    if entry is None:
        raise NotFound("Time entry")
    return entry


def _get_running_entry(db: Session, user_id: str) -> Optional[TimeEntry]:
    return (
        db.query(TimeEntry)
        .filter(
            TimeEntry.user_id == str(user_id),
            TimeEntry.end_time.is_(None),
        )
        .first()
    )


def _require_project(
    db: Session,
    user_id: str,
    project_id: Optional[str],
    milestone_id: Optional[str],
) -> None:
    if project_id is not None:
        project = db.query(Project).filter(Project.id == str(project_id)).first()
        if project is None or project.user_id != str(user_id):
            raise NotFound("Project")

    if milestone_id is not None:
        milestone = db.query(Milestone).filter(Milestone.id == str(milestone_id)).first()
        if milestone is None or milestone.user_id != str(user_id):
            raise NotFound("Milestone")
        if project_id is not None and milestone.project_id != str(project_id):
            raise ValidationRejected("Milestone does not belong to the selected project")


def _existing_intervals(
    db: Session,
    user_id: str,
    start: datetime,
    end: datetime,
    exclude_id: Optional[str] = None,
) -> list[Interval]:
    """Entries that could intersect [start, end); running ones are kept for the now-bound check."""
    q = db.query(TimeEntry.id, TimeEntry.start_time, TimeEntry.end_time).filter(
        TimeEntry.user_id == str(user_id),
        TimeEntry.start_time < end,
        or_(TimeEntry.end_time.is_(None), TimeEntry.end_time > start),
    )
    if exclude_id is not None:
        q = q.filter(TimeEntry.id != str(exclude_id))
    return [Interval(start=r.start_time, end=r.end_time, entry_id=r.id) for r in q.all()]


def _daily_total_seconds(
    db: Session,
    user_id: str,
    day: date,
    tz_name: str,
    exclude_id: Optional[str] = None,
) -> int:
    day_start, day_end = day_bounds_utc(day, tz_name)
    q = db.query(TimeEntry.duration).filter(
        TimeEntry.user_id == str(user_id),
        TimeEntry.start_time >= day_start,
        TimeEntry.start_time < day_end,
    )
    if exclude_id is not None:
        q = q.filter(TimeEntry.id != str(exclude_id))
    return sum(int(r.duration or 0) for r in q.all())


def _audit_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _append_edit(
    db: Session,
    entry: TimeEntry,
    field_name: str,
    old_value: Any,
    new_value: Any,
    reason: Optional[str],
    now: datetime,
) -> TimeEntryEdit:
    record = TimeEntryEdit(
        time_entry_id=entry.id,
        user_id=entry.user_id,
        edited_at=now,
        field=field_name,
        old_value=_audit_value(old_value),
        new_value=_audit_value(new_value),
        reason=reason,
    )
    db.add(record)
    return record


def get_edit_history(entry_id: str, *, db: Session) -> list[TimeEntryEdit]:
    return (
        db.query(TimeEntryEdit)
        .filter(TimeEntryEdit.time_entry_id == str(entry_id))
        .order_by(TimeEntryEdit.id.asc())
        .all()
    )


def _check_rate(hourly_rate: Optional[int]) -> None:
    if hourly_rate is not None and (isinstance(hourly_rate, bool) or int(hourly_rate) < 0):
        raise ValidationRejected("hourly_rate must be a non-negative amount in cents")


def _midnight_boundaries(start: datetime, end: datetime, tz_name: str) -> list[datetime]:
    points = [start]
    cut = next_local_midnight(start, tz_name)
    while cut < end:
        points.append(cut)
        cut = next_local_midnight(cut, tz_name)
    points.append(end)
    return points


# ---------------------------------------------------------------------------
# timer
# ---------------------------------------------------------------------------


def start_timer(
    user_id: str,
    *,
    project_id: Optional[str] = None,
    milestone_id: Optional[str] = None,
    description: Optional[str] = None,
    billable: bool = True,
    settings: Optional[TrackingSettings] = None,
    now: Optional[datetime] = None,
    db: Optional[Session] = None,
) -> TimeEntry:
    owns_db = db is None
    if owns_db:
        db = SessionLocal()

    now = to_utc_naive(now) if now is not None else utcnow()

    try:
        if settings is None:
            settings = get_settings(user_id, db=db)

        if _get_running_entry(db, user_id) is not None:
            raise StateConflict(
                "You already have a timer running. Stop it before starting a new one.",
                reason="timer_already_running",
            )

        _require_project(db, user_id, project_id, milestone_id)

        entry = TimeEntry(
            id=str(uuid4()),
            user_id=str(user_id),
            project_id=project_id,
            milestone_id=milestone_id,
            description=description,
            start_time=now,
            end_time=None,
            duration=None,
            hourly_rate=settings.default_hourly_rate,
            billable=bool(billable),
            entry_type=ENTRY_TYPE_TRACKED,
            auto_stopped=False,
            last_activity_at=now,
            original_start_time=now,
            created_at=now,
            updated_at=now,
        )
        db.add(entry)

        try:
            db.flush()
        except IntegrityError as exc:
            # Lost the race against a concurrent start; uq_time_entries_running held.
            raise StateConflict(
                "You already have a timer running. Stop it before starting a new one.",
                reason="timer_already_running",
            ) from exc

        if owns_db:
            db.commit()

        logger.info(
            "Timer started",
            extra={"user_id": str(user_id), "time_entry_id": entry.id, "project_id": project_id},
        )
        return entry
    except Exception:
        if owns_db:
            db.rollback()
        raise
    finally:
        if owns_db:
            db.close()


def _close_running_entry(
    db: Session,
    entry: TimeEntry,
    end_at: datetime,
    settings: TrackingSettings,
    now: datetime,
    *,
    description: Optional[str] = None,
    project_id: Optional[str] = None,
    billable: Optional[bool] = None,
    auto_stop_reason: Optional[str] = None,
) -> EntryResult:
    if entry.end_time is not None:
        raise StateConflict("Timer already stopped", reason="timer_not_running")

    end_at = max(end_at, entry.start_time)
    tz_name = settings.business_timezone
    today = local_date(now, tz_name)

    new_description = description if description is not None else entry.description
    new_project_id = project_id if project_id is not None else entry.project_id
    new_billable = entry.billable if billable is None else bool(billable)
    if project_id is not None:
        _require_project(db, entry.user_id, project_id, None)

    if settings.auto_stop_at_midnight:
        points = _midnight_boundaries(entry.start_time, end_at, tz_name)
    else:
        points = [entry.start_time, end_at]
    split = len(points) > 2

    existing = _existing_intervals(db, entry.user_id, entry.start_time, end_at, exclude_id=entry.id)

    durations: list[int] = []
    warnings: list[str] = []
    for seg_start, seg_end in zip(points, points[1:]):
        seg_day = local_date(seg_start, tz_name)
        checked = check_entry(
            Candidate(
                start_time=seg_start,
                end_time=seg_end,
                raw_duration=seconds_between(seg_start, seg_end),
                description=new_description,
                entry_type=ENTRY_TYPE_TRACKED,
                start_date=seg_day,
                enforce_past_limit=False,
                system_initiated=auto_stop_reason is not None,
            ),
            settings,
            today=today,
            now=now,
            existing_intervals=existing,
            existing_daily_total_seconds=_daily_total_seconds(db, entry.user_id, seg_day, tz_name, entry.id),
            entry_id=entry.id,
        )
        durations.append(checked.duration)
        warnings.extend(checked.warnings)

    first_end = points[1]
    reason = AUTO_STOP_MIDNIGHT if split else auto_stop_reason

    # First writer wins: the row only closes if nobody closed it since we read it.
    claimed = (
        db.query(TimeEntry)
        .filter(TimeEntry.id == entry.id, TimeEntry.end_time.is_(None))
        .update(
            {
                TimeEntry.end_time: first_end,
                TimeEntry.duration: durations[0],
                TimeEntry.original_end_time: first_end,
                TimeEntry.original_duration: durations[0],
                TimeEntry.description: new_description,
                TimeEntry.project_id: new_project_id,
                TimeEntry.billable: new_billable,
                # A carry-over from a sweeper rollover stays flagged when the user stops it.
                TimeEntry.auto_stopped: bool(entry.auto_stopped) or reason is not None,
                TimeEntry.auto_stop_reason: reason or entry.auto_stop_reason,
                TimeEntry.updated_at: now,
            },
            synchronize_session=False,
        )
    )
    if claimed == 0:
        raise StateConflict("Timer already stopped", reason="timer_not_running")
    db.refresh(entry)

    segments = [entry]
    for (seg_start, seg_end), seg_duration in zip(list(zip(points, points[1:]))[1:], durations[1:]):
        carry = TimeEntry(
            id=str(uuid4()),
            user_id=entry.user_id,
            project_id=new_project_id,
            milestone_id=entry.milestone_id,
            description=new_description,
            start_time=seg_start,
            end_time=seg_end,
            duration=seg_duration,
            hourly_rate=entry.hourly_rate,
            billable=new_billable,
            entry_type=ENTRY_TYPE_TRACKED,
            auto_stopped=True,
            auto_stop_reason=AUTO_STOP_MIDNIGHT,
            last_activity_at=entry.last_activity_at,
            original_start_time=seg_start,
            original_end_time=seg_end,
            original_duration=seg_duration,
            created_at=now,
            updated_at=now,
        )
        db.add(carry)
        segments.append(carry)
    db.flush()

    if split:
        logger.info(
            "Timer split at midnight",
            extra={
                "user_id": entry.user_id,
                "time_entry_id": entry.id,
                "segment_ids": [s.id for s in segments],
            },
        )

    return EntryResult(entry=entry, warnings=warnings, segments=segments)


def stop_timer(
    entry_id: str,
    user_id: str,
    *,
    description: Optional[str] = None,
    project_id: Optional[str] = None,
    billable: Optional[bool] = None,
    settings: Optional[TrackingSettings] = None,
    now: Optional[datetime] = None,
    db: Optional[Session] = None,
) -> EntryResult:
    owns_db = db is None
    if owns_db:
        db = SessionLocal()

    now = to_utc_naive(now) if now is not None else utcnow()

    try:
        if settings is None:
            settings = get_settings(user_id, db=db)

        entry = _get_entry(db, entry_id, user_id)
        result = _close_running_entry(
            db,
            entry,
            now,
            settings,
            now,
            description=description,
            project_id=project_id,
            billable=billable,
        )

        if owns_db:
            db.commit()

        logger.info(
            "Timer stopped",
            extra={
                "user_id": str(user_id),
                "time_entry_id": entry.id,
                "duration": entry.duration,
                "segments": len(result.segments),
            },
        )
        return result
    except Exception:
        if owns_db:
            db.rollback()
        raise
    finally:
        if owns_db:
            db.close()


def auto_stop_timer(
    entry_id: str,
    *,
    end_at: datetime,
    reason: str,
    now: Optional[datetime] = None,
    db: Session,
) -> EntryResult:
    """System-initiated stop (idle sweep). Caller owns the transaction."""
    now = to_utc_naive(now) if now is not None else utcnow()
    entry = _get_entry(db, entry_id)
    settings = get_settings(entry.user_id, db=db)
    result = _close_running_entry(db, entry, to_utc_naive(end_at), settings, now, auto_stop_reason=reason)
    logger.info(
        "Timer auto-stopped",
        extra={"user_id": entry.user_id, "time_entry_id": entry.id, "reason": reason},
    )
    return result


def roll_over_midnight(
    entry_id: str,
    *,
    now: Optional[datetime] = None,
    db: Session,
) -> Optional[EntryResult]:
    """
    Close a running timer at the last local midnight and keep timing in a fresh
    running entry that starts there. Returns None when no midnight was crossed.
    Caller owns the transaction.
    """
    now = to_utc_naive(now) if now is not None else utcnow()
    entry = _get_entry(db, entry_id)
    settings = get_settings(entry.user_id, db=db)
    tz_name = settings.business_timezone

    cut = day_bounds_utc(local_date(now, tz_name), tz_name)[0]
    if entry.end_time is not None or cut <= entry.start_time:
        return None

    result = _close_running_entry(db, entry, cut, settings, now, auto_stop_reason=AUTO_STOP_MIDNIGHT)

    carry = TimeEntry(
        id=str(uuid4()),
        user_id=entry.user_id,
        project_id=entry.project_id,
        milestone_id=entry.milestone_id,
        description=entry.description,
        start_time=cut,
        end_time=None,
        duration=None,
        hourly_rate=entry.hourly_rate,
        billable=entry.billable,
        entry_type=ENTRY_TYPE_TRACKED,
        auto_stopped=True,
        auto_stop_reason=AUTO_STOP_MIDNIGHT,
        last_activity_at=entry.last_activity_at,
        original_start_time=cut,
        created_at=now,
        updated_at=now,
    )
    db.add(carry)
    db.flush()

    logger.info(
        "Timer rolled over midnight",
        extra={"user_id": entry.user_id, "time_entry_id": entry.id, "carry_over_id": carry.id},
    )
    return EntryResult(entry=carry, warnings=result.warnings, segments=result.segments + [carry])


def heartbeat(
    entry_id: str,
    user_id: str,
    *,
    now: Optional[datetime] = None,
    db: Optional[Session] = None,
) -> TimeEntry:
    owns_db = db is None
    if owns_db:
        db = SessionLocal()

    now = to_utc_naive(now) if now is not None else utcnow()

    try:
        entry = _get_entry(db, entry_id, user_id)
        if entry.end_time is not None:
            raise StateConflict("Timer already stopped", reason="timer_not_running")

        entry.last_activity_at = now
        db.flush()

        if owns_db:
            db.commit()
        return entry
    except Exception:
        if owns_db:
            db.rollback()
        raise
    finally:
        if owns_db:
            db.close()


def get_running_timer(user_id: str, *, db: Session) -> Optional[TimeEntry]:
    return _get_running_entry(db, user_id)


def get_entry(entry_id: str, user_id: str, *, db: Session) -> Optional[TimeEntry]:
    return (
        db.query(TimeEntry)
        .filter(TimeEntry.id == str(entry_id), TimeEntry.user_id == str(user_id))
        .first()
    )


def discard_timer(
    entry_id: str,
    user_id: str,
    *,
    db: Optional[Session] = None,
) -> None:
    owns_db = db is None
    if owns_db:
        db = SessionLocal()

    try:
        entry = _get_entry(db, entry_id, user_id)
        if entry.end_time is not None:
            raise StateConflict("Cannot discard a stopped timer", reason="timer_not_running")
        if entry.locked_at is not None:
            raise StateConflict("This entry is locked and cannot be discarded", reason="entry_locked")

        db.delete(entry)
        db.flush()

        if owns_db:
            db.commit()

        logger.info("Timer discarded", extra={"user_id": str(user_id), "time_entry_id": str(entry_id)})
    except Exception:
        if owns_db:
            db.rollback()
        raise
    finally:
        if owns_db:
            db.close()


# ---------------------------------------------------------------------------
# manual entries
# ---------------------------------------------------------------------------


def resolve_manual_span(
    span: ManualSpan,
    entry_date: Optional[date],
    settings: TrackingSettings,
    now: datetime,
) -> tuple[datetime, datetime, int]:
    """Turn either input shape into (start_time, end_time, raw_duration_seconds)."""
    tz_name = settings.business_timezone

    if isinstance(span, ByRange):
        start = to_utc_naive(span.start)
        end = to_utc_naive(span.end)
        if end <= start:
            raise ValidationRejected("end_time must be after start_time")
        if entry_date is not None and local_date(start, tz_name) != entry_date:
            raise ValidationRejected("start_time does not fall on the given date")
        return start, end, seconds_between(start, end)

    seconds = int(span.seconds)
    if seconds <= 0:
        raise ValidationRejected("duration must be a positive number of seconds")
    if entry_date is None:
        raise ValidationRejected("date is required when only a duration is given")

    day_start = day_bounds_utc(entry_date, tz_name)[0]
    start = local_to_utc(entry_date, MANUAL_ANCHOR_TIME, tz_name)
    # Today's work that would still be "in progress" at 09:00 is anchored to end now.
    if entry_date == local_date(now, tz_name) and start + timedelta(seconds=seconds) > now:
        start = max(day_start, now - timedelta(seconds=seconds))
    return start, start + timedelta(seconds=seconds), seconds


def create_manual(
    user_id: str,
    span: ManualSpan,
    description: Optional[str],
    *,
    entry_date: Optional[date] = None,
    project_id: Optional[str] = None,
    milestone_id: Optional[str] = None,
    billable: bool = True,
    hourly_rate: Optional[int] = None,
    settings: Optional[TrackingSettings] = None,
    now: Optional[datetime] = None,
    db: Optional[Session] = None,
) -> EntryResult:
    owns_db = db is None
    if owns_db:
        db = SessionLocal()

    now = to_utc_naive(now) if now is not None else utcnow()

    try:
        if settings is None:
            settings = get_settings(user_id, db=db)
        tz_name = settings.business_timezone

        start, end, raw = resolve_manual_span(span, entry_date, settings, now)
        start_day = local_date(start, tz_name)

        checked = check_entry(
            Candidate(
                start_time=start,
                end_time=end,
                raw_duration=raw,
                description=description,
                entry_type=ENTRY_TYPE_MANUAL,
                start_date=start_day,
            ),
            settings,
            today=local_date(now, tz_name),
            now=now,
            existing_intervals=_existing_intervals(db, user_id, start, end),
            existing_daily_total_seconds=_daily_total_seconds(db, user_id, start_day, tz_name),
        )

        _require_project(db, user_id, project_id, milestone_id)
        _check_rate(hourly_rate)

        entry = TimeEntry(
            id=str(uuid4()),
            user_id=str(user_id),
            project_id=project_id,
            milestone_id=milestone_id,
            description=description.strip() if description else description,
            start_time=start,
            end_time=end,
            duration=checked.duration,
            hourly_rate=hourly_rate if hourly_rate is not None else settings.default_hourly_rate,
            billable=bool(billable),
            entry_type=ENTRY_TYPE_MANUAL,
            auto_stopped=False,
            original_start_time=start,
            original_end_time=end,
            original_duration=checked.duration,
            created_at=now,
            updated_at=now,
        )
        db.add(entry)
        db.flush()

        if owns_db:
            db.commit()

        logger.info(
            "Manual time entry created",
            extra={
                "user_id": str(user_id),
                "time_entry_id": entry.id,
                "duration": entry.duration,
                "backdated_days": (local_date(now, tz_name) - start_day).days,
            },
        )
        return EntryResult(entry=entry, warnings=checked.warnings, segments=[entry])
    except Exception:
        if owns_db:
            db.rollback()
        raise
    finally:
        if owns_db:
            db.close()


# ---------------------------------------------------------------------------
# edits / deletion
# ---------------------------------------------------------------------------


def _ensure_mutable(entry: TimeEntry, action: str) -> None:
    if entry.locked_at is not None:
        raise StateConflict(
            f"This entry is locked ({entry.locked_reason or LOCK_REASON_INVOICED}) and cannot be {action}.",
            reason="entry_locked",
        )
    if entry.invoice_id is not None:
        raise StateConflict(
            f"This entry is on an invoice and cannot be {action}.",
            reason="entry_invoiced",
        )


def _claim_mutable(db: Session, entry: TimeEntry, action: str) -> None:
    """
    No-op UPDATE guarded on the lock columns, issued right before the write.
    A lock committed since the entry was read surfaces here as a conflict.
    """
    claimed = (
        db.query(TimeEntry)
        .filter(
            TimeEntry.id == entry.id,
            TimeEntry.locked_at.is_(None),
            TimeEntry.invoice_id.is_(None),
        )
        .update({TimeEntry.updated_at: TimeEntry.updated_at}, synchronize_session=False)
    )
    if claimed:
        return

    current = db.query(TimeEntry).filter(TimeEntry.id == entry.id).populate_existing().first()
    if current is None:
        raise NotFound("Time entry")
    _ensure_mutable(current, action)
    raise StateConflict(f"This entry is locked and cannot be {action}.", reason="entry_locked")


def edit_entry(
    entry_id: str,
    user_id: str,
    changes: Mapping[str, Any],
    *,
    reason: Optional[str] = None,
    settings: Optional[TrackingSettings] = None,
    now: Optional[datetime] = None,
    db: Optional[Session] = None,
) -> EntryResult:
    """
    Replace-then-validate: the entry's own current interval is left out of the
    overlap set, the new values are checked as if they were a new candidate,
    and one audit record is appended per field that actually changed.
    """
    unknown = set(changes) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValidationRejected(f"Fields cannot be edited: {', '.join(sorted(unknown))}")
    if "duration" in changes and "end_time" in changes:
        raise ValidationRejected("Give either end_time or duration, not both")

    owns_db = db is None
    if owns_db:
        db = SessionLocal()

    now = to_utc_naive(now) if now is not None else utcnow()

    try:
        if settings is None:
            settings = get_settings(user_id, db=db)
        tz_name = settings.business_timezone

        entry = _get_entry(db, entry_id, user_id)
        _ensure_mutable(entry, "edited")
        if entry.end_time is None:
            raise StateConflict("Stop the timer before editing", reason="timer_running")

        new_values: dict[str, Any] = {name: getattr(entry, name) for name in EDITABLE_FIELDS}
        for name, value in changes.items():
            if name in ("start_time", "end_time") and value is not None:
                value = to_utc_naive(value)
            new_values[name] = value

        if new_values["start_time"] is None or (new_values["end_time"] is None and "duration" not in changes):
            raise ValidationRejected("start_time and end_time cannot be cleared")

        timing_changed = any(k in changes for k in ("start_time", "end_time", "duration"))
        if "duration" in changes:
            if new_values["duration"] is None or int(new_values["duration"]) <= 0:
                raise ValidationRejected("duration must be a positive number of seconds")
            raw = int(new_values["duration"])
            new_values["end_time"] = new_values["start_time"] + timedelta(seconds=raw)
        else:
            raw = seconds_between(new_values["start_time"], new_values["end_time"])
        if new_values["end_time"] <= new_values["start_time"]:
            raise ValidationRejected("end_time must be after start_time")

        start_day = local_date(new_values["start_time"], tz_name)
        start_moved = new_values["start_time"] != entry.start_time

        checked = check_entry(
            Candidate(
                start_time=new_values["start_time"],
                end_time=new_values["end_time"],
                raw_duration=raw if timing_changed else int(entry.duration or 0),
                description=new_values["description"],
                entry_type=entry.entry_type,
                start_date=start_day,
                enforce_past_limit=entry.entry_type == ENTRY_TYPE_MANUAL or start_moved,
            ),
            settings,
            today=local_date(now, tz_name),
            now=now,
            existing_intervals=_existing_intervals(
                db, user_id, new_values["start_time"], new_values["end_time"], exclude_id=entry.id
            ),
            existing_daily_total_seconds=_daily_total_seconds(db, user_id, start_day, tz_name, entry.id),
            entry_id=entry.id,
        )
        new_values["duration"] = checked.duration if timing_changed else entry.duration

        _require_project(db, user_id, new_values["project_id"], new_values["milestone_id"])
        _check_rate(new_values["hourly_rate"])
        if new_values["billable"] is None:
            raise ValidationRejected("billable must be true or false")
        new_values["billable"] = bool(new_values["billable"])

        _claim_mutable(db, entry, "edited")

        changed = []
        for name in EDITABLE_FIELDS:
            old = getattr(entry, name)
            new = new_values[name]
            if old == new:
                continue
            _append_edit(db, entry, name, old, new, reason, now)
            setattr(entry, name, new)
            changed.append(name)

        if changed:
            entry.updated_at = now
        db.flush()

        if owns_db:
            db.commit()

        if changed:
            logger.info(
                "Time entry edited",
                extra={"user_id": str(user_id), "time_entry_id": entry.id, "fields": changed},
            )
        return EntryResult(entry=entry, warnings=checked.warnings, segments=[entry])
    except Exception:
        if owns_db:
            db.rollback()
        raise
    finally:
        if owns_db:
            db.close()


def delete_entry(
    entry_id: str,
    user_id: str,
    *,
    db: Optional[Session] = None,
) -> None:
    owns_db = db is None
    if owns_db:
        db = SessionLocal()

    try:
        entry = _get_entry(db, entry_id, user_id)
        _ensure_mutable(entry, "deleted")
        _claim_mutable(db, entry, "deleted")

        db.delete(entry)
        db.flush()

        if owns_db:
            db.commit()

        logger.info("Time entry deleted", extra={"user_id": str(user_id), "time_entry_id": str(entry_id)})
    except Exception:
        if owns_db:
            db.rollback()
        raise
    finally:
        if owns_db:
            db.close()


# ---------------------------------------------------------------------------
# locking
# ---------------------------------------------------------------------------


def lock_entry(
    entry_id: str,
    reason: str,
    *,
    now: Optional[datetime] = None,
    db: Session,
) -> TimeEntry:
    """Idempotent. Caller owns the transaction (the invoice gate)."""
    now = to_utc_naive(now) if now is not None else utcnow()

    entry = _get_entry(db, entry_id)
    if entry.locked_at is not None:
        return entry
    if entry.end_time is None:
        raise StateConflict("A running timer cannot be locked", reason="timer_running")

    entry.locked_at = now
    entry.locked_reason = reason
    entry.updated_at = now
    _append_edit(db, entry, "locked_reason", None, reason, "locked", now)
    db.flush()

    logger.info("Time entry locked", extra={"time_entry_id": entry.id, "reason": reason})
    return entry


def unlock_entry(
    entry_id: str,
    *,
    invoice_status: str,
    now: Optional[datetime] = None,
    db: Session,
) -> TimeEntry:
    """
    The one way out of the locked state: the entry was locked by an invoice that
    is being deleted while still a draft. Clears the lock and the invoice link.
    """
    now = to_utc_naive(now) if now is not None else utcnow()

    entry = _get_entry(db, entry_id)
    if entry.locked_reason != LOCK_REASON_INVOICED or str(invoice_status).lower() != "draft":
        raise StateConflict(
            "Only entries locked by a draft invoice can be unlocked",
            reason="unlock_not_permitted",
        )

    _append_edit(db, entry, "locked_reason", entry.locked_reason, None, "draft invoice deleted", now)
    if entry.invoice_id is not None:
        _append_edit(db, entry, "invoice_id", entry.invoice_id, None, "draft invoice deleted", now)

    entry.locked_at = None
    entry.locked_reason = None
    entry.invoice_id = None
    entry.updated_at = now
    db.flush()

    logger.info("Time entry unlocked", extra={"time_entry_id": entry.id})
    return entry


def entries_by_ids(db: Session, entry_ids: Iterable[str]) -> list[TimeEntry]:
    ids = [str(i) for i in entry_ids]
    if not ids:
        return []
    return db.query(TimeEntry).filter(TimeEntry.id.in_(ids)).with_for_update().all()
