from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy.orm import Session

from app.database import SessionLocal
from app.models.project import Project
from app.models.time_entry import ENTRY_TYPE_MANUAL, ENTRY_TYPE_TRACKED, TimeEntry
from app.services.clock import day_bounds_utc, local_date
from app.services.errors import NotFound, ValidationRejected
from app.services.settings_service import get_settings

_CURRENCY_SYMBOLS = {"USD": "$", "EUR": "€", "GBP": "£", "CAD": "CA$", "AUD": "A$", "JPY": "¥"}


def format_duration(seconds: Optional[int]) -> str:
    seconds = int(seconds or 0)
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def format_currency(cents: int, currency: str = "USD") -> str:
    code = (currency or "USD").upper()
    amount = Decimal(int(cents)) / Decimal(100)
    sign = "-" if amount < 0 else ""
    body = f"{abs(amount):,.2f}"
    symbol = _CURRENCY_SYMBOLS.get(code)
    if symbol is None:
        return f"{sign}{body} {code}"
    return f"{sign}{symbol}{body}"


def entry_earnings(entry: TimeEntry) -> Decimal:
    if not entry.billable or entry.hourly_rate is None or not entry.duration:
        return Decimal(0)
    return Decimal(int(entry.duration)) / Decimal(3600) * Decimal(int(entry.hourly_rate))


def earnings_cents(entries: Iterable[TimeEntry]) -> int:
    """Billable earnings in cents using each entry's snapshot rate."""
    total = sum((entry_earnings(e) for e in entries), Decimal(0))
    return int(total.quantize(Decimal(1), rounding=ROUND_HALF_UP))


@dataclass
class Totals:
    total_seconds: int = 0
    billable_seconds: int = 0
    earnings_cents: int = 0
    entry_count: int = 0
    tracked_count: int = 0
    manual_count: int = 0
    project_count: int = 0

    def as_dict(self, currency: str = "USD") -> dict[str, Any]:
        return {
            "total_seconds": self.total_seconds,
            "billable_seconds": self.billable_seconds,
            "earnings_cents": self.earnings_cents,
            "entry_count": self.entry_count,
            "tracked_count": self.tracked_count,
            "manual_count": self.manual_count,
            "project_count": self.project_count,
            "formatted_total": format_duration(self.total_seconds),
            "formatted_billable": format_duration(self.billable_seconds),
            "formatted_earnings": format_currency(self.earnings_cents, currency),
        }


def summarize(entries: Sequence[TimeEntry]) -> Totals:
    totals = Totals()
    projects = set()
    for e in entries:
        seconds = int(e.duration or 0)
        totals.total_seconds += seconds
        if e.billable:
            totals.billable_seconds += seconds
        totals.entry_count += 1
        if e.entry_type == ENTRY_TYPE_TRACKED:
            totals.tracked_count += 1
        elif e.entry_type == ENTRY_TYPE_MANUAL:
            totals.manual_count += 1
        if e.project_id is not None:
            projects.add(e.project_id)
    totals.earnings_cents = earnings_cents(entries)
    totals.project_count = len(projects)
    return totals


@dataclass
class DayBucket:
    day: date
    entries: list[TimeEntry] = field(default_factory=list)
    total_seconds: int = 0
    billable_seconds: int = 0


def daily_buckets(
    entries: Iterable[TimeEntry],
    first_day: date,
    days: int,
    tz_name: str,
) -> list[DayBucket]:
    """Buckets keyed by the business-timezone date of each entry's start."""
    buckets = {first_day + timedelta(days=i): DayBucket(day=first_day + timedelta(days=i)) for i in range(days)}
    for e in entries:
        bucket = buckets.get(local_date(e.start_time, tz_name))
        if bucket is None:
            continue
        seconds = int(e.duration or 0)
        bucket.entries.append(e)
        bucket.total_seconds += seconds
        if e.billable:
            bucket.billable_seconds += seconds
    return [buckets[d] for d in sorted(buckets)]


def _entries_between(db: Session, user_id: str, first_day: date, last_day: date, tz_name: str) -> list[TimeEntry]:
    start_utc = day_bounds_utc(first_day, tz_name)[0]
    end_utc = day_bounds_utc(last_day, tz_name)[1]
    return (
        db.query(TimeEntry)
        .filter(
            TimeEntry.user_id == str(user_id),
            TimeEntry.start_time >= start_utc,
            TimeEntry.start_time < end_utc,
        )
        .order_by(TimeEntry.start_time.asc())
        .all()
    )


def weekly_timesheet(
    user_id: str,
    week_start: date,
    *,
    tz_name: str = "UTC",
    currency: str = "USD",
    db: Optional[Session] = None,
) -> dict[str, Any]:
    """Seven day buckets starting at week_start, plus week totals."""
    owns_db = db is None
    if owns_db:
        db = SessionLocal()

    try:
        entries = _entries_between(db, user_id, week_start, week_start + timedelta(days=6), tz_name)
        buckets = daily_buckets(entries, week_start, 7, tz_name)
        return {
            "week_start": week_start.isoformat(),
            "days": [
                {
                    "date": b.day.isoformat(),
                    "entry_ids": [e.id for e in b.entries],
                    "total_seconds": b.total_seconds,
                    "billable_seconds": b.billable_seconds,
                    "formatted_total": format_duration(b.total_seconds),
                    "formatted_billable": format_duration(b.billable_seconds),
                }
                for b in buckets
            ],
            "totals": summarize(entries).as_dict(currency),
        }
    finally:
        if owns_db:
            db.close()


def range_stats(
    user_id: str,
    start_date: date,
    end_date: date,
    *,
    tz_name: str = "UTC",
    currency: str = "USD",
    db: Optional[Session] = None,
) -> dict[str, Any]:
    """Totals over [start_date, end_date], both days inclusive."""
    if end_date < start_date:
        raise ValidationRejected("end_date must not be before start_date")

    owns_db = db is None
    if owns_db:
        db = SessionLocal()

    try:
        entries = _entries_between(db, user_id, start_date, end_date, tz_name)
        payload = summarize(entries).as_dict(currency)
        payload["start_date"] = start_date.isoformat()
        payload["end_date"] = end_date.isoformat()
        return payload
    finally:
        if owns_db:
            db.close()


def list_entries(
    user_id: str,
    *,
    project_id: Optional[str] = None,
    milestone_id: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    billable: Optional[bool] = None,
    invoiced: Optional[bool] = None,
    limit: int = 50,
    offset: int = 0,
    tz_name: str = "UTC",
    db: Optional[Session] = None,
) -> tuple[list[TimeEntry], Totals]:
    """Newest first; totals cover every entry matching the filter, not only the page."""
    if not 1 <= int(limit) <= 100:
        raise ValidationRejected("limit must be between 1 and 100")
    if int(offset) < 0:
        raise ValidationRejected("offset must not be negative")
    if date_from is not None and date_to is not None and date_to < date_from:
        raise ValidationRejected("date_to must not be before date_from")

    owns_db = db is None
    if owns_db:
        db = SessionLocal()

    try:
        q = db.query(TimeEntry).filter(TimeEntry.user_id == str(user_id))

        if project_id is not None:
            q = q.filter(TimeEntry.project_id == str(project_id))
        if milestone_id is not None:
            q = q.filter(TimeEntry.milestone_id == str(milestone_id))
        if date_from is not None:
            q = q.filter(TimeEntry.start_time >= day_bounds_utc(date_from, tz_name)[0])
        if date_to is not None:
            q = q.filter(TimeEntry.start_time < day_bounds_utc(date_to, tz_name)[1])
        if billable is not None:
            q = q.filter(TimeEntry.billable.is_(bool(billable)))
        if invoiced is True:
            q = q.filter(TimeEntry.invoice_id.isnot(None))
        elif invoiced is False:
            q = q.filter(TimeEntry.invoice_id.is_(None))

        totals = summarize(q.all())
        rows = (
            q.order_by(TimeEntry.start_time.desc(), TimeEntry.id.asc())
            .offset(int(offset))
            .limit(int(limit))
            .all()
        )
        return rows, totals
    finally:
        if owns_db:
            db.close()


def client_visible_log(project_public_id: str, *, db: Optional[Session] = None) -> dict[str, Any]:
    """
    Read-only projection for the client portal. Only completed billable work on
    the project is shown, and nothing at all unless the owner opted in.
    """
    owns_db = db is None
    if owns_db:
        db = SessionLocal()

    try:
        project = db.query(Project).filter(Project.public_id == str(project_public_id)).first()
        if project is None:
            raise NotFound("Project")

        settings = get_settings(project.user_id, db=db)
        if not settings.client_visible_logs:
            return {"project_name": project.name, "enabled": False, "entries": [], "total_seconds": 0}

        entries = (
            db.query(TimeEntry)
            .filter(
                TimeEntry.project_id == project.id,
                TimeEntry.billable.is_(True),
                TimeEntry.end_time.isnot(None),
            )
            .order_by(TimeEntry.start_time.desc())
            .all()
        )
        total_seconds = sum(int(e.duration or 0) for e in entries)
        return {
            "project_name": project.name,
            "enabled": True,
            "entries": [
                {
                    "date": local_date(e.start_time, settings.business_timezone),
                    "description": e.description,
                    "duration": int(e.duration or 0),
                    "formatted_duration": format_duration(e.duration),
                    "entry_type": e.entry_type,
                    "billable": bool(e.billable),
                }
                for e in entries
            ],
            "total_seconds": total_seconds,
            "formatted_total": format_duration(total_seconds),
        }
    finally:
        if owns_db:
            db.close()
