from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def utcnow() -> datetime:
    """Current time as naive UTC, the representation stored in every column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_naive(dt: datetime) -> datetime:
    """Naive datetimes are treated as UTC already."""
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def get_zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone: {name}") from exc


def to_local(dt: datetime, tz_name: str) -> datetime:
    aware = dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)
    return aware.astimezone(get_zone(tz_name))


def local_date(dt: datetime, tz_name: str) -> date:
    return to_local(dt, tz_name).date()


def local_to_utc(day: date, at: time, tz_name: str) -> datetime:
    local = datetime.combine(day, at).replace(tzinfo=get_zone(tz_name))
    return local.astimezone(timezone.utc).replace(tzinfo=None)


def day_bounds_utc(day: date, tz_name: str) -> tuple[datetime, datetime]:
    """[local midnight, next local midnight) expressed in naive UTC."""
    return (
        local_to_utc(day, time.min, tz_name),
        local_to_utc(day + timedelta(days=1), time.min, tz_name),
    )


def next_local_midnight(dt: datetime, tz_name: str) -> datetime:
    return day_bounds_utc(local_date(dt, tz_name), tz_name)[1]


def seconds_between(start: datetime, end: datetime) -> int:
    return int((to_utc_naive(end) - to_utc_naive(start)).total_seconds())
