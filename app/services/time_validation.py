"""
Rule functions for proposed time entries.

Every function here is pure: it takes the candidate values, a TrackingSettings
and whatever context it needs (today's date, the current time, the other
intervals of the same user) and either returns a value or raises
ValidationRejected. Nothing touches the database.

check_entry() composes them in the fixed order used for every create, stop and
edit: description, retroactive window, overlap, duration normalization
(minimum floor, then rounding), daily-hour advisory. A rejection stops the
pipeline before normalization; the advisory never rejects.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Iterable, Optional

from app.models.time_entry import ENTRY_TYPE_MANUAL
from app.services.errors import ValidationRejected
from app.services.settings_service import TrackingSettings
from app.services.time_reporting import format_duration


@dataclass(frozen=True)
class Interval:
    start: datetime
    end: Optional[datetime]  # None = running, compared against "now"
    entry_id: Optional[str] = None


@dataclass(frozen=True)
class DailyWarning:
    day: Optional[date]
    total_seconds: int
    threshold_minutes: int

    @property
    def total_hours(self) -> float:
        return round(self.total_seconds / 3600, 2)

    @property
    def message(self) -> str:
        prefix = f"your total for {self.day.isoformat()}" if self.day else "your daily total"
        return (
            f"Note: this brings {prefix} to {format_duration(self.total_seconds)}, "
            f"which exceeds {format_duration(self.threshold_minutes * 60)}."
        )


@dataclass(frozen=True)
class Candidate:
    start_time: datetime
    end_time: datetime
    raw_duration: int
    description: Optional[str]
    entry_type: str
    start_date: date  # business-timezone date of start_time
    enforce_past_limit: bool = True
    # Stops made by the sweeper have nobody to ask for a description.
    system_initiated: bool = False


@dataclass
class CheckResult:
    duration: int
    warnings: list[str] = field(default_factory=list)
    daily_warning: Optional[DailyWarning] = None


def validate_retroactive_window(
    start_date: date,
    settings: TrackingSettings,
    today: date,
    *,
    enforce_past_limit: bool = True,
) -> None:
    if start_date > today:
        raise ValidationRejected("Cannot add time entries for future dates", reason="future_date")

    if not enforce_past_limit:
        return

    if (today - start_date).days > settings.max_retroactive_days:
        days = settings.max_retroactive_days
        if days == 0:
            message = "You can only add entries for today"
        else:
            message = f"You can only add entries up to {days} day{'s' if days != 1 else ''} in the past"
        raise ValidationRejected(message, reason="too_far_in_past")


def validate_not_in_future(start_time: datetime, now: datetime) -> None:
    if start_time > now:
        raise ValidationRejected("Time entries cannot start in the future", reason="future_date")


def validate_minimum_duration(duration_seconds: int, settings: TrackingSettings) -> int:
    floor = settings.minimum_entry_minutes * 60
    return max(int(duration_seconds), floor)


def apply_rounding(duration_seconds: int, settings: TrackingSettings) -> int:
    """Nearest increment, half up; non-zero work never rounds down to nothing."""
    if settings.round_to_minutes <= 0:
        return int(duration_seconds)

    increment = settings.round_to_minutes * 60
    steps = (int(duration_seconds) + increment // 2) // increment
    if duration_seconds > 0 and steps < 1:
        steps = 1
    return steps * increment


def normalize_duration(duration_seconds: int, settings: TrackingSettings) -> int:
    return apply_rounding(validate_minimum_duration(duration_seconds, settings), settings)


def intervals_overlap(a: Interval, b: Interval, now: datetime) -> bool:
    a_end = a.end if a.end is not None else now
    b_end = b.end if b.end is not None else now
    # Half-open: touching endpoints are not a conflict.
    return a.start < b_end and b.start < a_end


def validate_overlap(
    candidate: Interval,
    existing: Iterable[Interval],
    settings: TrackingSettings,
    now: datetime,
) -> None:
    if settings.allow_overlapping:
        return

    for other in existing:
        if candidate.entry_id is not None and other.entry_id == candidate.entry_id:
            continue
        if intervals_overlap(candidate, other, now):
            raise ValidationRejected(
                "This time entry overlaps with an existing entry. Check your timesheet.",
                reason="overlap",
            )


def validate_description_required(
    description: Optional[str],
    settings: TrackingSettings,
    *,
    entry_type: str,
) -> None:
    # Manual entries always have to explain themselves, whatever the setting.
    has_text = bool(description and description.strip())
    if entry_type == ENTRY_TYPE_MANUAL and not has_text:
        raise ValidationRejected("Description is required for manual entries", reason="description_required")
    if settings.require_description and not has_text:
        raise ValidationRejected("A description is required for every time entry", reason="description_required")


def compute_daily_warning(
    existing_daily_total_seconds: int,
    new_entry_seconds: int,
    settings: TrackingSettings,
    *,
    day: Optional[date] = None,
) -> Optional[DailyWarning]:
    total = int(existing_daily_total_seconds) + int(new_entry_seconds)
    if total / 60 > settings.daily_hour_warning:
        return DailyWarning(day=day, total_seconds=total, threshold_minutes=settings.daily_hour_warning)
    return None


def check_entry(
    candidate: Candidate,
    settings: TrackingSettings,
    *,
    today: date,
    now: datetime,
    existing_intervals: Iterable[Interval],
    existing_daily_total_seconds: int = 0,
    entry_id: Optional[str] = None,
) -> CheckResult:
    if not candidate.system_initiated:
        validate_description_required(candidate.description, settings, entry_type=candidate.entry_type)
    validate_retroactive_window(
        candidate.start_date,
        settings,
        today,
        enforce_past_limit=candidate.enforce_past_limit,
    )
    validate_not_in_future(candidate.start_time, now)
    validate_overlap(
        Interval(candidate.start_time, candidate.end_time, entry_id),
        existing_intervals,
        settings,
        now,
    )

    duration = normalize_duration(candidate.raw_duration, settings)
    result = CheckResult(duration=duration)

    warning = compute_daily_warning(
        existing_daily_total_seconds,
        duration,
        settings,
        day=candidate.start_date,
    )
    if warning is not None:
        result.daily_warning = warning
        result.warnings.append(warning.message)

    return result
