from __future__ import annotations

import logging
from dataclasses import dataclass, fields, replace
from typing import Any, Mapping, Optional

from sqlalchemy.orm import Session

from app.database import SessionLocal
from app.models.time_tracking_settings import TimeTrackingSettings
from app.services.clock import get_zone, utcnow
from app.services.errors import ValidationRejected

logger = logging.getLogger(__name__)

ROUNDING_INCREMENTS = (0, 1, 5, 6, 10, 15, 30, 60)


@dataclass(frozen=True)
class TrackingSettings:
    """Per-user rule parameters, passed explicitly into every rule and lifecycle call."""

    default_hourly_rate: Optional[int] = None
    max_retroactive_days: int = 7
    daily_hour_warning: int = 720
    idle_timeout_minutes: int = 30
    round_to_minutes: int = 0
    minimum_entry_minutes: int = 1
    allow_overlapping: bool = False
    client_visible_logs: bool = True
    require_description: bool = False
    auto_stop_at_midnight: bool = True
    business_timezone: str = "UTC"
    currency: str = "USD"


SETTING_NAMES = tuple(f.name for f in fields(TrackingSettings))

# name -> (min, max) inclusive
_RANGES = {
    "max_retroactive_days": (0, 365),
    "daily_hour_warning": (60, 1440),
    "idle_timeout_minutes": (0, 120),
    "minimum_entry_minutes": (1, 30),
}


def _reject(message: str) -> ValidationRejected:
    return ValidationRejected(message, reason="invalid_setting")


def validate_settings_values(changes: Mapping[str, Any]) -> None:
    for name, value in changes.items():
        if name not in SETTING_NAMES:
            raise _reject(f"Unknown setting: {name}")

        if name in _RANGES:
            lo, hi = _RANGES[name]
            if isinstance(value, bool) or not isinstance(value, int) or not lo <= value <= hi:
                raise _reject(f"{name} must be between {lo} and {hi}")
        elif name == "round_to_minutes":
            if value not in ROUNDING_INCREMENTS:
                allowed = ", ".join(str(v) for v in ROUNDING_INCREMENTS)
                raise _reject(f"round_to_minutes must be one of {allowed}")
        elif name == "default_hourly_rate":
            if value is not None and (isinstance(value, bool) or not isinstance(value, int) or value < 0):
                raise _reject("default_hourly_rate must be a non-negative amount in cents")
        elif name == "business_timezone":
            try:
                get_zone(str(value))
            except ValueError as exc:
                raise _reject(str(exc)) from exc
        elif name == "currency":
            if not isinstance(value, str) or len(value) != 3 or not value.isalpha():
                raise _reject("currency must be a three-letter ISO code")
        elif not isinstance(value, bool):
            raise _reject(f"{name} must be true or false")


def _from_row(row: TimeTrackingSettings) -> TrackingSettings:
    return TrackingSettings(**{name: getattr(row, name) for name in SETTING_NAMES})


def _get_row(db: Session, user_id: str) -> Optional[TimeTrackingSettings]:
    return db.query(TimeTrackingSettings).filter(TimeTrackingSettings.user_id == str(user_id)).first()


def get_settings(user_id: str, *, db: Optional[Session] = None) -> TrackingSettings:
    """Stored settings for the user, or the defaults when none were saved."""
    owns_db = db is None
    if owns_db:
        db = SessionLocal()

    try:
        row = _get_row(db, user_id)
        return TrackingSettings() if row is None else _from_row(row)
    finally:
        if owns_db:
            db.close()


def update_settings(
    user_id: str,
    changes: Mapping[str, Any],
    *,
    db: Optional[Session] = None,
) -> TrackingSettings:
    """
    If db is provided, this function will NOT commit/close. Caller owns the transaction.
    If db is None, this function manages its own session + commit.
    """
    validate_settings_values(changes)

    owns_db = db is None
    if owns_db:
        db = SessionLocal()

    try:
        row = _get_row(db, user_id)
        if row is None:
            merged = replace(TrackingSettings(), **dict(changes))
            row = TimeTrackingSettings(user_id=str(user_id), **{n: getattr(merged, n) for n in SETTING_NAMES})
            db.add(row)
        else:
            for name, value in changes.items():
                setattr(row, name, value)
            row.updated_at = utcnow()

        db.flush()

        if owns_db:
            db.commit()

        logger.info(
            "Time tracking settings updated",
            extra={"user_id": str(user_id), "fields": sorted(changes)},
        )
        return _from_row(row)
    except Exception:
        if owns_db:
            db.rollback()
        raise
    finally:
        if owns_db:
            db.close()
