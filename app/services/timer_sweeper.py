import asyncio
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import DBAPIError, OperationalError

from app.database import SessionLocal
from app.models.time_entry import TimeEntry
from app.services import time_engine
from app.services.clock import local_date, to_utc_naive, utcnow
from app.services.errors import TimeTrackingError
from app.services.settings_service import get_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SweepResult:
    idle_stopped: int
    midnight_rolled: int
    skipped: int


def _env_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return int(v)
    except ValueError:
        return default


def timer_sweep_enabled() -> bool:
    # Disabled under pytest so tests drive sweeps explicitly.
    if os.getenv("PYTEST_CURRENT_TEST"):
        return False
    v = os.getenv("TIMER_SWEEP_ENABLED")
    if v is None:
        return True
    return v.strip() not in {"0", "false", "False", "no", "NO"}


def _idle_deadline(entry: TimeEntry, idle_timeout_minutes: int) -> Optional[datetime]:
    if idle_timeout_minutes <= 0:
        return None
    last_seen = entry.last_activity_at or entry.start_time
    return last_seen + timedelta(minutes=idle_timeout_minutes)


def _sweep_one(entry_id: str, now: datetime) -> Optional[str]:
    """Handle one running timer in its own transaction. Returns what was done."""
    db = SessionLocal()
    try:
        entry = db.query(TimeEntry).filter(TimeEntry.id == entry_id).first()
        if entry is None or entry.end_time is not None:
            return None

        settings = get_settings(entry.user_id, db=db)

        deadline = _idle_deadline(entry, settings.idle_timeout_minutes)
        if deadline is not None and deadline <= now:
            time_engine.auto_stop_timer(
                entry.id,
                end_at=entry.last_activity_at or entry.start_time,
                reason=time_engine.AUTO_STOP_IDLE,
                now=now,
                db=db,
            )
            db.commit()
            return "idle"

        tz_name = settings.business_timezone
        if settings.auto_stop_at_midnight and local_date(entry.start_time, tz_name) < local_date(now, tz_name):
            if time_engine.roll_over_midnight(entry.id, now=now, db=db) is not None:
                db.commit()
                return "midnight"

        return None
    except TimeTrackingError as exc:
        # Typically the user stopped the timer first; their stop wins.
        db.rollback()
        logger.info(
            "Timer sweep skipped entry",
            extra={"time_entry_id": entry_id, "reason": exc.reason},
        )
        return "skipped"
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def sweep_stale_timers(*, now: Optional[datetime] = None, batch_size: int = 100) -> SweepResult:
    """Auto-stop idle timers and split timers that ran past local midnight."""
    now = to_utc_naive(now) if now is not None else utcnow()

    db = SessionLocal()
    try:
        running_ids = [
            r.id
            for r in db.query(TimeEntry.id)
            .filter(TimeEntry.end_time.is_(None))
            .order_by(TimeEntry.start_time.asc())
            .limit(int(batch_size))
            .all()
        ]
    finally:
        db.close()

    idle = midnight = skipped = 0
    for entry_id in running_ids:
        outcome = _sweep_one(entry_id, now)
        if outcome == "idle":
            idle += 1
        elif outcome == "midnight":
            midnight += 1
        elif outcome == "skipped":
            skipped += 1

    if idle or midnight:
        logger.info(
            "Timer sweep finished",
            extra={"idle_stopped": idle, "midnight_rolled": midnight, "skipped": skipped},
        )
    return SweepResult(idle_stopped=idle, midnight_rolled=midnight, skipped=skipped)


async def timer_sweep_loop(*, poll_seconds: float = 60.0, batch_size: int = 100) -> None:
    """Periodic sweep; never lets a failed tick take the server down."""
    logger.info(
        "Timer sweeper started",
        extra={"poll_seconds": float(poll_seconds), "batch_size": int(batch_size)},
    )

    while True:
        try:
            await asyncio.to_thread(sweep_stale_timers, batch_size=batch_size)
        except asyncio.CancelledError:
            logger.info("Timer sweeper cancelled; shutting down")
            raise
        except (OperationalError, DBAPIError):
            logger.exception(
                "Timer sweep tick failed",
                extra={"component": "timer_sweeper", "reason": "dbapi_error"},
            )
        except Exception:
            logger.exception(
                "Timer sweep tick failed",
                extra={"component": "timer_sweeper", "reason": "unexpected"},
            )

        await asyncio.sleep(poll_seconds)


def start_timer_sweep_task() -> Optional[asyncio.Task]:
    if not timer_sweep_enabled():
        logger.info("Timer sweeper disabled")
        return None

    poll_seconds = float(os.getenv("TIMER_SWEEP_SECONDS", "60"))
    batch_size = _env_int("TIMER_SWEEP_BATCH_SIZE", 100)
    return asyncio.create_task(timer_sweep_loop(poll_seconds=poll_seconds, batch_size=batch_size))
