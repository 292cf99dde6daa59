from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from app.models.time_entry import TimeEntry
from app.services import time_engine
from app.services.clock import seconds_between, to_utc_naive, utcnow
from app.services.errors import StateConflict

STOPPED = "stopped"
RUNNING = "running"
PAUSED = "paused"


class TimerRuntime:
    """
    Elapsed-time state for one user's timer widget.

    Holds no rules of its own: every transition that touches persisted entries
    goes through time_engine. Pausing stops the current tracked entry; resuming
    starts a new one with the same project and description, so a paused span
    never turns into billed time.
    """

    def __init__(
        self,
        user_id: str,
        *,
        project_id: Optional[str] = None,
        milestone_id: Optional[str] = None,
        description: Optional[str] = None,
        billable: bool = True,
    ):
        self.user_id = str(user_id)
        self.project_id = project_id
        self.milestone_id = milestone_id
        self.description = description
        self.billable = billable

        self.state = STOPPED
        self.entry_id: Optional[str] = None
        self.started_at: Optional[datetime] = None
        self.accumulated_seconds = 0
        self.entry_ids: list[str] = []
        self.warnings: list[str] = []

    @classmethod
    def from_entry(cls, entry: TimeEntry) -> "TimerRuntime":
        runtime = cls(
            entry.user_id,
            project_id=entry.project_id,
            milestone_id=entry.milestone_id,
            description=entry.description,
            billable=entry.billable,
        )
        if entry.end_time is None:
            runtime.state = RUNNING
            runtime.entry_id = entry.id
            runtime.started_at = entry.start_time
            runtime.entry_ids.append(entry.id)
        return runtime

    def _require(self, *states: str) -> None:
        if self.state not in states:
            reason = "timer_running" if self.state == RUNNING else "timer_not_running"
            raise StateConflict(f"Timer is {self.state}", reason=reason)

    def _begin(self, db: Session, now: datetime) -> None:
        entry = time_engine.start_timer(
            self.user_id,
            project_id=self.project_id,
            milestone_id=self.milestone_id,
            description=self.description,
            billable=self.billable,
            now=now,
            db=db,
        )
        self.entry_id = entry.id
        self.started_at = entry.start_time
        self.entry_ids.append(entry.id)
        self.state = RUNNING

    def _end(self, db: Session, now: datetime) -> time_engine.EntryResult:
        result = time_engine.stop_timer(
            self.entry_id,
            self.user_id,
            description=self.description,
            now=now,
            db=db,
        )
        self.accumulated_seconds += seconds_between(self.started_at, now)
        self.entry_ids.extend(s.id for s in result.segments if s.id not in self.entry_ids)
        self.warnings.extend(result.warnings)
        self.entry_id = None
        self.started_at = None
        return result

    def start(self, *, db: Session, now: Optional[datetime] = None) -> None:
        self._require(STOPPED)
        self.accumulated_seconds = 0
        self.entry_ids = []
        self.warnings = []
        self._begin(db, to_utc_naive(now) if now else utcnow())

    def pause(self, *, db: Session, now: Optional[datetime] = None) -> time_engine.EntryResult:
        self._require(RUNNING)
        result = self._end(db, to_utc_naive(now) if now else utcnow())
        self.state = PAUSED
        return result

    def resume(self, *, db: Session, now: Optional[datetime] = None) -> None:
        self._require(PAUSED)
        self._begin(db, to_utc_naive(now) if now else utcnow())

    def stop(self, *, db: Session, now: Optional[datetime] = None) -> Optional[time_engine.EntryResult]:
        self._require(RUNNING, PAUSED)
        result = None
        if self.state == RUNNING:
            result = self._end(db, to_utc_naive(now) if now else utcnow())
        self.state = STOPPED
        return result

    def elapsed(self, now: Optional[datetime] = None) -> int:
        """Wall-clock seconds timed so far, excluding paused spans."""
        live = 0
        if self.state == RUNNING and self.started_at is not None:
            live = max(0, seconds_between(self.started_at, to_utc_naive(now) if now else utcnow()))
        return self.accumulated_seconds + live
