from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    event,
    inspect,
    text,
)

from app.database import Base

ENTRY_TYPE_TRACKED = "tracked"
ENTRY_TYPE_MANUAL = "manual"

LOCK_REASON_INVOICED = "invoiced"


class TimeEntry(Base):
    __tablename__ = "time_entries"

    __table_args__ = (
        CheckConstraint("entry_type IN ('tracked', 'manual')", name="ck_time_entries_entry_type"),
        CheckConstraint("duration IS NULL OR duration >= 0", name="ck_time_entries_duration_nonnegative"),
        CheckConstraint("hourly_rate IS NULL OR hourly_rate >= 0", name="ck_time_entries_rate_nonnegative"),
        # At most one running timer per user.
        Index(
            "uq_time_entries_running",
            "user_id",
            unique=True,
            sqlite_where=text("end_time IS NULL"),
            postgresql_where=text("end_time IS NULL"),
        ),
        Index("ix_time_entries_user_start", "user_id", "start_time"),
    )

    id = Column(String, primary_key=True, index=True)
    user_id = Column(String, nullable=False, index=True)

    project_id = Column(String, ForeignKey("projects.id", ondelete="SET NULL"), nullable=True, index=True)
    milestone_id = Column(String, ForeignKey("milestones.id", ondelete="SET NULL"), nullable=True)

    description = Column(String, nullable=True)
    start_time = Column(DateTime, nullable=False, index=True)
    end_time = Column(DateTime, nullable=True)  # null = timer running
    duration = Column(Integer, nullable=True)  # seconds, set when stopped

    hourly_rate = Column(Integer, nullable=True)  # cents, snapshot at creation
    billable = Column(Boolean, nullable=False, default=True)
    invoice_id = Column(String, nullable=True, index=True)

    entry_type = Column(String, nullable=False, default=ENTRY_TYPE_TRACKED)

    locked_at = Column(DateTime, nullable=True)
    locked_reason = Column(String, nullable=True)

    auto_stopped = Column(Boolean, nullable=False, default=False)
    auto_stop_reason = Column(String, nullable=True)  # idle|midnight
    last_activity_at = Column(DateTime, nullable=True)

    original_start_time = Column(DateTime, nullable=True)
    original_end_time = Column(DateTime, nullable=True)
    original_duration = Column(Integer, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    @property
    def is_running(self) -> bool:
        return self.end_time is None

    @property
    def is_locked(self) -> bool:
        return self.locked_at is not None

    @property
    def is_manual(self) -> bool:
        return self.entry_type == ENTRY_TYPE_MANUAL


_ONCE_ONLY_FIELDS = ("entry_type", "original_start_time", "original_end_time", "original_duration")


@event.listens_for(TimeEntry, "before_update")
def _guard_write_once_fields(mapper, connection, target):
    state = inspect(target)
    for name in _ONCE_ONLY_FIELDS:
        history = state.attrs[name].history
        if not history.has_changes():
            continue
        previous = history.deleted[0] if history.deleted else None
        # original_end_time/original_duration start out null on running timers
        if previous is None and name != "entry_type":
            continue
        raise ValueError(f"time_entries.{name} cannot be changed once set")
