from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, Integer, String, event

from app.database import Base


class TimeEntryEdit(Base):
    """One field change on a time entry. Rows are append-only."""

    __tablename__ = "time_entry_edits"

    id = Column(Integer, primary_key=True, index=True)

    # No FK: the audit trail outlives deleted entries.
    time_entry_id = Column(String, nullable=False, index=True)
    user_id = Column(String, nullable=False, index=True)

    edited_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    field = Column(String, nullable=False)
    old_value = Column(JSON, nullable=True)
    new_value = Column(JSON, nullable=True)
    reason = Column(String, nullable=True)


@event.listens_for(TimeEntryEdit, "before_update")
def _block_update(mapper, connection, target):
    raise ValueError("time_entry_edits is append-only")


@event.listens_for(TimeEntryEdit, "before_delete")
def _block_delete(mapper, connection, target):
    raise ValueError("time_entry_edits is append-only")
