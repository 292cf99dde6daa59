from datetime import date, datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

from app.services.time_reporting import format_duration


class TimerStartRequest(BaseModel):
    project_id: Optional[str] = None
    milestone_id: Optional[str] = None
    description: Optional[str] = None
    billable: bool = True


class TimerStopRequest(BaseModel):
    description: Optional[str] = None
    project_id: Optional[str] = None
    billable: Optional[bool] = None


class ManualEntryRequest(BaseModel):
    """Either duration (with entry_date) or start_time and end_time."""

    entry_date: Optional[date] = None
    duration: Optional[int] = Field(default=None, gt=0, description="Seconds.")
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    description: str
    project_id: Optional[str] = None
    milestone_id: Optional[str] = None
    billable: bool = True
    hourly_rate: Optional[int] = Field(default=None, ge=0, description="Cents per hour.")

    @model_validator(mode="after")
    def _one_span_shape(self):
        has_range = self.start_time is not None or self.end_time is not None
        if self.duration is not None and has_range:
            raise ValueError("Give either duration or start_time/end_time, not both")
        if self.duration is None and (self.start_time is None or self.end_time is None):
            raise ValueError("Give a duration, or both start_time and end_time")
        return self


class TimeEntryUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    description: Optional[str] = None
    project_id: Optional[str] = None
    milestone_id: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration: Optional[int] = Field(default=None, gt=0)
    billable: Optional[bool] = None
    hourly_rate: Optional[int] = Field(default=None, ge=0)
    reason: Optional[str] = None

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True, exclude={"reason"})


class TimeEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    project_id: Optional[str]
    milestone_id: Optional[str]
    description: Optional[str]
    start_time: datetime
    end_time: Optional[datetime]
    duration: Optional[int]
    hourly_rate: Optional[int]
    billable: bool
    invoice_id: Optional[str]
    entry_type: str
    locked_at: Optional[datetime]
    locked_reason: Optional[str]
    auto_stopped: bool
    auto_stop_reason: Optional[str]
    is_running: bool
    is_locked: bool
    is_manual: bool

    @computed_field
    @property
    def formatted_duration(self) -> Optional[str]:
        return format_duration(self.duration) if self.duration is not None else None


class TimeEntryEditResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    time_entry_id: str
    edited_at: datetime
    field: str
    old_value: Any
    new_value: Any
    reason: Optional[str]


class TimeEntryDetailResponse(TimeEntryResponse):
    original_start_time: Optional[datetime]
    original_end_time: Optional[datetime]
    original_duration: Optional[int]
    has_been_edited: bool
    edits: list[TimeEntryEditResponse]


class EntryWriteResponse(BaseModel):
    entry: TimeEntryResponse
    warnings: list[str]
    segments: list[TimeEntryResponse]


class RunningTimerResponse(BaseModel):
    entry: Optional[TimeEntryResponse]
    current_duration: int
    formatted_duration: str


class TotalsResponse(BaseModel):
    total_seconds: int
    billable_seconds: int
    earnings_cents: int
    entry_count: int
    tracked_count: int
    manual_count: int
    project_count: int
    formatted_total: str
    formatted_billable: str
    formatted_earnings: str


class TimeEntryListResponse(BaseModel):
    entries: list[TimeEntryResponse]
    totals: TotalsResponse
    limit: int
    offset: int
