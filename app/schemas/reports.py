from datetime import date
from typing import Optional

from pydantic import BaseModel

from app.schemas.time_entry import TotalsResponse


class DayTotals(BaseModel):
    date: date
    entry_ids: list[str]
    total_seconds: int
    billable_seconds: int
    formatted_total: str
    formatted_billable: str


class WeeklyTimesheetResponse(BaseModel):
    week_start: date
    days: list[DayTotals]
    totals: TotalsResponse


class RangeStatsResponse(TotalsResponse):
    start_date: date
    end_date: date


class ClientLogEntry(BaseModel):
    date: date
    description: Optional[str]
    duration: int
    formatted_duration: str
    entry_type: str
    billable: bool


class ClientLogResponse(BaseModel):
    project_name: str
    enabled: bool
    entries: list[ClientLogEntry]
    total_seconds: int
    formatted_total: Optional[str] = None
