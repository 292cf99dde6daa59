from typing import Optional

from pydantic import BaseModel, ConfigDict


class TimeTrackingSettingsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    default_hourly_rate: Optional[int]
    max_retroactive_days: int
    daily_hour_warning: int
    idle_timeout_minutes: int
    round_to_minutes: int
    minimum_entry_minutes: int
    allow_overlapping: bool
    client_visible_logs: bool
    require_description: bool
    auto_stop_at_midnight: bool
    business_timezone: str
    currency: str


class TimeTrackingSettingsUpdate(BaseModel):
    """Partial update; range checks live in settings_service."""

    model_config = ConfigDict(extra="forbid")

    default_hourly_rate: Optional[int] = None
    max_retroactive_days: Optional[int] = None
    daily_hour_warning: Optional[int] = None
    idle_timeout_minutes: Optional[int] = None
    round_to_minutes: Optional[int] = None
    minimum_entry_minutes: Optional[int] = None
    allow_overlapping: Optional[bool] = None
    client_visible_logs: Optional[bool] = None
    require_description: Optional[bool] = None
    auto_stop_at_midnight: Optional[bool] = None
    business_timezone: Optional[str] = None
    currency: Optional[str] = None
