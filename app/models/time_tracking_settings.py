from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Integer, String

from app.database import Base


class TimeTrackingSettings(Base):
    __tablename__ = "time_tracking_settings"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=False, unique=True, index=True)

    default_hourly_rate = Column(Integer, nullable=True)  # cents

    max_retroactive_days = Column(Integer, nullable=False, default=7)
    daily_hour_warning = Column(Integer, nullable=False, default=720)  # minutes
    idle_timeout_minutes = Column(Integer, nullable=False, default=30)  # 0 = disabled
    round_to_minutes = Column(Integer, nullable=False, default=0)  # 0 = no rounding
    minimum_entry_minutes = Column(Integer, nullable=False, default=1)
    allow_overlapping = Column(Boolean, nullable=False, default=False)
    client_visible_logs = Column(Boolean, nullable=False, default=True)
    require_description = Column(Boolean, nullable=False, default=False)
    auto_stop_at_midnight = Column(Boolean, nullable=False, default=True)

    business_timezone = Column(String, nullable=False, default="UTC")
    currency = Column(String, nullable=False, default="USD")

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)
