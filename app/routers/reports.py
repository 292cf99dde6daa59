from datetime import date

from fastapi import APIRouter, Depends

from app.deps.auth import require_auth
from app.schemas.reports import RangeStatsResponse, WeeklyTimesheetResponse
from app.services.settings_service import get_settings
from app.services.time_reporting import range_stats, weekly_timesheet

router = APIRouter(prefix="/reports", tags=["Reports"])


@router.get("/weekly", response_model=WeeklyTimesheetResponse)
def weekly_report(
    week_start: date,
    user_id: str = Depends(require_auth),
):
    settings = get_settings(user_id)
    return weekly_timesheet(
        user_id,
        week_start,
        tz_name=settings.business_timezone,
        currency=settings.currency,
    )


@router.get("/stats", response_model=RangeStatsResponse)
def stats_report(
    start_date: date,
    end_date: date,
    user_id: str = Depends(require_auth),
):
    settings = get_settings(user_id)
    return range_stats(
        user_id,
        start_date,
        end_date,
        tz_name=settings.business_timezone,
        currency=settings.currency,
    )
