from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.database import SessionLocal
from app.deps.auth import require_auth
from app.schemas.time_entry import (
    EntryWriteResponse,
    ManualEntryRequest,
    RunningTimerResponse,
    TimeEntryDetailResponse,
    TimeEntryEditResponse,
    TimeEntryListResponse,
    TimeEntryResponse,
    TimeEntryUpdate,
    TimerStartRequest,
    TimerStopRequest,
)
from app.services import time_engine
from app.services.clock import seconds_between, utcnow
from app.services.errors import NotFound
from app.services.settings_service import get_settings
from app.services.time_reporting import format_duration, list_entries

router = APIRouter(
    prefix="/time_entries",
    tags=["Time Entries"],
)


def _write_response(result: time_engine.EntryResult) -> EntryWriteResponse:
    return EntryWriteResponse(
        entry=TimeEntryResponse.model_validate(result.entry),
        warnings=list(result.warnings),
        segments=[TimeEntryResponse.model_validate(s) for s in result.segments],
    )


@router.get("", response_model=TimeEntryListResponse)
def list_time_entries(
    user_id: str = Depends(require_auth),
    project_id: Optional[str] = None,
    milestone_id: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    billable: Optional[bool] = None,
    invoiced: Optional[bool] = None,
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
):
    db = SessionLocal()
    try:
        settings = get_settings(user_id, db=db)
        rows, totals = list_entries(
            user_id,
            project_id=project_id,
            milestone_id=milestone_id,
            date_from=date_from,
            date_to=date_to,
            billable=billable,
            invoiced=invoiced,
            limit=limit,
            offset=offset,
            tz_name=settings.business_timezone,
            db=db,
        )
        return TimeEntryListResponse(
            entries=[TimeEntryResponse.model_validate(r) for r in rows],
            totals=totals.as_dict(settings.currency),
            limit=limit,
            offset=offset,
        )
    finally:
        db.close()


@router.get("/running", response_model=RunningTimerResponse)
def get_running_timer(user_id: str = Depends(require_auth)):
    db = SessionLocal()
    try:
        entry = time_engine.get_running_timer(user_id, db=db)
        if entry is None:
            return RunningTimerResponse(entry=None, current_duration=0, formatted_duration=format_duration(0))

        elapsed = max(0, seconds_between(entry.start_time, utcnow()))
        return RunningTimerResponse(
            entry=TimeEntryResponse.model_validate(entry),
            current_duration=elapsed,
            formatted_duration=format_duration(elapsed),
        )
    finally:
        db.close()


@router.post("/timer/start", response_model=TimeEntryResponse)
def start_timer_endpoint(
    payload: TimerStartRequest,
    user_id: str = Depends(require_auth),
):
    db = SessionLocal()
    try:
        entry = time_engine.start_timer(
            user_id,
            project_id=payload.project_id,
            milestone_id=payload.milestone_id,
            description=payload.description,
            billable=payload.billable,
            db=db,
        )
        db.commit()
        db.refresh(entry)
        return TimeEntryResponse.model_validate(entry)
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@router.post("/{entry_id}/stop", response_model=EntryWriteResponse)
def stop_timer_endpoint(
    entry_id: str,
    payload: Optional[TimerStopRequest] = None,
    user_id: str = Depends(require_auth),
):
    payload = payload or TimerStopRequest()

    db = SessionLocal()
    try:
        result = time_engine.stop_timer(
            entry_id,
            user_id,
            description=payload.description,
            project_id=payload.project_id,
            billable=payload.billable,
            db=db,
        )
        db.commit()
        return _write_response(result)
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@router.post("/{entry_id}/heartbeat", response_model=TimeEntryResponse)
def heartbeat_endpoint(entry_id: str, user_id: str = Depends(require_auth)):
    db = SessionLocal()
    try:
        entry = time_engine.heartbeat(entry_id, user_id, db=db)
        db.commit()
        return TimeEntryResponse.model_validate(entry)
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@router.post("/{entry_id}/discard", status_code=204)
def discard_timer_endpoint(entry_id: str, user_id: str = Depends(require_auth)):
    db = SessionLocal()
    try:
        time_engine.discard_timer(entry_id, user_id, db=db)
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@router.post("/manual", response_model=EntryWriteResponse)
def create_manual_endpoint(
    payload: ManualEntryRequest,
    user_id: str = Depends(require_auth),
):
    if payload.duration is not None:
        span = time_engine.ByDuration(seconds=payload.duration)
    else:
        span = time_engine.ByRange(start=payload.start_time, end=payload.end_time)

    db = SessionLocal()
    try:
        result = time_engine.create_manual(
            user_id,
            span,
            payload.description,
            entry_date=payload.entry_date,
            project_id=payload.project_id,
            milestone_id=payload.milestone_id,
            billable=payload.billable,
            hourly_rate=payload.hourly_rate,
            db=db,
        )
        db.commit()
        return _write_response(result)
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@router.get("/{entry_id}", response_model=TimeEntryDetailResponse)
def get_time_entry(entry_id: str, user_id: str = Depends(require_auth)):
    db = SessionLocal()
    try:
        entry = time_engine.get_entry(entry_id, user_id, db=db)
        if entry is None:
            raise NotFound("Time entry")

        edits = time_engine.get_edit_history(entry.id, db=db)
        return TimeEntryDetailResponse(
            **TimeEntryResponse.model_validate(entry).model_dump(exclude={"formatted_duration"}),
            original_start_time=entry.original_start_time,
            original_end_time=entry.original_end_time,
            original_duration=entry.original_duration,
            has_been_edited=bool(edits),
            edits=[TimeEntryEditResponse.model_validate(e) for e in edits],
        )
    finally:
        db.close()


@router.patch("/{entry_id}", response_model=EntryWriteResponse)
def edit_time_entry(
    entry_id: str,
    payload: TimeEntryUpdate,
    user_id: str = Depends(require_auth),
):
    db = SessionLocal()
    try:
        result = time_engine.edit_entry(
            entry_id,
            user_id,
            payload.changes(),
            reason=payload.reason,
            db=db,
        )
        db.commit()
        return _write_response(result)
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@router.delete("/{entry_id}", status_code=204)
def delete_time_entry(entry_id: str, user_id: str = Depends(require_auth)):
    db = SessionLocal()
    try:
        time_engine.delete_entry(entry_id, user_id, db=db)
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
