from fastapi import APIRouter, Depends

from app.database import SessionLocal
from app.deps.auth import require_auth
from app.schemas.settings import TimeTrackingSettingsResponse, TimeTrackingSettingsUpdate
from app.services import settings_service

router = APIRouter(prefix="/settings", tags=["Settings"])


@router.get("/time_tracking", response_model=TimeTrackingSettingsResponse)
def get_time_tracking_settings(user_id: str = Depends(require_auth)):
    return settings_service.get_settings(user_id)


@router.patch("/time_tracking", response_model=TimeTrackingSettingsResponse)
def update_time_tracking_settings(
    payload: TimeTrackingSettingsUpdate,
    user_id: str = Depends(require_auth),
):
    db = SessionLocal()
    try:
        updated = settings_service.update_settings(
            user_id,
            payload.model_dump(exclude_unset=True),
            db=db,
        )
        db.commit()
        return updated
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
