from fastapi import APIRouter

from app.schemas.reports import ClientLogResponse
from app.services.time_reporting import client_visible_log

router = APIRouter(prefix="/public", tags=["Public"])


# No auth: the project's public_id is the capability.
@router.get("/projects/{public_id}/time_log", response_model=ClientLogResponse)
def project_time_log(public_id: str):
    return client_visible_log(public_id)
