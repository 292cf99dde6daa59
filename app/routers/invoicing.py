from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends

from app.database import SessionLocal
from app.deps.auth import require_auth
from app.schemas.invoicing import AttachRequest, DetachRequest, InvoiceLinkResponse, UninvoicedResponse
from app.schemas.time_entry import TimeEntryResponse
from app.services import invoice_linkage
from app.services.settings_service import get_settings

router = APIRouter(prefix="/invoicing", tags=["Invoicing"])


@router.get("/uninvoiced", response_model=UninvoicedResponse)
def uninvoiced_time(
    user_id: str = Depends(require_auth),
    project_id: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
):
    db = SessionLocal()
    try:
        settings = get_settings(user_id, db=db)
        summary = invoice_linkage.uninvoiced_summary(
            user_id,
            project_id=project_id,
            date_from=date_from,
            date_to=date_to,
            tz_name=settings.business_timezone,
            currency=settings.currency,
            db=db,
        )
        return UninvoicedResponse(
            project_id=project_id,
            date_from=date_from,
            date_to=date_to,
            entries=[TimeEntryResponse.model_validate(e) for e in summary["entries"]],
            totals=summary["totals"],
        )
    finally:
        db.close()


@router.post("/attach", response_model=InvoiceLinkResponse)
def attach_entries(
    payload: AttachRequest,
    user_id: str = Depends(require_auth),
):
    db = SessionLocal()
    try:
        rows = invoice_linkage.attach_to_invoice(user_id, payload.entry_ids, payload.invoice_id, db=db)
        db.commit()
        return InvoiceLinkResponse(
            invoice_id=payload.invoice_id,
            entries=[TimeEntryResponse.model_validate(r) for r in rows],
        )
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@router.post("/detach", response_model=InvoiceLinkResponse)
def detach_entries(
    payload: DetachRequest,
    user_id: str = Depends(require_auth),
):
    db = SessionLocal()
    try:
        rows = invoice_linkage.detach_from_draft_invoice(
            user_id,
            payload.invoice_id,
            invoice_status=payload.invoice_status,
            db=db,
        )
        db.commit()
        return InvoiceLinkResponse(
            invoice_id=payload.invoice_id,
            entries=[TimeEntryResponse.model_validate(r) for r in rows],
        )
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
