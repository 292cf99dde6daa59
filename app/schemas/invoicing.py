from datetime import date
from typing import Optional

from pydantic import BaseModel, Field

from app.schemas.time_entry import TimeEntryResponse


class AttachRequest(BaseModel):
    invoice_id: str = Field(min_length=1)
    entry_ids: list[str] = Field(min_length=1)


class DetachRequest(BaseModel):
    invoice_id: str = Field(min_length=1)
    invoice_status: str


class UninvoicedTotals(BaseModel):
    total_seconds: int
    earnings_cents: int
    formatted_total: str
    formatted_earnings: str


class UninvoicedResponse(BaseModel):
    project_id: Optional[str]
    date_from: Optional[date]
    date_to: Optional[date]
    entries: list[TimeEntryResponse]
    totals: UninvoicedTotals


class InvoiceLinkResponse(BaseModel):
    invoice_id: str
    entries: list[TimeEntryResponse]
