"""
Boundary between time tracking and invoicing.

The invoicing subsystem only reads totals everywhere else; this module is the
one place allowed to write invoice links onto entries, and it always does so
together with the lock, in a single transaction.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Iterable, Optional

from sqlalchemy.orm import Session

from app.database import SessionLocal
from app.models.time_entry import LOCK_REASON_INVOICED, TimeEntry
from app.services.clock import day_bounds_utc, to_utc_naive, utcnow
from app.services.errors import StateConflict, ValidationRejected
from app.services.time_engine import entries_by_ids, lock_entry, unlock_entry
from app.services.time_reporting import earnings_cents, format_currency, format_duration

logger = logging.getLogger(__name__)

INVOICE_STATUS_DRAFT = "draft"


def _billable_query(
    db: Session,
    user_id: str,
    project_id: Optional[str],
    date_from: Optional[date],
    date_to: Optional[date],
    tz_name: str,
):
    q = db.query(TimeEntry).filter(
        TimeEntry.user_id == str(user_id),
        TimeEntry.billable.is_(True),
        TimeEntry.invoice_id.is_(None),
        TimeEntry.locked_at.is_(None),
        TimeEntry.end_time.isnot(None),
    )
    if project_id is not None:
        q = q.filter(TimeEntry.project_id == str(project_id))
    if date_from is not None:
        q = q.filter(TimeEntry.start_time >= day_bounds_utc(date_from, tz_name)[0])
    if date_to is not None:
        q = q.filter(TimeEntry.start_time < day_bounds_utc(date_to, tz_name)[1])
    return q


def select_billable_entries(
    user_id: str,
    *,
    project_id: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    tz_name: str = "UTC",
    db: Optional[Session] = None,
) -> list[TimeEntry]:
    """Completed, billable entries not yet on an invoice and not locked."""
    owns_db = db is None
    if owns_db:
        db = SessionLocal()

    try:
        return (
            _billable_query(db, user_id, project_id, date_from, date_to, tz_name)
            .order_by(TimeEntry.start_time.desc())
            .all()
        )
    finally:
        if owns_db:
            db.close()


def uninvoiced_summary(
    user_id: str,
    *,
    project_id: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    tz_name: str = "UTC",
    currency: str = "USD",
    db: Optional[Session] = None,
) -> dict[str, Any]:
    entries = select_billable_entries(
        user_id,
        project_id=project_id,
        date_from=date_from,
        date_to=date_to,
        tz_name=tz_name,
        db=db,
    )
    total_seconds = sum(int(e.duration or 0) for e in entries)
    total_earnings = earnings_cents(entries)
    return {
        "entries": entries,
        "totals": {
            "total_seconds": total_seconds,
            "earnings_cents": total_earnings,
            "formatted_total": format_duration(total_seconds),
            "formatted_earnings": format_currency(total_earnings, currency),
        },
    }


def attach_to_invoice(
    user_id: str,
    entry_ids: Iterable[str],
    invoice_id: str,
    *,
    now: Optional[datetime] = None,
    db: Optional[Session] = None,
) -> list[TimeEntry]:
    """
    All-or-nothing: every entry gets the invoice link and an "invoiced" lock, or
    none does. Any entry that is foreign, running, non-billable, locked or
    already attached fails the whole batch before anything is written.

    If db is provided, this function will NOT commit/close. Caller owns the transaction.
    If db is None, this function manages its own session + commit.
    """
    ids = list(dict.fromkeys(str(i) for i in entry_ids))
    if not ids:
        raise ValidationRejected("No time entries selected")
    if not invoice_id:
        raise ValidationRejected("invoice_id is required")

    owns_db = db is None
    if owns_db:
        db = SessionLocal()

    now = to_utc_naive(now) if now is not None else utcnow()

    try:
        rows = entries_by_ids(db, ids)
        by_id = {r.id: r for r in rows if r.user_id == str(user_id)}
        missing = [i for i in ids if i not in by_id]
        if missing:
            raise ValidationRejected(f"{len(missing)} entries not found or access denied")

        for entry in by_id.values():
            if entry.end_time is None:
                raise StateConflict("A running timer cannot be invoiced", reason="timer_running")
            if not entry.billable:
                raise ValidationRejected("Non-billable entries cannot be invoiced", reason="not_billable")
            if entry.locked_at is not None:
                raise StateConflict("Some entries are already locked", reason="already_locked")
            if entry.invoice_id is not None:
                raise StateConflict("Some entries are already invoiced", reason="entry_invoiced")

        attached = []
        for entry_id in ids:
            entry = by_id[entry_id]
            entry.invoice_id = str(invoice_id)
            lock_entry(entry.id, LOCK_REASON_INVOICED, now=now, db=db)
            attached.append(entry)

        db.flush()

        if owns_db:
            db.commit()

        logger.info(
            "Time entries attached to invoice",
            extra={"user_id": str(user_id), "invoice_id": str(invoice_id), "count": len(attached)},
        )
        return attached
    except Exception:
        if owns_db:
            db.rollback()
        raise
    finally:
        if owns_db:
            db.close()


def detach_from_draft_invoice(
    user_id: str,
    invoice_id: str,
    *,
    invoice_status: str,
    now: Optional[datetime] = None,
    db: Optional[Session] = None,
) -> list[TimeEntry]:
    """Release every entry of an invoice that is deleted before it was ever sent."""
    if str(invoice_status).lower() != INVOICE_STATUS_DRAFT:
        raise StateConflict("Only draft invoices can release their time entries", reason="invoice_not_draft")

    owns_db = db is None
    if owns_db:
        db = SessionLocal()

    now = to_utc_naive(now) if now is not None else utcnow()

    try:
        rows = (
            db.query(TimeEntry)
            .filter(
                TimeEntry.user_id == str(user_id),
                TimeEntry.invoice_id == str(invoice_id),
            )
            .with_for_update()
            .all()
        )

        released = [unlock_entry(r.id, invoice_status=invoice_status, now=now, db=db) for r in rows]
        db.flush()

        if owns_db:
            db.commit()

        logger.info(
            "Time entries detached from draft invoice",
            extra={"user_id": str(user_id), "invoice_id": str(invoice_id), "count": len(released)},
        )
        return released
    except Exception:
        if owns_db:
            db.rollback()
        raise
    finally:
        if owns_db:
            db.close()
