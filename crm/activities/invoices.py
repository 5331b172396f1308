"""Invoice numbers of the form INV/<year>/<MM>/<NNNN>, restarting every month."""
import logging
import threading
from collections import defaultdict
from datetime import datetime
from typing import Optional
import uuid

from sqlmodel import Session, select, col

from crm.database import utcnow
from crm.activities.models import ActivityType, LeadActivity
from crm.activities.schemas import InvoiceFields, InvoiceMeta, InvoiceStatus

logger = logging.getLogger(__name__)

# One lock per month prefix; allocation and insert happen while holding it.
_prefix_locks = defaultdict(threading.Lock)
_registry_lock = threading.Lock()

def invoice_prefix(now: datetime) -> str:
    return f"INV/{now.year}/{now.month:02d}/"

def _lock_for(prefix: str) -> threading.Lock:
    with _registry_lock:
        return _prefix_locks[prefix]

def _parse_sequence(title: str) -> Optional[int]:
    tail = title.rsplit("/", 1)[-1]
    try:
        return int(tail)
    except ValueError:
        return None

def next_invoice_number(session: Session, now: Optional[datetime] = None) -> str:
    prefix = invoice_prefix(now or utcnow())
    titles = session.exec(
        select(LeadActivity.title)
        .where(LeadActivity.type == ActivityType.INVOICE)
        .where(col(LeadActivity.title).startswith(prefix))
    ).all()

    sequences = [seq for seq in (_parse_sequence(title) for title in titles) if seq is not None]
    sequence = max(sequences) + 1 if sequences else 1
    return f"{prefix}{sequence:04d}"

def build_invoice_meta(fields: InvoiceFields, now: datetime) -> InvoiceMeta:
    data = fields.model_dump(exclude_none=True)
    data.setdefault("invoice_date", now)
    return InvoiceMeta(**data)

def create_invoice(
    session: Session,
    lead_id: uuid.UUID,
    created_by_id: uuid.UUID,
    fields: InvoiceFields,
    now: Optional[datetime] = None,
) -> LeadActivity:
    now = now or utcnow()
    meta = build_invoice_meta(fields, now)
    prefix = invoice_prefix(now)

    with _lock_for(prefix):
        number = next_invoice_number(session, now)
        invoice = LeadActivity(
            lead_id=lead_id,
            created_by_id=created_by_id,
            type=ActivityType.INVOICE,
            title=number,
            description="Invoice",
            meta=meta.model_dump(mode="json"),
            is_completed=meta.status == InvoiceStatus.PAID,
        )
        session.add(invoice)
        session.commit()

    session.refresh(invoice)
    logger.info("Invoice %s created for lead %s", number, lead_id)
    return invoice

def update_invoice(
    session: Session,
    invoice: LeadActivity,
    fields: InvoiceFields,
    title: Optional[str] = None,
) -> LeadActivity:
    merged = {**(invoice.meta or {}), **fields.model_dump(mode="json", exclude_unset=True, exclude_none=True)}
    meta = InvoiceMeta.model_validate(merged)

    if title:
        invoice.title = title
    # JSON columns only notice reassignment, not in-place edits
    invoice.meta = meta.model_dump(mode="json")
    invoice.is_completed = meta.status == InvoiceStatus.PAID
    invoice.updated_at = utcnow()
    session.add(invoice)
    session.commit()
    session.refresh(invoice)
    return invoice
