"""Invoice persistence."""

import logging
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.invoice import Invoice

logger = logging.getLogger(__name__)


def invoice_number_for(job_id: uuid.UUID, paid_at: datetime) -> str:
    return f"INV-{paid_at:%Y%m%d}-{job_id.hex[:8].upper()}"


async def record_invoice(
    db: AsyncSession,
    job_id: uuid.UUID,
    customer_id: uuid.UUID,
    amount: Decimal,
    platform_fee: Decimal,
    transaction_ref: str,
    paid_at: datetime,
) -> Invoice:
    """Create the invoice for a job's successful payment.

    Idempotent per job: a second call returns the existing invoice untouched.
    The unique constraint on ``invoices.job_id`` backs this up under races.
    """
    result = await db.execute(select(Invoice).where(Invoice.job_id == job_id))
    existing = result.scalar_one_or_none()
    if existing is not None:
        logger.info("Invoice %s already exists for job %s", existing.invoice_number, job_id)
        return existing

    invoice = Invoice(
        invoice_id=uuid.uuid4(),
        invoice_number=invoice_number_for(job_id, paid_at),
        job_id=job_id,
        customer_id=customer_id,
        amount=amount,
        platform_fee=platform_fee,
        transaction_ref=transaction_ref,
        paid_at=paid_at,
    )
    db.add(invoice)
    await db.commit()
    await db.refresh(invoice)
    logger.info("Invoice %s recorded for job %s (%s)", invoice.invoice_number, job_id, amount)
    return invoice
