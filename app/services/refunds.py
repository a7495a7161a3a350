"""Refund queue."""

import logging
import uuid
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import ValidationError
from app.models.audit import RefundRequest, RefundStatus

logger = logging.getLogger(__name__)


def enqueue_refund(
    db: AsyncSession,
    customer_id: uuid.UUID,
    job_id: uuid.UUID,
    amount: Decimal,
    reason: str,
) -> RefundRequest:
    """Queue a refund in the caller's transaction, so it commits with the ledger change."""
    if amount <= 0:
        raise ValidationError(f"Refund amount must be positive, got {amount}")

    refund = RefundRequest(
        refund_id=uuid.uuid4(),
        customer_id=customer_id,
        job_id=job_id,
        amount=amount,
        reason=reason,
        status=RefundStatus.PENDING,
    )
    db.add(refund)
    logger.info("Refund of %s queued for customer %s (job %s)", amount, customer_id, job_id)
    return refund
