"""Completion disputes and their admin resolution.

Opening a dispute bounces a ``pending_completion`` job back to
``in_progress``. Resolution applies the ledger outcome, the job transition,
the refund and the audit entry in one transaction:

| resolution     | job          | ledger                          | refund          |
|----------------|--------------|---------------------------------|-----------------|
| favor_customer | cancelled    | fee 0, payout 0                 | full price      |
| favor_provider | completed    | payout 70%, fee the rest        | none            |
| partial        | completed    | payout p%, fee the rest         | price - payout  |
| dismiss        | unchanged    | unchanged                       | none            |
"""

import logging
import uuid
from datetime import UTC, datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import ConflictError, NotFoundError, RaceLossError
from app.models.dispute import Dispute, DisputePhoto, DisputeStatus
from app.models.job import JobStatus
from app.schemas.dispute import DisputeCreate, DisputeResolve
from app.services import job as job_service
from app.services.audit import record_audit
from app.services.ledger import Resolution, dispute_split
from app.services.notifications import notify
from app.services.refunds import enqueue_refund

logger = logging.getLogger(__name__)

_RESOLUTION_TARGET = {
    Resolution.FAVOR_CUSTOMER: JobStatus.CANCELLED,
    Resolution.FAVOR_PROVIDER: JobStatus.COMPLETED,
    Resolution.PARTIAL: JobStatus.COMPLETED,
}


async def _get_dispute(db: AsyncSession, dispute_id: uuid.UUID) -> Dispute:
    stmt = (
        select(Dispute)
        .where(Dispute.dispute_id == dispute_id)
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    dispute = result.scalar_one_or_none()
    if dispute is None:
        raise NotFoundError("Dispute not found")
    return dispute


async def get_dispute(db: AsyncSession, dispute_id: uuid.UUID) -> Dispute:
    return await _get_dispute(db, dispute_id)


async def get_open_dispute(db: AsyncSession, job_id: uuid.UUID) -> Dispute | None:
    result = await db.execute(
        select(Dispute).where(Dispute.job_id == job_id, Dispute.status == DisputeStatus.OPEN)
    )
    return result.scalar_one_or_none()


async def open_dispute(
    db: AsyncSession,
    job_id: uuid.UUID,
    customer_id: uuid.UUID,
    data: DisputeCreate,
) -> Dispute:
    """Customer rejects the provider's completion.

    Guard: job is ``pending_completion`` and has no open dispute. The job goes
    back to ``in_progress`` with ``provider_completed_at`` cleared.
    """
    job = await job_service.get_job(db, job_id)
    job_service.assert_customer(job, customer_id)
    if job.status != JobStatus.PENDING_COMPLETION:
        raise ConflictError(
            f"Only jobs pending completion can be disputed (status {job.status.value})"
        )
    if await get_open_dispute(db, job_id) is not None:
        raise ConflictError("This job already has an open dispute")

    dispute = Dispute(
        dispute_id=uuid.uuid4(),
        job_id=job_id,
        customer_id=customer_id,
        reason=data.reason,
        status=DisputeStatus.OPEN,
    )
    db.add(dispute)
    for url in data.photo_urls:
        db.add(DisputePhoto(photo_id=uuid.uuid4(), dispute_id=dispute.dispute_id, photo_url=url))

    try:
        await job_service.apply_transition(
            db, job, JobStatus.IN_PROGRESS, provider_completed_at=None,
        )
        await db.commit()
    except RaceLossError as exc:
        await db.rollback()
        current = await job_service.get_job(db, exc.job_id)
        raise ConflictError(
            f"Job is now {current.status.value}; {exc.guard} no longer holds"
        )

    await db.refresh(dispute)
    dispute_id = dispute.dispute_id
    logger.info("Dispute %s opened on job %s", dispute_id, job_id)

    if job.accepted_provider_id is not None:
        delivered = await notify(
            db, "job_disputed", job.accepted_provider_id, job_id, job.title,
            {"dispute_id": str(dispute_id), "reason": data.reason},
        )
        if delivered is None:
            dispute = await _get_dispute(db, dispute_id)
    return dispute


async def resolve_dispute(
    db: AsyncSession,
    dispute_id: uuid.UUID,
    admin_id: uuid.UUID,
    data: DisputeResolve,
) -> Dispute:
    """Admin resolves an open dispute. Deterministic given the resolution type."""
    dispute = await _get_dispute(db, dispute_id)
    if dispute.status != DisputeStatus.OPEN:
        raise ConflictError("Dispute already resolved")

    job = await job_service.get_job(db, dispute.job_id)
    if job.status != JobStatus.IN_PROGRESS:
        raise ConflictError(
            f"Disputed job must be in_progress to resolve (status {job.status.value})"
        )
    if job.final_price is None:
        raise ConflictError("Disputed job has no locked final price")

    resolution = data.resolution
    split = dispute_split(resolution, job.final_price, data.payout_percent)
    now = datetime.now(UTC)

    before = {
        "status": job.status.value,
        "final_price": str(job.final_price),
        "platform_fee": str(job.platform_fee) if job.platform_fee is not None else None,
        "provider_payout": str(job.provider_payout) if job.provider_payout is not None else None,
    }
    customer_id, provider_id, job_id, title = (
        job.customer_id, job.accepted_provider_id, job.job_id, job.title,
    )

    try:
        claimed = await db.execute(
            update(Dispute)
            .where(Dispute.dispute_id == dispute_id, Dispute.status == DisputeStatus.OPEN)
            .values(
                status=DisputeStatus.RESOLVED,
                resolution=resolution.value,
                payout_percent=data.payout_percent,
                admin_notes=data.admin_notes,
                resolved_by=admin_id,
                resolved_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount == 0:
            raise RaceLossError(job_id, "dispute status == open")

        after = dict(before)
        if split is not None:
            target = _RESOLUTION_TARGET[resolution]
            values = {
                "platform_fee": split.platform_fee,
                "provider_payout": split.provider_payout,
            }
            if target is JobStatus.COMPLETED:
                values["completed_at"] = now
            await job_service.apply_transition(db, job, target, **values)
            after.update(
                status=target.value,
                platform_fee=str(split.platform_fee),
                provider_payout=str(split.provider_payout),
                refund_amount=str(split.refund_amount),
            )
            if split.refund_amount > 0:
                enqueue_refund(
                    db, customer_id, job_id, split.refund_amount,
                    f"Dispute {dispute_id} resolved: {resolution.value}",
                )

        record_audit(
            db,
            actor_id=admin_id,
            action="resolve_dispute",
            entity_type="job_dispute",
            entity_id=dispute_id,
            details={
                "job_id": str(job_id),
                "resolution": resolution.value,
                "payout_percent": data.payout_percent,
                "admin_notes": data.admin_notes,
                "reason": dispute.reason,
                "before": before,
                "after": after,
            },
        )
        await db.commit()
    except RaceLossError as exc:
        await db.rollback()
        if exc.guard.startswith("dispute"):
            raise ConflictError("Dispute already resolved")
        raise ConflictError(f"Disputed job changed concurrently; {exc.guard} no longer holds")

    dispute = await _get_dispute(db, dispute_id)
    logger.info(
        "Dispute %s resolved by %s: %s (job %s)", dispute_id, admin_id, resolution.value, job_id,
    )

    extra = {"dispute_id": str(dispute_id), "resolution": resolution.value}
    if split is not None:
        extra["refund_amount"] = str(split.refund_amount)
        extra["provider_payout"] = str(split.provider_payout)
    delivered = True
    for recipient_id in (customer_id, provider_id):
        if recipient_id is not None:
            if await notify(db, "dispute_resolved", recipient_id, job_id, title, extra) is None:
                delivered = False
    if not delivered:
        dispute = await _get_dispute(db, dispute_id)
    return dispute

