"""Job lifecycle state machine.

All status and payment-status changes go through ``apply_transition`` /
``_conditional_update``: a single UPDATE whose WHERE clause re-checks the
precondition that was validated on read. Ledger columns are written in the
same statement as the status, so neither can land without the other.
"""

import logging
import uuid
from datetime import UTC, datetime, timedelta

import redis.asyncio as aioredis
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.errors import ConflictError, NotFoundError, PermissionDeniedError, RaceLossError, ValidationError
from app.models.dispute import Dispute, DisputeStatus
from app.models.job import (
    TERMINAL_STATUSES,
    VALID_PAYMENT_TRANSITIONS,
    VALID_TRANSITIONS,
    BookingType,
    CompletionPhoto,
    JobRequest,
    JobStatus,
    PaymentStatus,
)
from app.redis import acquire_run_lock, release_run_lock
from app.schemas.job import JobCreate
from app.services.ledger import catalog_price, direct_pay_split
from app.services.notifications import notify

logger = logging.getLogger(__name__)

AUTO_COMPLETE_LOCK = "auto-complete"


def _assert_transition(current: JobStatus, target: JobStatus) -> None:
    """Raise 409 if the state transition is not valid."""
    if current in TERMINAL_STATUSES:
        raise ConflictError(f"Job is {current.value}; no further changes are allowed")
    if target not in VALID_TRANSITIONS.get(current, set()):
        raise ConflictError(f"Cannot transition from {current.value} to {target.value}")


def _assert_payment_transition(job: JobRequest, target: PaymentStatus) -> None:
    """Payment status settles once; anything but a pending payment means the race was lost."""
    if target not in VALID_PAYMENT_TRANSITIONS.get(job.payment_status, set()):
        raise RaceLossError(job.job_id, f"payment_status == {PaymentStatus.PENDING.value}")


def assert_customer(job: JobRequest, actor_id: uuid.UUID) -> None:
    if job.customer_id != actor_id:
        raise PermissionDeniedError("Only the customer who posted this job can perform this action")


def assert_accepted_provider(job: JobRequest, actor_id: uuid.UUID) -> None:
    if job.accepted_provider_id is None or job.accepted_provider_id != actor_id:
        raise PermissionDeniedError("Only the accepted provider can perform this action")


async def _get_job(db: AsyncSession, job_id: uuid.UUID) -> JobRequest:
    # Always overwrite the identity map: guarded UPDATEs bypass it.
    stmt = (
        select(JobRequest)
        .where(JobRequest.job_id == job_id)
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    job = result.scalar_one_or_none()
    if job is None:
        raise NotFoundError("Job not found")
    return job


async def _conditional_update(
    db: AsyncSession,
    job_id: uuid.UUID,
    guard: str,
    conditions: list,
    values: dict,
) -> None:
    """UPDATE job_requests ... WHERE job_id = :id AND <conditions>.

    Raises RaceLossError when no row matched, i.e. the precondition stopped
    holding between our read and this write. Does not commit.
    """
    stmt = (
        update(JobRequest)
        .where(JobRequest.job_id == job_id, *conditions)
        .values(**values, updated_at=datetime.now(UTC))
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    if result.rowcount == 0:
        raise RaceLossError(job_id, guard)


async def apply_transition(
    db: AsyncSession,
    job: JobRequest,
    target: JobStatus,
    *,
    require_payment: PaymentStatus | None = None,
    **values: object,
) -> None:
    """Move ``job`` from its current (observed) status to ``target``.

    Validates against VALID_TRANSITIONS, then writes ``status`` together with
    any extra ``values`` guarded on the observed status. Does not commit.
    """
    _assert_transition(job.status, target)
    conditions = [JobRequest.status == job.status]
    guard = f"status == {job.status.value}"
    if require_payment is not None:
        conditions.append(JobRequest.payment_status == require_payment)
        guard += f" and payment_status == {require_payment.value}"
    await _conditional_update(db, job.job_id, guard, conditions, {"status": target, **values})


async def settle_race(
    db: AsyncSession, exc: RaceLossError, target: JobStatus
) -> JobRequest:
    """Roll back after a lost race and decide what the caller sees.

    If the concurrent writer already moved the job to ``target`` the request
    is a duplicate and succeeds with the current job; otherwise the guard
    genuinely failed.
    """
    await db.rollback()
    job = await _get_job(db, exc.job_id)
    if job.status == target:
        logger.info("Job %s already %s, treating duplicate request as no-op", job.job_id, target.value)
        return job
    raise ConflictError(f"Job is now {job.status.value}; {exc.guard} no longer holds")


async def notify_parties(
    db: AsyncSession,
    job: JobRequest,
    notification_type: str,
    recipient_ids: list[uuid.UUID | None],
    extra: dict | None = None,
) -> JobRequest:
    """Notify each recipient about ``job`` after its transition committed.

    A failed notification rolls the session back, which expires ``job``; in
    that case the committed row is re-read so callers can keep using it.
    """
    job_id, title = job.job_id, job.title
    delivered = True
    for recipient_id in recipient_ids:
        if recipient_id is None:
            continue
        if await notify(db, notification_type, recipient_id, job_id, title, extra) is None:
            delivered = False
    if not delivered:
        job = await _get_job(db, job_id)
    return job


# ---------------------------------------------------------------------------
# Creation and reads
# ---------------------------------------------------------------------------

async def create_job(
    db: AsyncSession, customer_id: uuid.UUID, data: JobCreate
) -> JobRequest:
    """Customer posts a job. Starts ``open`` with payment ``pending``."""
    base_price = catalog_price(data.lawn_size, data.job_type)

    if data.preferred_date is not None and data.preferred_date < datetime.now(UTC).date():
        raise ValidationError("Preferred date cannot be in the past")

    if data.booking_type is BookingType.DIRECT and data.customer_offer is not None:
        raise ValidationError("Direct bookings are charged the catalog price; omit customer_offer")

    if data.customer_offer is not None and data.customer_offer < settings.minimum_job_price:
        raise ValidationError(f"Minimum offer is J${settings.minimum_job_price}")

    job = JobRequest(
        job_id=uuid.uuid4(),
        customer_id=customer_id,
        title=data.title,
        description=data.description,
        location=data.location,
        parish=data.parish,
        lawn_size=data.lawn_size,
        job_type=data.job_type,
        preferred_date=data.preferred_date,
        preferred_time=data.preferred_time,
        customer_email=data.customer_email,
        booking_type=data.booking_type,
        base_price=base_price,
        customer_offer=data.customer_offer,
        status=JobStatus.OPEN,
        payment_status=PaymentStatus.PENDING,
    )
    db.add(job)
    await db.commit()
    await db.refresh(job)
    logger.info("Job %s created by %s (base price %s)", job.job_id, customer_id, base_price)
    return job


async def get_job(db: AsyncSession, job_id: uuid.UUID) -> JobRequest:
    """Get job by ID."""
    return await _get_job(db, job_id)


async def list_open_jobs(
    db: AsyncSession, parish: str | None = None, limit: int = 50
) -> list[JobRequest]:
    """Paid jobs still taking proposals, newest first."""
    stmt = (
        select(JobRequest)
        .where(
            JobRequest.status.in_([JobStatus.OPEN, JobStatus.IN_NEGOTIATION]),
            JobRequest.payment_status == PaymentStatus.PAID,
        )
        .order_by(JobRequest.created_at.desc())
        .limit(limit)
    )
    if parish is not None:
        stmt = stmt.where(JobRequest.parish == parish)
    result = await db.execute(stmt)
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Payment transitions (driven by the webhook processor)
# ---------------------------------------------------------------------------

async def confirm_payment(
    db: AsyncSession,
    job_id: uuid.UUID,
    payment_reference: str,
    paid_at: datetime | None = None,
) -> JobRequest:
    """``pending -> paid``. Keeps status ``open``.

    Direct bookings lock their catalog price and direct-pay split here.
    Raises RaceLossError if the payment was settled concurrently.
    """
    job = await _get_job(db, job_id)
    _assert_payment_transition(job, PaymentStatus.PAID)

    values: dict = {
        "payment_status": PaymentStatus.PAID,
        "payment_reference": payment_reference,
        "payment_confirmed_at": paid_at or datetime.now(UTC),
    }
    if job.booking_type is BookingType.DIRECT and job.final_price is None:
        price = job.charge_amount
        split = direct_pay_split(price)
        values.update(
            final_price=price,
            platform_fee=split.platform_fee,
            provider_payout=split.provider_payout,
        )

    await _conditional_update(
        db, job_id, "payment_status == pending",
        [JobRequest.payment_status == PaymentStatus.PENDING],
        values,
    )
    await db.commit()
    await db.refresh(job)
    logger.info("Job %s payment confirmed (ref %s)", job_id, payment_reference)
    return job


async def fail_payment(db: AsyncSession, job_id: uuid.UUID) -> JobRequest:
    """``pending -> failed``. Nothing else on the job changes."""
    job = await _get_job(db, job_id)
    _assert_payment_transition(job, PaymentStatus.FAILED)

    await _conditional_update(
        db, job_id, "payment_status == pending",
        [JobRequest.payment_status == PaymentStatus.PENDING],
        {"payment_status": PaymentStatus.FAILED},
    )
    await db.commit()
    await db.refresh(job)
    logger.info("Job %s payment failed", job_id)
    return job


# ---------------------------------------------------------------------------
# Work lifecycle
# ---------------------------------------------------------------------------

async def start_job(
    db: AsyncSession, job_id: uuid.UUID, provider_id: uuid.UUID
) -> JobRequest:
    """Accepted provider begins work. Requires the job's payment to be ``paid``."""
    job = await _get_job(db, job_id)
    assert_accepted_provider(job, provider_id)
    _assert_transition(job.status, JobStatus.IN_PROGRESS)
    if job.payment_status != PaymentStatus.PAID:
        raise ConflictError(
            f"Payment must be confirmed before work starts, currently {job.payment_status.value}"
        )

    try:
        await apply_transition(db, job, JobStatus.IN_PROGRESS, require_payment=PaymentStatus.PAID)
        await db.commit()
    except RaceLossError as exc:
        return await settle_race(db, exc, JobStatus.IN_PROGRESS)

    await db.refresh(job)
    return await notify_parties(db, job, "job_started", [job.customer_id])


async def mark_provider_complete(
    db: AsyncSession,
    job_id: uuid.UUID,
    provider_id: uuid.UUID,
    photo_urls: list[str],
) -> JobRequest:
    """Provider marks the work done, with at least one completion photo.

    Re-submitting while a dispute is open resolves that dispute.
    """
    job = await _get_job(db, job_id)
    assert_accepted_provider(job, provider_id)
    _assert_transition(job.status, JobStatus.PENDING_COMPLETION)
    photo_urls = [u.strip() for u in photo_urls if u and u.strip()]
    if not photo_urls:
        raise ValidationError("At least one completion photo is required")

    now = datetime.now(UTC)
    try:
        for url in photo_urls:
            db.add(CompletionPhoto(
                photo_id=uuid.uuid4(), job_id=job_id, provider_id=provider_id, photo_url=url,
            ))

        resolved = await db.execute(
            update(Dispute)
            .where(Dispute.job_id == job_id, Dispute.status == DisputeStatus.OPEN)
            .values(status=DisputeStatus.RESOLVED, resolution="resubmitted", resolved_at=now)
            .execution_options(synchronize_session=False)
        )
        if resolved.rowcount:
            logger.info("Job %s resubmitted; open dispute closed", job_id)

        await apply_transition(
            db, job, JobStatus.PENDING_COMPLETION, provider_completed_at=now,
        )
        await db.commit()
    except RaceLossError as exc:
        return await settle_race(db, exc, JobStatus.PENDING_COMPLETION)

    await db.refresh(job)
    return await notify_parties(db, job, "job_pending_completion", [job.customer_id])


async def confirm_completion(
    db: AsyncSession, job_id: uuid.UUID, customer_id: uuid.UUID
) -> JobRequest:
    """Customer confirms the work. Terminal."""
    job = await _get_job(db, job_id)
    assert_customer(job, customer_id)
    _assert_transition(job.status, JobStatus.COMPLETED)
    if job.status != JobStatus.PENDING_COMPLETION:
        raise ConflictError(f"Job must be pending_completion to confirm, currently {job.status.value}")

    try:
        await apply_transition(db, job, JobStatus.COMPLETED, completed_at=datetime.now(UTC))
        await db.commit()
    except RaceLossError as exc:
        return await settle_race(db, exc, JobStatus.COMPLETED)

    await db.refresh(job)
    return await notify_parties(
        db, job, "job_completed", [job.accepted_provider_id],
        {"provider_payout": str(job.provider_payout)},
    )


async def auto_complete_stale_jobs(
    db: AsyncSession, now: datetime | None = None
) -> list[uuid.UUID]:
    """Complete jobs the customer left in ``pending_completion`` too long.

    Uses the same guarded transition as a customer confirmation; a job that
    moved in the meantime (confirmed, disputed) is skipped.
    """
    now = now or datetime.now(UTC)
    cutoff = now - timedelta(hours=settings.auto_complete_after_hours)

    result = await db.execute(
        select(JobRequest.job_id).where(
            JobRequest.status == JobStatus.PENDING_COMPLETION,
            JobRequest.provider_completed_at < cutoff,
        )
    )
    candidates = list(result.scalars().all())
    logger.info("Auto-complete: %d jobs pending completion before %s", len(candidates), cutoff)

    completed: list[uuid.UUID] = []
    for job_id in candidates:
        job = await _get_job(db, job_id)
        if job.status != JobStatus.PENDING_COMPLETION:
            continue
        try:
            await apply_transition(db, job, JobStatus.COMPLETED, completed_at=now)
            await db.commit()
        except RaceLossError:
            await db.rollback()
            logger.info("Job %s changed before auto-completion, skipping", job_id)
            continue

        await db.refresh(job)
        completed.append(job_id)
        logger.info("Auto-completed job %s (provider payout %s)", job_id, job.provider_payout)

        await notify_parties(
            db, job, "job_completed", [job.customer_id, job.accepted_provider_id],
            {"auto_completed": True, "provider_payout": str(job.provider_payout)},
        )

    return completed


async def run_auto_complete(
    db: AsyncSession, redis: aioredis.Redis, now: datetime | None = None
) -> list[uuid.UUID]:
    """``auto_complete_stale_jobs`` under the cluster-wide run lock."""
    token = await acquire_run_lock(redis, AUTO_COMPLETE_LOCK)
    try:
        return await auto_complete_stale_jobs(db, now)
    finally:
        await release_run_lock(redis, AUTO_COMPLETE_LOCK, token)
