"""Provider proposals and customer acceptance."""

import logging
import uuid

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.errors import ConflictError, NotFoundError, PermissionDeniedError, RaceLossError, ValidationError
from app.models.job import BookingType, JobRequest, JobStatus, PaymentStatus
from app.models.proposal import Proposal, ProposalStatus
from app.schemas.proposal import ProposalCreate
from app.services import job as job_service
from app.services.ledger import acceptance_split
from app.services.notifications import notify

logger = logging.getLogger(__name__)

BIDDING_STATUSES = (JobStatus.OPEN, JobStatus.IN_NEGOTIATION)


async def _get_proposal(db: AsyncSession, proposal_id: uuid.UUID) -> Proposal:
    stmt = (
        select(Proposal)
        .where(Proposal.proposal_id == proposal_id)
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    proposal = result.scalar_one_or_none()
    if proposal is None:
        raise NotFoundError("Proposal not found")
    return proposal


async def submit_proposal(
    db: AsyncSession,
    job_id: uuid.UUID,
    provider_id: uuid.UUID,
    data: ProposalCreate,
) -> Proposal:
    """Provider bids on a paid, open job. The first bid moves it to ``in_negotiation``."""
    job = await job_service.get_job(db, job_id)

    if job.customer_id == provider_id:
        raise PermissionDeniedError("Cannot submit a proposal on your own job")
    if job.status not in BIDDING_STATUSES:
        raise ConflictError(f"Job is not accepting proposals (status {job.status.value})")
    if job.payment_status != PaymentStatus.PAID:
        raise ConflictError("Job is not accepting proposals until payment is confirmed")
    if data.proposed_price < settings.minimum_job_price:
        raise ValidationError(f"Minimum price is J${settings.minimum_job_price}")

    existing = await db.execute(
        select(Proposal.proposal_id).where(
            Proposal.job_id == job_id,
            Proposal.provider_id == provider_id,
            Proposal.status == ProposalStatus.PENDING,
        )
    )
    if existing.scalar_one_or_none() is not None:
        raise ConflictError("You already have a pending proposal on this job")

    proposal = Proposal(
        proposal_id=uuid.uuid4(),
        job_id=job_id,
        provider_id=provider_id,
        proposed_price=data.proposed_price,
        message=data.message,
        contact_email=data.contact_email,
        status=ProposalStatus.PENDING,
    )
    db.add(proposal)

    try:
        if job.status == JobStatus.OPEN:
            await job_service.apply_transition(db, job, JobStatus.IN_NEGOTIATION)
        await db.commit()
    except RaceLossError:
        # Another bid already moved the job on; keep the proposal only if
        # the job is still taking bids.
        await db.rollback()
        job = await job_service.get_job(db, job_id)
        if job.status not in BIDDING_STATUSES:
            raise ConflictError(f"Job is not accepting proposals (status {job.status.value})")
        db.add(proposal)
        await db.commit()

    await db.refresh(proposal)
    proposal_id = proposal.proposal_id
    logger.info("Proposal %s on job %s by %s", proposal_id, job_id, provider_id)
    delivered = await notify(
        db, "new_proposal", job.customer_id, job_id, job.title,
        {"proposal_id": str(proposal_id), "proposed_price": str(proposal.proposed_price)},
    )
    if delivered is None:
        proposal = await _get_proposal(db, proposal_id)
    return proposal


async def list_proposals(
    db: AsyncSession, job_id: uuid.UUID, actor_id: uuid.UUID
) -> list[Proposal]:
    """Customer sees every proposal on their job; a provider sees only their own."""
    job = await job_service.get_job(db, job_id)
    stmt = select(Proposal).where(Proposal.job_id == job_id).order_by(Proposal.created_at)
    if job.customer_id != actor_id:
        stmt = stmt.where(Proposal.provider_id == actor_id)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def accept_proposal(
    db: AsyncSession,
    job_id: uuid.UUID,
    proposal_id: uuid.UUID,
    customer_id: uuid.UUID,
) -> JobRequest:
    """Customer accepts one proposal.

    In one transaction: lock ``final_price``, write the ledger split, set
    ``accepted``/``accepted_provider_id``, accept this proposal and reject
    every sibling. A direct booking keeps its already-locked catalog price;
    the platform takes its acceptance fee from that price here.
    """
    job = await job_service.get_job(db, job_id)
    job_service.assert_customer(job, customer_id)
    proposal = await _get_proposal(db, proposal_id)
    if proposal.job_id != job_id:
        raise NotFoundError("Proposal not found")
    if proposal.status != ProposalStatus.PENDING:
        raise ConflictError(f"Proposal is {proposal.status.value}, not pending")
    if job.status not in BIDDING_STATUSES:
        raise ConflictError(f"Job is not accepting proposals (status {job.status.value})")

    provider_id = proposal.provider_id
    sibling_rows = await db.execute(
        select(Proposal.provider_id).where(
            Proposal.job_id == job_id,
            Proposal.proposal_id != proposal_id,
            Proposal.status == ProposalStatus.PENDING,
        )
    )
    sibling_providers = list(sibling_rows.scalars().all())

    if job.booking_type is BookingType.DIRECT and job.final_price is not None:
        final_price = job.final_price
    else:
        final_price = proposal.proposed_price
    split = acceptance_split(final_price)

    try:
        await job_service.apply_transition(
            db, job, JobStatus.ACCEPTED,
            accepted_provider_id=provider_id,
            final_price=final_price,
            platform_fee=split.platform_fee,
            provider_payout=split.provider_payout,
        )
        accepted = await db.execute(
            update(Proposal)
            .where(Proposal.proposal_id == proposal_id, Proposal.status == ProposalStatus.PENDING)
            .values(status=ProposalStatus.ACCEPTED)
            .execution_options(synchronize_session=False)
        )
        if accepted.rowcount == 0:
            raise RaceLossError(job_id, "proposal status == pending")
        await db.execute(
            update(Proposal)
            .where(
                Proposal.job_id == job_id,
                Proposal.proposal_id != proposal_id,
                Proposal.status == ProposalStatus.PENDING,
            )
            .values(status=ProposalStatus.REJECTED)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
    except RaceLossError as exc:
        job = await job_service.settle_race(db, exc, JobStatus.ACCEPTED)
        if job.accepted_provider_id != provider_id:
            raise ConflictError("Another proposal was accepted for this job")
        return job

    await db.refresh(job)
    logger.info(
        "Job %s accepted: provider %s at %s (fee %s, payout %s)",
        job_id, provider_id, final_price, split.platform_fee, split.provider_payout,
    )

    job = await job_service.notify_parties(
        db, job, "proposal_accepted", [provider_id],
        {"final_price": str(final_price), "provider_payout": str(split.provider_payout)},
    )
    return await job_service.notify_parties(db, job, "proposal_rejected", sibling_providers)
