"""Biweekly provider payout runs.

A run pays every provider the ``provider_payout`` of their completed jobs
that are not in any earlier payout. ``provider_payout_items.job_id`` is the
primary key, so a job can be paid at most once even if two runs overlap.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import redis.asyncio as aioredis
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.job import JobRequest, JobStatus
from app.models.payout import Payout, PayoutItem
from app.models.proposal import Proposal, ProposalStatus
from app.redis import acquire_run_lock, release_run_lock
from app.services.email import send_payout_summary
from app.services.ledger import ZERO, to_cents
from app.services.notifications import notify

logger = logging.getLogger(__name__)

LOCK_NAME = "provider-payouts"


@dataclass
class ProviderPayoutSummary:
    provider_id: uuid.UUID
    amount: Decimal = ZERO
    items: list[tuple[uuid.UUID, Decimal]] = field(default_factory=list)

    @property
    def job_ids(self) -> list[uuid.UUID]:
        return [job_id for job_id, _ in self.items]

    @property
    def jobs_count(self) -> int:
        return len(self.items)


@dataclass
class PayoutRunResult:
    skipped: bool = False
    message: str = ""
    payouts: list[ProviderPayoutSummary] = field(default_factory=list)

    @property
    def total_amount(self) -> Decimal:
        return sum((p.amount for p in self.payouts), ZERO)


async def _recent_payout_exists(db: AsyncSession, now: datetime) -> bool:
    since = now - timedelta(days=settings.payout_interval_days)
    result = await db.execute(
        select(Payout.payout_id).where(Payout.payout_date > since).limit(1)
    )
    return result.scalar_one_or_none() is not None


async def provider_contact_email(db: AsyncSession, provider_id: uuid.UUID) -> str | None:
    """Email from the provider's most recent accepted proposal that carried one."""
    result = await db.execute(
        select(Proposal.contact_email)
        .where(
            Proposal.provider_id == provider_id,
            Proposal.status == ProposalStatus.ACCEPTED,
            Proposal.contact_email.is_not(None),
        )
        .order_by(Proposal.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def collect_unpaid_earnings(db: AsyncSession) -> dict[uuid.UUID, ProviderPayoutSummary]:
    """Group completed, not-yet-paid jobs by provider."""
    paid = select(PayoutItem.job_id)
    result = await db.execute(
        select(
            JobRequest.job_id,
            JobRequest.accepted_provider_id,
            JobRequest.provider_payout,
            JobRequest.final_price,
        )
        .where(
            JobRequest.status == JobStatus.COMPLETED,
            JobRequest.accepted_provider_id.is_not(None),
            JobRequest.completed_at.is_not(None),
            JobRequest.job_id.not_in(paid),
        )
        .order_by(JobRequest.completed_at)
    )

    earnings: dict[uuid.UUID, ProviderPayoutSummary] = {}
    for job_id, provider_id, provider_payout, final_price in result.all():
        amount = provider_payout if provider_payout is not None else (final_price or ZERO)
        summary = earnings.setdefault(provider_id, ProviderPayoutSummary(provider_id=provider_id))
        summary.amount = to_cents(summary.amount + amount)
        summary.items.append((job_id, amount))
    return earnings


async def run_provider_payouts(
    db: AsyncSession,
    redis: aioredis.Redis,
    now: datetime | None = None,
) -> PayoutRunResult:
    """Create one payout per provider with unpaid earnings.

    Skipped when the previous run is younger than ``payout_interval_days``.
    Raises ConflictError if another run holds the lock.
    """
    now = now or datetime.now(UTC)
    token = await acquire_run_lock(redis, LOCK_NAME)
    try:
        if await _recent_payout_exists(db, now):
            message = f"Skipped - last payout was less than {settings.payout_interval_days} days ago"
            logger.info(message)
            return PayoutRunResult(skipped=True, message=message)

        earnings = await collect_unpaid_earnings(db)
        logger.info("Payout run: %d providers with unpaid jobs", len(earnings))

        run = PayoutRunResult(message="No unpaid earnings")
        for summary in earnings.values():
            if summary.amount <= 0:
                logger.info("Provider %s has nothing to pay out, skipping", summary.provider_id)
                continue

            payout_id = uuid.uuid4()
            db.add(Payout(
                payout_id=payout_id,
                provider_id=summary.provider_id,
                job_ids=[str(job_id) for job_id in summary.job_ids],
                amount=summary.amount,
                jobs_count=summary.jobs_count,
                payout_date=now,
            ))
            await db.flush()
            for job_id, amount in summary.items:
                db.add(PayoutItem(job_id=job_id, payout_id=payout_id, amount=amount))
            run.payouts.append(summary)

        if run.payouts:
            try:
                await db.commit()
            except Exception:
                await db.rollback()
                logger.exception("Payout run failed; nothing was recorded")
                raise
            run.message = f"Processed {len(run.payouts)} provider payouts"
            logger.info("%s totalling %s", run.message, run.total_amount)

        for summary in run.payouts:
            await notify(
                db, "payout_processed", summary.provider_id, None, None,
                {"amount": str(summary.amount), "jobs_count": summary.jobs_count},
            )
            try:
                email = await provider_contact_email(db, summary.provider_id)
                await send_payout_summary(email, summary.amount, summary.jobs_count, now)
            except Exception:
                logger.exception("Payout email for provider %s failed", summary.provider_id)
        return run
    finally:
        await release_run_lock(redis, LOCK_NAME, token)
