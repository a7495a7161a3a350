"""Retention sweep for completed jobs.

Completed jobs older than ``settings.retention_days`` (measured from
``completed_at``) are deleted together with their operational rows.
Financial records (invoices, payouts, refunds, audit entries) reference jobs
by id only and are left alone.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

import redis.asyncio as aioredis
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.dispute import Dispute, DisputePhoto, DisputeResponse, DisputeResponsePhoto
from app.models.job import CompletionPhoto, JobPhoto, JobRequest, JobStatus, Message
from app.models.proposal import Proposal
from app.models.review import Review
from app.redis import acquire_run_lock, release_run_lock

logger = logging.getLogger(__name__)

LOCK_NAME = "retention-sweep"


@dataclass
class PurgeResult:
    deleted_count: int = 0
    deleted_job_ids: list[uuid.UUID] = field(default_factory=list)


async def find_expired_jobs(db: AsyncSession, now: datetime) -> list[uuid.UUID]:
    cutoff = now - timedelta(days=settings.retention_days)
    result = await db.execute(
        select(JobRequest.job_id).where(
            JobRequest.status == JobStatus.COMPLETED,
            JobRequest.completed_at.is_not(None),
            JobRequest.completed_at < cutoff,
        )
    )
    return list(result.scalars().all())


async def _delete_jobs(db: AsyncSession, job_ids: list[uuid.UUID]) -> None:
    """Delete jobs and their dependents children-first. Does not commit."""
    dispute_ids = select(Dispute.dispute_id).where(Dispute.job_id.in_(job_ids))
    response_ids = select(DisputeResponse.response_id).where(
        DisputeResponse.dispute_id.in_(dispute_ids)
    )

    for stmt in (
        delete(CompletionPhoto).where(CompletionPhoto.job_id.in_(job_ids)),
        delete(JobPhoto).where(JobPhoto.job_id.in_(job_ids)),
        delete(Message).where(Message.job_id.in_(job_ids)),
        delete(Proposal).where(Proposal.job_id.in_(job_ids)),
        delete(Review).where(Review.job_id.in_(job_ids)),
        delete(DisputeResponsePhoto).where(DisputeResponsePhoto.response_id.in_(response_ids)),
        delete(DisputeResponse).where(DisputeResponse.dispute_id.in_(dispute_ids)),
        delete(DisputePhoto).where(DisputePhoto.dispute_id.in_(dispute_ids)),
        delete(Dispute).where(Dispute.job_id.in_(job_ids)),
        delete(JobRequest).where(
            JobRequest.job_id.in_(job_ids),
            JobRequest.status == JobStatus.COMPLETED,
        ),
    ):
        await db.execute(stmt.execution_options(synchronize_session=False))


async def purge_completed_jobs(
    db: AsyncSession,
    redis: aioredis.Redis,
    now: datetime | None = None,
) -> PurgeResult:
    """Run one sweep. Raises ConflictError if another sweep holds the lock."""
    now = now or datetime.now(UTC)
    token = await acquire_run_lock(redis, LOCK_NAME)
    try:
        job_ids = await find_expired_jobs(db, now)
        logger.info(
            "Retention sweep: %d completed jobs older than %d days",
            len(job_ids), settings.retention_days,
        )
        if not job_ids:
            return PurgeResult()

        try:
            await _delete_jobs(db, job_ids)
            await db.commit()
        except Exception:
            await db.rollback()
            logger.exception("Retention sweep failed; no jobs deleted")
            raise

        logger.info("Retention sweep deleted %d jobs", len(job_ids))
        return PurgeResult(deleted_count=len(job_ids), deleted_job_ids=job_ids)
    finally:
        await release_run_lock(redis, LOCK_NAME, token)
