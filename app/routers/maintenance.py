"""Scheduled maintenance endpoints, called by the external scheduler with the service key."""

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.middleware import verify_service_key
from app.database import get_db
from app.redis import get_redis
from app.schemas.maintenance import AutoCompleteResponse, CleanupResponse, PayoutRunResponse
from app.services import job as job_service
from app.services.payouts import run_provider_payouts
from app.services.retention import purge_completed_jobs

router = APIRouter(
    prefix="/maintenance",
    tags=["maintenance"],
    dependencies=[Depends(verify_service_key)],
)


@router.post("/cleanup-old-jobs", response_model=CleanupResponse)
async def cleanup_old_jobs(
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
) -> CleanupResponse:
    """Delete completed jobs past the retention window. Invoices are kept."""
    result = await purge_completed_jobs(db, redis)
    if result.deleted_count:
        message = f"Deleted {result.deleted_count} completed jobs"
    else:
        message = "No old completed jobs to delete"
    return CleanupResponse(
        success=True,
        message=message,
        deleted_count=result.deleted_count,
        deleted_job_ids=result.deleted_job_ids,
    )


@router.post("/auto-complete-jobs", response_model=AutoCompleteResponse)
async def auto_complete_jobs(
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
) -> AutoCompleteResponse:
    """Complete jobs left in pending_completion past the confirmation window."""
    completed = await job_service.run_auto_complete(db, redis)
    return AutoCompleteResponse(success=True, completed_count=len(completed), completed_job_ids=completed)


@router.post("/provider-payouts", response_model=PayoutRunResponse)
async def provider_payouts(
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
) -> PayoutRunResponse:
    """Biweekly payout run."""
    run = await run_provider_payouts(db, redis)
    return PayoutRunResponse.from_run(run)
