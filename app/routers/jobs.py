"""Job lifecycle endpoints."""

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.middleware import Actor, get_actor, require_customer, require_provider
from app.database import get_db
from app.schemas.dispute import DisputeCreate, DisputeResponse
from app.schemas.job import CompleteJob, JobCreate, JobResponse
from app.schemas.proposal import ProposalCreate, ProposalResponse
from app.services import dispute as dispute_service
from app.services import job as job_service
from app.services import proposal as proposal_service

router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.post("", response_model=JobResponse, status_code=201)
async def create_job(
    data: JobCreate,
    actor: Actor = Depends(require_customer),
    db: AsyncSession = Depends(get_db),
) -> JobResponse:
    """Customer posts a job. Payment starts ``pending``."""
    job = await job_service.create_job(db, actor.actor_id, data)
    return JobResponse.model_validate(job)


@router.get("", response_model=list[JobResponse])
async def list_jobs(
    parish: str | None = None,
    limit: int = Query(50, ge=1, le=200),
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> list[JobResponse]:
    """Browse paid jobs that are still taking proposals."""
    jobs = await job_service.list_open_jobs(db, parish=parish, limit=limit)
    return [JobResponse.model_validate(j) for j in jobs]


@router.get("/{job_id}", response_model=JobResponse)
async def get_job(
    job_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> JobResponse:
    job = await job_service.get_job(db, job_id)
    return JobResponse.model_validate(job)


@router.post("/{job_id}/proposals", response_model=ProposalResponse, status_code=201)
async def submit_proposal(
    job_id: uuid.UUID,
    data: ProposalCreate,
    actor: Actor = Depends(require_provider),
    db: AsyncSession = Depends(get_db),
) -> ProposalResponse:
    """Provider bids on a job."""
    proposal = await proposal_service.submit_proposal(db, job_id, actor.actor_id, data)
    return ProposalResponse.model_validate(proposal)


@router.get("/{job_id}/proposals", response_model=list[ProposalResponse])
async def list_proposals(
    job_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> list[ProposalResponse]:
    proposals = await proposal_service.list_proposals(db, job_id, actor.actor_id)
    return [ProposalResponse.model_validate(p) for p in proposals]


@router.post("/{job_id}/proposals/{proposal_id}/accept", response_model=JobResponse)
async def accept_proposal(
    job_id: uuid.UUID,
    proposal_id: uuid.UUID,
    actor: Actor = Depends(require_customer),
    db: AsyncSession = Depends(get_db),
) -> JobResponse:
    """Customer accepts a proposal; the price and fee split are locked."""
    job = await proposal_service.accept_proposal(db, job_id, proposal_id, actor.actor_id)
    return JobResponse.model_validate(job)


@router.post("/{job_id}/start", response_model=JobResponse)
async def start_job(
    job_id: uuid.UUID,
    actor: Actor = Depends(require_provider),
    db: AsyncSession = Depends(get_db),
) -> JobResponse:
    """Accepted provider starts work. Payment must be confirmed."""
    job = await job_service.start_job(db, job_id, actor.actor_id)
    return JobResponse.model_validate(job)


@router.post("/{job_id}/complete", response_model=JobResponse)
async def complete_job(
    job_id: uuid.UUID,
    data: CompleteJob,
    actor: Actor = Depends(require_provider),
    db: AsyncSession = Depends(get_db),
) -> JobResponse:
    """Provider marks the work complete with photo evidence."""
    job = await job_service.mark_provider_complete(db, job_id, actor.actor_id, data.photo_urls)
    return JobResponse.model_validate(job)


@router.post("/{job_id}/confirm", response_model=JobResponse)
async def confirm_completion(
    job_id: uuid.UUID,
    actor: Actor = Depends(require_customer),
    db: AsyncSession = Depends(get_db),
) -> JobResponse:
    """Customer confirms the work is done."""
    job = await job_service.confirm_completion(db, job_id, actor.actor_id)
    return JobResponse.model_validate(job)


@router.post("/{job_id}/dispute", response_model=DisputeResponse, status_code=201)
async def open_dispute(
    job_id: uuid.UUID,
    data: DisputeCreate,
    actor: Actor = Depends(require_customer),
    db: AsyncSession = Depends(get_db),
) -> DisputeResponse:
    """Customer rejects the completion; the job goes back to in_progress."""
    dispute = await dispute_service.open_dispute(db, job_id, actor.actor_id, data)
    return DisputeResponse.model_validate(dispute)
