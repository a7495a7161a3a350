"""Admin dispute endpoints."""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.middleware import Actor, require_admin
from app.database import get_db
from app.schemas.dispute import DisputeResolve, DisputeResponse
from app.services import dispute as dispute_service

router = APIRouter(prefix="/disputes", tags=["disputes"])


@router.get("/{dispute_id}", response_model=DisputeResponse)
async def get_dispute(
    dispute_id: uuid.UUID,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> DisputeResponse:
    dispute = await dispute_service.get_dispute(db, dispute_id)
    return DisputeResponse.model_validate(dispute)


@router.post("/{dispute_id}/resolve", response_model=DisputeResponse)
async def resolve_dispute(
    dispute_id: uuid.UUID,
    data: DisputeResolve,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> DisputeResponse:
    """Resolve an open dispute.

    - **favor_customer**: job cancelled, full refund queued
    - **favor_provider**: job completed, provider keeps 70%
    - **partial**: job completed, provider keeps ``payout_percent`` (10-80), rest refunded
    - **dismiss**: dispute closed, job untouched
    """
    dispute = await dispute_service.resolve_dispute(db, dispute_id, actor.actor_id, data)
    return DisputeResponse.model_validate(dispute)
