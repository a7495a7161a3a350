"""Pydantic v2 schemas for completion disputes."""

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.services.ledger import Resolution


class DisputeCreate(BaseModel):
    """Customer rejects a completion."""
    reason: str = Field(..., min_length=1, max_length=4096)
    photo_urls: list[str] = Field(default_factory=list, max_length=20)


class DisputeResolve(BaseModel):
    """Admin resolution. ``payout_percent`` is the provider's share and only
    applies to ``partial``; range checks happen in the ledger."""
    resolution: Resolution
    payout_percent: int | None = None
    admin_notes: str | None = Field(None, max_length=4096)

    @model_validator(mode="after")
    def percent_only_for_partial(self) -> "DisputeResolve":
        if self.resolution is not Resolution.PARTIAL:
            self.payout_percent = None
        return self


class DisputeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    dispute_id: uuid.UUID
    job_id: uuid.UUID
    customer_id: uuid.UUID
    reason: str
    status: str
    resolution: str | None
    payout_percent: int | None
    admin_notes: str | None
    resolved_by: uuid.UUID | None
    created_at: datetime
    resolved_at: datetime | None

    @field_validator("status", mode="before")
    @classmethod
    def serialize_status(cls, v: object) -> str:
        if hasattr(v, "value"):
            return v.value
        return str(v)
