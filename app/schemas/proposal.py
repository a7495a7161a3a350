"""Pydantic v2 schemas for provider proposals."""

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ProposalCreate(BaseModel):
    proposed_price: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    message: str | None = Field(None, max_length=2048)
    contact_email: str | None = Field(None, max_length=320)

    @field_validator("proposed_price")
    @classmethod
    def validate_price(cls, v: Decimal) -> Decimal:
        if v > Decimal("10000000"):
            raise ValueError("Maximum price is J$10,000,000")
        return v

    @field_validator("contact_email")
    @classmethod
    def validate_email(cls, v: str | None) -> str | None:
        if v is not None and "@" not in v:
            raise ValueError("Invalid email address")
        return v


class ProposalResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    proposal_id: uuid.UUID
    job_id: uuid.UUID
    provider_id: uuid.UUID
    proposed_price: Decimal
    message: str | None
    status: str
    created_at: datetime

    @field_validator("status", mode="before")
    @classmethod
    def serialize_status(cls, v: object) -> str:
        if hasattr(v, "value"):
            return v.value
        return str(v)
