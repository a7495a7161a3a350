"""Pydantic v2 schemas for Job lifecycle endpoints."""

import uuid
from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models.job import BookingType

PARISHES = (
    "Kingston",
    "St. Andrew",
    "St. Thomas",
    "Portland",
    "St. Mary",
    "St. Ann",
    "Trelawny",
    "St. James",
    "Hanover",
    "Westmoreland",
    "St. Elizabeth",
    "Manchester",
    "Clarendon",
    "St. Catherine",
)


class JobCreate(BaseModel):
    """Customer posts a lawn-care job.

    ``base_price`` is derived from ``lawn_size`` and ``job_type``. A ``bid``
    job may carry a ``customer_offer`` that providers see as a starting
    point; a ``direct`` booking is charged the catalog price as-is.
    """
    title: str = Field(..., min_length=1, max_length=200)
    description: str | None = Field(None, max_length=4096)
    location: str = Field(..., min_length=1, max_length=300)
    parish: str
    lawn_size: str = "small"
    job_type: str = "basic"
    preferred_date: date | None = None
    preferred_time: str | None = Field(None, max_length=50)
    customer_email: str | None = Field(None, max_length=320)
    booking_type: BookingType = BookingType.BID
    customer_offer: Decimal | None = Field(None, gt=0, max_digits=12, decimal_places=2)

    @field_validator("parish")
    @classmethod
    def validate_parish(cls, v: str) -> str:
        if v not in PARISHES:
            raise ValueError(f"Unknown parish {v!r}")
        return v

    @field_validator("customer_email")
    @classmethod
    def validate_email(cls, v: str | None) -> str | None:
        if v is not None and "@" not in v:
            raise ValueError("Invalid email address")
        return v


class CompleteJob(BaseModel):
    """Provider marks work complete with photo evidence."""
    photo_urls: list[str] = Field(..., min_length=1, max_length=20)


class JobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    job_id: uuid.UUID
    customer_id: uuid.UUID
    accepted_provider_id: uuid.UUID | None
    title: str
    description: str | None
    location: str
    parish: str
    lawn_size: str
    job_type: str
    preferred_date: date | None
    preferred_time: str | None
    booking_type: str
    base_price: Decimal
    customer_offer: Decimal | None
    final_price: Decimal | None
    platform_fee: Decimal | None
    provider_payout: Decimal | None
    status: str
    payment_status: str
    payment_reference: str | None
    payment_confirmed_at: datetime | None
    provider_completed_at: datetime | None
    completed_at: datetime | None
    created_at: datetime
    updated_at: datetime

    @field_validator("status", "payment_status", "booking_type", mode="before")
    @classmethod
    def serialize_enum(cls, v: object) -> str:
        if hasattr(v, "value"):
            return v.value
        return str(v)
