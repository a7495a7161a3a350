"""Provider payout batches."""

import uuid
from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Integer, Numeric, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base, JSONType


class Payout(Base):
    """One payment run for one provider, covering ``job_ids``."""
    __tablename__ = "provider_payouts"

    payout_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    provider_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    job_ids: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    jobs_count: Mapped[int] = mapped_column(Integer, nullable=False)
    payout_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC), index=True
    )


class PayoutItem(Base):
    """Unique job_id here is what stops a completed job being paid twice."""
    __tablename__ = "provider_payout_items"

    job_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    payout_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("provider_payouts.payout_id", ondelete="RESTRICT"), nullable=False, index=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
