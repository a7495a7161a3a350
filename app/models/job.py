"""JobRequest SQLAlchemy model: full lifecycle entity, plus its photo/message dependents."""

import enum
import uuid
from datetime import UTC, date, datetime
from decimal import Decimal

from sqlalchemy import Date, DateTime, Enum, ForeignKey, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class JobStatus(enum.Enum):
    OPEN = "open"
    IN_NEGOTIATION = "in_negotiation"
    ACCEPTED = "accepted"
    IN_PROGRESS = "in_progress"
    PENDING_COMPLETION = "pending_completion"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class BookingType(enum.Enum):
    BID = "bid"  # providers send proposals, price locked on acceptance
    DIRECT = "direct"  # fixed catalog price, locked when payment clears


# Valid state transitions
VALID_TRANSITIONS: dict[JobStatus, set[JobStatus]] = {
    JobStatus.OPEN: {JobStatus.IN_NEGOTIATION, JobStatus.ACCEPTED},
    JobStatus.IN_NEGOTIATION: {JobStatus.ACCEPTED},
    JobStatus.ACCEPTED: {JobStatus.IN_PROGRESS},
    JobStatus.IN_PROGRESS: {
        JobStatus.PENDING_COMPLETION,
        JobStatus.COMPLETED,  # dispute resolved for provider / partial
        JobStatus.CANCELLED,  # dispute resolved for customer
    },
    JobStatus.PENDING_COMPLETION: {JobStatus.COMPLETED, JobStatus.IN_PROGRESS},
    JobStatus.COMPLETED: set(),
    JobStatus.CANCELLED: set(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in VALID_TRANSITIONS.items() if not targets)

VALID_PAYMENT_TRANSITIONS: dict[PaymentStatus, set[PaymentStatus]] = {
    PaymentStatus.PENDING: {PaymentStatus.PAID, PaymentStatus.FAILED},
    PaymentStatus.PAID: set(),
    PaymentStatus.FAILED: set(),
}


def _enum_column(enum_cls: type[enum.Enum]) -> Enum:
    return Enum(enum_cls, values_callable=lambda x: [e.value for e in x])


class JobRequest(Base):
    __tablename__ = "job_requests"

    job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    customer_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    accepted_provider_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, nullable=True, index=True
    )

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    location: Mapped[str] = mapped_column(String(300), nullable=False)
    parish: Mapped[str] = mapped_column(String(32), nullable=False)
    lawn_size: Mapped[str] = mapped_column(String(16), nullable=False, default="small")
    job_type: Mapped[str] = mapped_column(String(32), nullable=False, default="basic")
    preferred_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    preferred_time: Mapped[str | None] = mapped_column(String(50), nullable=True)
    customer_email: Mapped[str | None] = mapped_column(String(320), nullable=True)

    booking_type: Mapped[BookingType] = mapped_column(
        _enum_column(BookingType), nullable=False, default=BookingType.BID
    )
    base_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    customer_offer: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    final_price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    platform_fee: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    provider_payout: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)

    status: Mapped[JobStatus] = mapped_column(
        _enum_column(JobStatus), nullable=False, default=JobStatus.OPEN, index=True
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        _enum_column(PaymentStatus), nullable=False, default=PaymentStatus.PENDING
    )
    payment_reference: Mapped[str | None] = mapped_column(String(128), nullable=True)
    payment_confirmed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    provider_completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    @property
    def charge_amount(self) -> Decimal:
        """What the customer is billed: locked price, else their offer, else the catalog price."""
        return self.final_price or self.customer_offer or self.base_price


class JobPhoto(Base):
    """Customer-supplied photo of the lawn. Only the storage URL is kept here."""
    __tablename__ = "job_photos"

    photo_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("job_requests.job_id", ondelete="RESTRICT"), nullable=False, index=True
    )
    photo_url: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )


class CompletionPhoto(Base):
    """Provider's evidence that the work is done."""
    __tablename__ = "job_completion_photos"

    photo_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("job_requests.job_id", ondelete="RESTRICT"), nullable=False, index=True
    )
    provider_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    photo_url: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )


class Message(Base):
    __tablename__ = "messages"

    message_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("job_requests.job_id", ondelete="RESTRICT"), nullable=False, index=True
    )
    sender_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
