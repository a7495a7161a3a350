"""Create job_requests and its dependent tables.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _job_fk() -> sa.ForeignKey:
    return sa.ForeignKey("job_requests.job_id", ondelete="RESTRICT")


def upgrade() -> None:
    op.create_table(
        "job_requests",
        sa.Column("job_id", sa.Uuid(), primary_key=True),
        sa.Column("customer_id", sa.Uuid(), nullable=False),
        sa.Column("accepted_provider_id", sa.Uuid(), nullable=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("location", sa.String(300), nullable=False),
        sa.Column("parish", sa.String(32), nullable=False),
        sa.Column("lawn_size", sa.String(16), nullable=False, server_default="small"),
        sa.Column("job_type", sa.String(32), nullable=False, server_default="basic"),
        sa.Column("preferred_date", sa.Date(), nullable=True),
        sa.Column("preferred_time", sa.String(50), nullable=True),
        sa.Column("customer_email", sa.String(320), nullable=True),
        sa.Column(
            "booking_type",
            sa.Enum("bid", "direct", name="bookingtype"),
            nullable=False,
            server_default="bid",
        ),
        sa.Column("base_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("customer_offer", sa.Numeric(12, 2), nullable=True),
        sa.Column("final_price", sa.Numeric(12, 2), nullable=True),
        sa.Column("platform_fee", sa.Numeric(12, 2), nullable=True),
        sa.Column("provider_payout", sa.Numeric(12, 2), nullable=True),
        sa.Column(
            "status",
            sa.Enum(
                "open", "in_negotiation", "accepted", "in_progress",
                "pending_completion", "completed", "cancelled",
                name="jobstatus",
            ),
            nullable=False,
            server_default="open",
        ),
        sa.Column(
            "payment_status",
            sa.Enum("pending", "paid", "failed", name="paymentstatus"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("payment_reference", sa.String(128), nullable=True),
        sa.Column("payment_confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("provider_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "final_price IS NULL OR status = 'cancelled' "
            "OR platform_fee + provider_payout = final_price",
            name="ck_job_requests_ledger_balanced",
        ),
    )
    op.create_index("ix_job_requests_customer_id", "job_requests", ["customer_id"])
    op.create_index("ix_job_requests_accepted_provider_id", "job_requests", ["accepted_provider_id"])
    op.create_index("ix_job_requests_status", "job_requests", ["status"])
    op.create_index("ix_job_requests_completed_at", "job_requests", ["completed_at"])

    op.create_table(
        "job_photos",
        sa.Column("photo_id", sa.Uuid(), primary_key=True),
        sa.Column("job_id", sa.Uuid(), _job_fk(), nullable=False),
        sa.Column("photo_url", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_job_photos_job_id", "job_photos", ["job_id"])

    op.create_table(
        "job_completion_photos",
        sa.Column("photo_id", sa.Uuid(), primary_key=True),
        sa.Column("job_id", sa.Uuid(), _job_fk(), nullable=False),
        sa.Column("provider_id", sa.Uuid(), nullable=False),
        sa.Column("photo_url", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_job_completion_photos_job_id", "job_completion_photos", ["job_id"])

    op.create_table(
        "messages",
        sa.Column("message_id", sa.Uuid(), primary_key=True),
        sa.Column("job_id", sa.Uuid(), _job_fk(), nullable=False),
        sa.Column("sender_id", sa.Uuid(), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_messages_job_id", "messages", ["job_id"])

    op.create_table(
        "job_proposals",
        sa.Column("proposal_id", sa.Uuid(), primary_key=True),
        sa.Column("job_id", sa.Uuid(), _job_fk(), nullable=False),
        sa.Column("provider_id", sa.Uuid(), nullable=False),
        sa.Column("proposed_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("contact_email", sa.String(320), nullable=True),
        sa.Column(
            "status",
            sa.Enum("pending", "accepted", "rejected", name="proposalstatus"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_job_proposals_job_id", "job_proposals", ["job_id"])
    op.create_index("ix_job_proposals_provider_id", "job_proposals", ["provider_id"])
    op.create_index(
        "uq_job_proposals_one_accepted_per_job",
        "job_proposals",
        ["job_id"],
        unique=True,
        postgresql_where=sa.text("status = 'accepted'"),
    )

    op.create_table(
        "reviews",
        sa.Column("review_id", sa.Uuid(), primary_key=True),
        sa.Column("job_id", sa.Uuid(), _job_fk(), nullable=False),
        sa.Column("reviewer_id", sa.Uuid(), nullable=False),
        sa.Column("reviewee_id", sa.Uuid(), nullable=False),
        sa.Column("rating", sa.Integer(), nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("rating >= 1 AND rating <= 5", name="ck_reviews_rating"),
        sa.UniqueConstraint("job_id", "reviewer_id", name="uq_reviews_job_reviewer"),
    )


def downgrade() -> None:
    op.drop_table("reviews")
    op.drop_table("job_proposals")
    op.drop_table("messages")
    op.drop_table("job_completion_photos")
    op.drop_table("job_photos")
    op.drop_table("job_requests")
    op.execute("DROP TYPE IF EXISTS proposalstatus")
    op.execute("DROP TYPE IF EXISTS paymentstatus")
    op.execute("DROP TYPE IF EXISTS jobstatus")
    op.execute("DROP TYPE IF EXISTS bookingtype")
