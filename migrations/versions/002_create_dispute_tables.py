"""Create job_disputes and dispute evidence tables.

Revision ID: 002
Revises: 001
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "job_disputes",
        sa.Column("dispute_id", sa.Uuid(), primary_key=True),
        sa.Column(
            "job_id", sa.Uuid(),
            sa.ForeignKey("job_requests.job_id", ondelete="RESTRICT"), nullable=False,
        ),
        sa.Column("customer_id", sa.Uuid(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column(
            "status",
            sa.Enum("open", "resolved", name="disputestatus"),
            nullable=False,
            server_default="open",
        ),
        sa.Column("resolution", sa.String(32), nullable=True),
        sa.Column("payout_percent", sa.Integer(), nullable=True),
        sa.Column("admin_notes", sa.Text(), nullable=True),
        sa.Column("resolved_by", sa.Uuid(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_job_disputes_job_id", "job_disputes", ["job_id"])
    # At most one open dispute per job
    op.create_index(
        "uq_job_disputes_one_open_per_job",
        "job_disputes",
        ["job_id"],
        unique=True,
        postgresql_where=sa.text("status = 'open'"),
    )

    op.create_table(
        "dispute_photos",
        sa.Column("photo_id", sa.Uuid(), primary_key=True),
        sa.Column(
            "dispute_id", sa.Uuid(),
            sa.ForeignKey("job_disputes.dispute_id", ondelete="RESTRICT"), nullable=False,
        ),
        sa.Column("photo_url", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_dispute_photos_dispute_id", "dispute_photos", ["dispute_id"])

    op.create_table(
        "dispute_responses",
        sa.Column("response_id", sa.Uuid(), primary_key=True),
        sa.Column(
            "dispute_id", sa.Uuid(),
            sa.ForeignKey("job_disputes.dispute_id", ondelete="RESTRICT"), nullable=False,
        ),
        sa.Column("provider_id", sa.Uuid(), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_dispute_responses_dispute_id", "dispute_responses", ["dispute_id"])

    op.create_table(
        "dispute_response_photos",
        sa.Column("photo_id", sa.Uuid(), primary_key=True),
        sa.Column(
            "response_id", sa.Uuid(),
            sa.ForeignKey("dispute_responses.response_id", ondelete="RESTRICT"), nullable=False,
        ),
        sa.Column("photo_url", sa.Text(), nullable=False),
    )
    op.create_index(
        "ix_dispute_response_photos_response_id", "dispute_response_photos", ["response_id"],
    )


def downgrade() -> None:
    op.drop_table("dispute_response_photos")
    op.drop_table("dispute_responses")
    op.drop_table("dispute_photos")
    op.drop_table("job_disputes")
    op.execute("DROP TYPE IF EXISTS disputestatus")
