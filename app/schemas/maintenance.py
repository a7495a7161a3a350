"""Response schemas for scheduled maintenance runs.

Field names are serialized in camelCase for the scheduler's existing parsers.
"""

import uuid
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.services.payouts import PayoutRunResult


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CleanupResponse(_CamelModel):
    success: bool
    message: str
    deleted_count: int
    deleted_job_ids: list[uuid.UUID] = Field(default_factory=list)


class AutoCompleteResponse(_CamelModel):
    success: bool
    completed_count: int
    completed_job_ids: list[uuid.UUID] = Field(default_factory=list)


class ProviderPayoutItem(_CamelModel):
    provider_id: uuid.UUID
    amount: Decimal
    jobs_count: int
    job_ids: list[uuid.UUID]


class PayoutRunResponse(_CamelModel):
    success: bool = True
    skipped: bool = False
    message: str
    total_amount: Decimal = Decimal("0")
    payouts: list[ProviderPayoutItem] = Field(default_factory=list)

    @classmethod
    def from_run(cls, run: PayoutRunResult) -> "PayoutRunResponse":
        return cls(
            skipped=run.skipped,
            message=run.message,
            total_amount=run.total_amount,
            payouts=[
                ProviderPayoutItem(
                    provider_id=p.provider_id,
                    amount=p.amount,
                    jobs_count=p.jobs_count,
                    job_ids=p.job_ids,
                )
                for p in run.payouts
            ],
        )
