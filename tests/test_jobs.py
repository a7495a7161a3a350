"""Tests for the job lifecycle, proposals and acceptance."""

import uuid
from datetime import date, timedelta
from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import ConflictError, RaceLossError
from app.models.job import TERMINAL_STATUSES, VALID_TRANSITIONS, JobRequest, JobStatus, PaymentStatus
from app.models.notification import Notification
from app.models.proposal import Proposal, ProposalStatus
from app.services import job as job_service
from tests.conftest import (
    count_rows,
    create_accepted_job,
    create_completed_job,
    create_job,
    create_paid_job,
    create_pending_completion_job,
    customer,
    load_job,
    make_job_data,
    provider,
    submit_proposal,
)


@pytest.mark.asyncio
async def test_create_job_starts_open_and_unpaid(client: AsyncClient) -> None:
    customer_id = uuid.uuid4()
    job = await create_job(client, customer_id, lawn_size="medium", job_type="overgrown")
    assert job["status"] == "open"
    assert job["payment_status"] == "pending"
    assert job["booking_type"] == "bid"
    assert Decimal(job["base_price"]) == Decimal("10000")
    assert job["final_price"] is None
    assert job["customer_id"] == str(customer_id)


@pytest.mark.asyncio
async def test_create_job_requires_customer_role(client: AsyncClient) -> None:
    resp = await client.post("/jobs", json=make_job_data(), headers=provider(uuid.uuid4()))
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_create_job_without_identity_rejected(client: AsyncClient) -> None:
    resp = await client.post("/jobs", json=make_job_data())
    assert resp.status_code == 403
    assert resp.json()["detail"] == "Missing authentication headers"


@pytest.mark.asyncio
async def test_create_job_rejects_unknown_parish(client: AsyncClient) -> None:
    resp = await client.post(
        "/jobs", json=make_job_data(parish="Atlantis"), headers=customer(uuid.uuid4()),
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_create_job_rejects_past_date(client: AsyncClient) -> None:
    yesterday = (date.today() - timedelta(days=2)).isoformat()
    resp = await client.post(
        "/jobs", json=make_job_data(preferred_date=yesterday), headers=customer(uuid.uuid4()),
    )
    assert resp.status_code == 422
    assert "past" in resp.json()["detail"]


@pytest.mark.asyncio
async def test_create_job_rejects_low_offer(client: AsyncClient) -> None:
    resp = await client.post(
        "/jobs", json=make_job_data(customer_offer="5000.00"), headers=customer(uuid.uuid4()),
    )
    assert resp.status_code == 422
    assert "Minimum offer" in resp.json()["detail"]


@pytest.mark.asyncio
async def test_direct_booking_rejects_offer(client: AsyncClient) -> None:
    resp = await client.post(
        "/jobs",
        json=make_job_data(booking_type="direct", customer_offer="9000.00"),
        headers=customer(uuid.uuid4()),
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_get_unknown_job_404(client: AsyncClient) -> None:
    resp = await client.get(f"/jobs/{uuid.uuid4()}", headers=customer(uuid.uuid4()))
    assert resp.status_code == 404
    assert resp.json()["detail"] == "Job not found"


@pytest.mark.asyncio
async def test_list_jobs_shows_only_paid_open_jobs(client: AsyncClient) -> None:
    customer_id = uuid.uuid4()
    unpaid = await create_job(client, customer_id)
    paid = await create_paid_job(client, customer_id, parish="Kingston")

    resp = await client.get("/jobs", headers=provider(uuid.uuid4()))
    assert resp.status_code == 200
    ids = [j["job_id"] for j in resp.json()]
    assert paid["job_id"] in ids
    assert unpaid["job_id"] not in ids

    resp = await client.get("/jobs", params={"parish": "Portland"}, headers=provider(uuid.uuid4()))
    assert resp.json() == []


# ---------------------------------------------------------------------------
# Proposals
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_proposal_requires_paid_job(client: AsyncClient) -> None:
    job = await create_job(client, uuid.uuid4())
    resp = await client.post(
        f"/jobs/{job['job_id']}/proposals",
        json={"proposed_price": "9000.00"},
        headers=provider(uuid.uuid4()),
    )
    assert resp.status_code == 409
    assert "payment" in resp.json()["detail"]


@pytest.mark.asyncio
async def test_first_proposal_moves_job_to_negotiation(
    client: AsyncClient, db_session: AsyncSession,
) -> None:
    customer_id = uuid.uuid4()
    job = await create_paid_job(client, customer_id)
    proposal = await submit_proposal(client, job["job_id"], uuid.uuid4(), "9000.00")
    assert proposal["status"] == "pending"

    stored = await load_job(db_session, job["job_id"])
    assert stored.status == JobStatus.IN_NEGOTIATION
    assert await count_rows(
        db_session, Notification,
        Notification.notification_type == "new_proposal",
        Notification.recipient_id == customer_id,
    ) == 1


@pytest.mark.asyncio
async def test_proposal_below_minimum_rejected(client: AsyncClient) -> None:
    job = await create_paid_job(client, uuid.uuid4())
    resp = await client.post(
        f"/jobs/{job['job_id']}/proposals",
        json={"proposed_price": "6999.99"},
        headers=provider(uuid.uuid4()),
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_proposal_contact_email_kept_private(
    client: AsyncClient, db_session: AsyncSession,
) -> None:
    job = await create_paid_job(client, uuid.uuid4())
    proposal = await submit_proposal(
        client, job["job_id"], uuid.uuid4(), "9000.00", contact_email="crew@mowers.example.com",
    )
    assert "contact_email" not in proposal
    assert await count_rows(
        db_session, Proposal,
        Proposal.proposal_id == uuid.UUID(proposal["proposal_id"]),
        Proposal.contact_email == "crew@mowers.example.com",
    ) == 1

    resp = await client.post(
        f"/jobs/{job['job_id']}/proposals",
        json={"proposed_price": "9000.00", "contact_email": "not-an-email"},
        headers=provider(uuid.uuid4()),
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_duplicate_pending_proposal_rejected(client: AsyncClient) -> None:
    job = await create_paid_job(client, uuid.uuid4())
    provider_id = uuid.uuid4()
    await submit_proposal(client, job["job_id"], provider_id, "9000.00")
    resp = await client.post(
        f"/jobs/{job['job_id']}/proposals",
        json={"proposed_price": "9500.00"},
        headers=provider(provider_id),
    )
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_customer_cannot_bid_on_own_job(client: AsyncClient) -> None:
    customer_id = uuid.uuid4()
    job = await create_paid_job(client, customer_id)
    resp = await client.post(
        f"/jobs/{job['job_id']}/proposals",
        json={"proposed_price": "9000.00"},
        headers=provider(customer_id),
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_list_proposals_visibility(client: AsyncClient) -> None:
    customer_id, p1, p2 = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
    job = await create_paid_job(client, customer_id)
    await submit_proposal(client, job["job_id"], p1, "9000.00")
    await submit_proposal(client, job["job_id"], p2, "9500.00")

    resp = await client.get(f"/jobs/{job['job_id']}/proposals", headers=customer(customer_id))
    assert len(resp.json()) == 2

    resp = await client.get(f"/jobs/{job['job_id']}/proposals", headers=provider(p1))
    own = resp.json()
    assert len(own) == 1
    assert own[0]["provider_id"] == str(p1)


@pytest.mark.asyncio
async def test_accept_locks_price_and_acceptance_split(client: AsyncClient) -> None:
    """Proposal at 20,000 accepted: platform keeps 2,000, provider gets 18,000."""
    customer_id, provider_id = uuid.uuid4(), uuid.uuid4()
    job = await create_accepted_job(client, customer_id, provider_id, "20000.00")
    assert job["status"] == "accepted"
    assert job["accepted_provider_id"] == str(provider_id)
    assert Decimal(job["final_price"]) == Decimal("20000")
    assert Decimal(job["platform_fee"]) == Decimal("2000")
    assert Decimal(job["provider_payout"]) == Decimal("18000")


@pytest.mark.asyncio
async def test_accept_rejects_siblings_and_keeps_single_accepted(
    client: AsyncClient, db_session: AsyncSession,
) -> None:
    customer_id = uuid.uuid4()
    providers = [uuid.uuid4() for _ in range(3)]
    job = await create_paid_job(client, customer_id)
    proposals = [
        await submit_proposal(client, job["job_id"], p, f"{9000 + i * 500}.00")
        for i, p in enumerate(providers)
    ]

    resp = await client.post(
        f"/jobs/{job['job_id']}/proposals/{proposals[1]['proposal_id']}/accept",
        headers=customer(customer_id),
    )
    assert resp.status_code == 200

    job_uuid = uuid.UUID(job["job_id"])
    assert await count_rows(
        db_session, Proposal, Proposal.job_id == job_uuid, Proposal.status == ProposalStatus.ACCEPTED,
    ) == 1
    assert await count_rows(
        db_session, Proposal, Proposal.job_id == job_uuid, Proposal.status == ProposalStatus.REJECTED,
    ) == 2
    assert await count_rows(
        db_session, Notification, Notification.notification_type == "proposal_rejected",
    ) == 2

    # A second acceptance on the same job is a guard failure
    resp = await client.post(
        f"/jobs/{job['job_id']}/proposals/{proposals[0]['proposal_id']}/accept",
        headers=customer(customer_id),
    )
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_only_owner_can_accept(client: AsyncClient) -> None:
    customer_id = uuid.uuid4()
    job = await create_paid_job(client, customer_id)
    proposal = await submit_proposal(client, job["job_id"], uuid.uuid4())
    resp = await client.post(
        f"/jobs/{job['job_id']}/proposals/{proposal['proposal_id']}/accept",
        headers=customer(uuid.uuid4()),
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_direct_booking_keeps_catalog_price_and_takes_acceptance_fee(client: AsyncClient) -> None:
    customer_id, provider_id = uuid.uuid4(), uuid.uuid4()
    job = await create_paid_job(client, customer_id, booking_type="direct", lawn_size="medium")

    resp = await client.get(f"/jobs/{job['job_id']}", headers=customer(customer_id))
    paid = resp.json()
    assert Decimal(paid["final_price"]) == Decimal("8000")
    assert Decimal(paid["platform_fee"]) == Decimal("0")
    assert Decimal(paid["provider_payout"]) == Decimal("8000")

    proposal = await submit_proposal(client, job["job_id"], provider_id, "9000.00")
    resp = await client.post(
        f"/jobs/{job['job_id']}/proposals/{proposal['proposal_id']}/accept",
        headers=customer(customer_id),
    )
    accepted = resp.json()
    assert accepted["status"] == "accepted"
    assert Decimal(accepted["final_price"]) == Decimal("8000")
    assert Decimal(accepted["platform_fee"]) == Decimal("800.00")
    assert Decimal(accepted["provider_payout"]) == Decimal("7200.00")


# ---------------------------------------------------------------------------
# Work lifecycle
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_full_lifecycle(client: AsyncClient, db_session: AsyncSession) -> None:
    customer_id, provider_id = uuid.uuid4(), uuid.uuid4()
    job = await create_completed_job(client, customer_id, provider_id)
    assert job["status"] == "completed"
    assert job["completed_at"] is not None
    assert job["provider_completed_at"] is not None
    assert await count_rows(
        db_session, Notification,
        Notification.notification_type == "job_completed",
        Notification.recipient_id == provider_id,
    ) == 1


@pytest.mark.asyncio
async def test_only_accepted_provider_can_start(client: AsyncClient) -> None:
    job = await create_accepted_job(client, uuid.uuid4(), uuid.uuid4())
    resp = await client.post(f"/jobs/{job['job_id']}/start", headers=provider(uuid.uuid4()))
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_start_twice_is_a_guard_failure(client: AsyncClient) -> None:
    provider_id = uuid.uuid4()
    job = await create_accepted_job(client, uuid.uuid4(), provider_id)
    resp = await client.post(f"/jobs/{job['job_id']}/start", headers=provider(provider_id))
    assert resp.status_code == 200
    assert resp.json()["status"] == "in_progress"
    resp = await client.post(f"/jobs/{job['job_id']}/start", headers=provider(provider_id))
    assert resp.status_code == 409
    assert "in_progress" in resp.json()["detail"]


@pytest.mark.asyncio
async def test_complete_requires_photo(client: AsyncClient) -> None:
    provider_id = uuid.uuid4()
    job = await create_accepted_job(client, uuid.uuid4(), provider_id)
    await client.post(f"/jobs/{job['job_id']}/start", headers=provider(provider_id))

    resp = await client.post(
        f"/jobs/{job['job_id']}/complete", json={"photo_urls": []}, headers=provider(provider_id),
    )
    assert resp.status_code == 422
    resp = await client.post(
        f"/jobs/{job['job_id']}/complete", json={"photo_urls": ["  "]}, headers=provider(provider_id),
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_cannot_complete_before_start(client: AsyncClient) -> None:
    provider_id = uuid.uuid4()
    job = await create_accepted_job(client, uuid.uuid4(), provider_id)
    resp = await client.post(
        f"/jobs/{job['job_id']}/complete",
        json={"photo_urls": ["https://cdn.example.com/a.jpg"]},
        headers=provider(provider_id),
    )
    assert resp.status_code == 409
    assert "Cannot transition from accepted to pending_completion" == resp.json()["detail"]


@pytest.mark.asyncio
async def test_confirm_requires_pending_completion(client: AsyncClient) -> None:
    customer_id, provider_id = uuid.uuid4(), uuid.uuid4()
    job = await create_accepted_job(client, customer_id, provider_id)
    resp = await client.post(f"/jobs/{job['job_id']}/confirm", headers=customer(customer_id))
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_only_owner_can_confirm(client: AsyncClient) -> None:
    job = await create_pending_completion_job(client, uuid.uuid4(), uuid.uuid4())
    resp = await client.post(f"/jobs/{job['job_id']}/confirm", headers=customer(uuid.uuid4()))
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_completed_job_is_terminal(client: AsyncClient) -> None:
    customer_id, provider_id = uuid.uuid4(), uuid.uuid4()
    job = await create_completed_job(client, customer_id, provider_id)
    job_id = job["job_id"]

    resp = await client.post(f"/jobs/{job_id}/confirm", headers=customer(customer_id))
    assert resp.status_code == 409
    assert resp.json()["detail"] == "Job is completed; no further changes are allowed"

    resp = await client.post(f"/jobs/{job_id}/start", headers=provider(provider_id))
    assert resp.status_code == 409

    resp = await client.post(
        f"/jobs/{job_id}/complete",
        json={"photo_urls": ["https://cdn.example.com/again.jpg"]},
        headers=provider(provider_id),
    )
    assert resp.status_code == 409

    resp = await client.post(
        f"/jobs/{job_id}/dispute", json={"reason": "Too late"}, headers=customer(customer_id),
    )
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_fee_schedule_endpoint(client: AsyncClient) -> None:
    resp = await client.get("/fees")
    assert resp.status_code == 200
    assert resp.json()["currency"] == "JMD"


# ---------------------------------------------------------------------------
# Transition table
# ---------------------------------------------------------------------------

_FORWARD_ORDER = [
    JobStatus.OPEN,
    JobStatus.IN_NEGOTIATION,
    JobStatus.ACCEPTED,
    JobStatus.IN_PROGRESS,
    JobStatus.PENDING_COMPLETION,
    JobStatus.COMPLETED,
]


def test_only_dispute_moves_backwards() -> None:
    for current, targets in VALID_TRANSITIONS.items():
        if current is JobStatus.CANCELLED:
            continue
        for target in targets:
            if target is JobStatus.CANCELLED:
                continue
            if _FORWARD_ORDER.index(target) < _FORWARD_ORDER.index(current):
                assert (current, target) == (JobStatus.PENDING_COMPLETION, JobStatus.IN_PROGRESS)


@pytest.mark.parametrize("terminal", [JobStatus.COMPLETED, JobStatus.CANCELLED])
@pytest.mark.parametrize("target", list(JobStatus))
def test_terminal_states_reject_everything(terminal: JobStatus, target: JobStatus) -> None:
    assert terminal in TERMINAL_STATUSES
    with pytest.raises(ConflictError, match="no further changes"):
        job_service._assert_transition(terminal, target)


@pytest.mark.parametrize("settled", [PaymentStatus.PAID, PaymentStatus.FAILED])
@pytest.mark.parametrize("target", [PaymentStatus.PAID, PaymentStatus.FAILED])
def test_settled_payment_never_moves(settled: PaymentStatus, target: PaymentStatus) -> None:
    job = JobRequest(job_id=uuid.uuid4(), payment_status=settled)
    with pytest.raises(RaceLossError):
        job_service._assert_payment_transition(job, target)


@pytest.mark.parametrize("target", [PaymentStatus.PAID, PaymentStatus.FAILED])
def test_pending_payment_settles_either_way(target: PaymentStatus) -> None:
    job = JobRequest(job_id=uuid.uuid4(), payment_status=PaymentStatus.PENDING)
    job_service._assert_payment_transition(job, target)
