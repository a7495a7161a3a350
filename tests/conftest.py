"""Test configuration and fixtures.

Each test gets its own in-memory SQLite database (aiosqlite, StaticPool so
every session sees the same connection) and its own fakeredis server, so
Redis commands keep their real semantics, key expiry included.
Every HTTP request opens its own session, like production ``get_db``.
"""

import json
import uuid
from collections.abc import AsyncGenerator
from datetime import UTC, datetime

import fakeredis
import httpx
import pytest
import pytest_asyncio
import redis.asyncio as aioredis
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.config import settings
from app.database import Base, get_db
from app.main import app
from app.models.audit import AuditLog, RefundRequest  # noqa: F401 - ensure models are registered
from app.models.dispute import Dispute, DisputePhoto, DisputeResponse, DisputeResponsePhoto  # noqa: F401
from app.models.invoice import Invoice  # noqa: F401
from app.models.job import CompletionPhoto, JobPhoto, JobRequest, Message  # noqa: F401
from app.models.notification import Notification  # noqa: F401
from app.models.payout import Payout, PayoutItem  # noqa: F401
from app.models.proposal import Proposal  # noqa: F401
from app.models.review import Review  # noqa: F401
from app.redis import get_redis

SERVICE_HEADERS = {"Authorization": f"Bearer {settings.service_role_key}"}


@pytest.fixture(autouse=True)
def _isolate_settings() -> None:
    """Snapshot settings before each test and restore after to prevent mutation bleed."""
    original = settings.model_dump()
    object.__setattr__(settings, "payment_webhook_secret", "")
    object.__setattr__(settings, "email_backend", "log")
    yield  # type: ignore[misc]
    for key, value in original.items():
        object.__setattr__(settings, key, value)


@pytest_asyncio.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(
        settings.test_database_url,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Session for calling services directly. Commit before making HTTP requests."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def fake_redis() -> AsyncGenerator[aioredis.Redis, None]:
    """Per-test Redis, isolated by giving each test a fresh server."""
    redis_client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer())
    yield redis_client
    await redis_client.flushall()
    await redis_client.aclose()


@pytest_asyncio.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    fake_redis: aioredis.Redis,
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP test client with overridden DB and Redis dependencies."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    async def override_get_redis() -> AsyncGenerator[aioredis.Redis, None]:
        yield fake_redis

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def actor_headers(actor_id: uuid.UUID | str, role: str) -> dict[str, str]:
    return {"X-Actor-Id": str(actor_id), "X-Actor-Role": role}


def customer(actor_id: uuid.UUID | str) -> dict[str, str]:
    return actor_headers(actor_id, "customer")


def provider(actor_id: uuid.UUID | str) -> dict[str, str]:
    return actor_headers(actor_id, "provider")


def admin(actor_id: uuid.UUID | str) -> dict[str, str]:
    return actor_headers(actor_id, "admin")


def make_job_data(**overrides: object) -> dict:
    """Factory for a job posting payload."""
    data = {
        "title": "Front lawn cut",
        "description": "Quarter acre, mostly flat",
        "location": "12 Hope Road",
        "parish": "St. Andrew",
        "lawn_size": "small",
        "job_type": "basic",
        "customer_email": "customer@example.com",
    }
    data.update(overrides)
    return data


def webhook_payload(
    order_id: uuid.UUID | str,
    response_code: str = "1",
    transaction_number: str | None = "TXN1",
    **extra: object,
) -> dict:
    payload: dict = {
        "CustomOrderId": str(order_id),
        "ResponseCode": response_code,
        "ResponseDescription": "Approved" if response_code == "1" else "Declined",
        **extra,
    }
    if transaction_number is not None:
        payload["TransactionNumber"] = transaction_number
    return payload


async def post_webhook(client: AsyncClient, payload: dict, headers: dict | None = None) -> httpx.Response:
    return await client.post(
        "/payments/webhook",
        content=json.dumps(payload),
        headers={"Content-Type": "application/json", **(headers or {})},
    )


async def create_job(client: AsyncClient, customer_id: uuid.UUID, **overrides: object) -> dict:
    resp = await client.post("/jobs", json=make_job_data(**overrides), headers=customer(customer_id))
    assert resp.status_code == 201, resp.text
    return resp.json()


async def create_paid_job(
    client: AsyncClient, customer_id: uuid.UUID, txn: str = "TXN1", **overrides: object
) -> dict:
    job = await create_job(client, customer_id, **overrides)
    resp = await post_webhook(client, webhook_payload(job["job_id"], transaction_number=txn))
    assert resp.status_code == 200, resp.text
    assert resp.json()["processed"] is True
    return job


async def submit_proposal(
    client: AsyncClient, job_id: str, provider_id: uuid.UUID, price: str = "20000.00", **fields: object
) -> dict:
    resp = await client.post(
        f"/jobs/{job_id}/proposals",
        json={"proposed_price": price, "message": "Can do Saturday", **fields},
        headers=provider(provider_id),
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


async def create_accepted_job(
    client: AsyncClient,
    customer_id: uuid.UUID,
    provider_id: uuid.UUID,
    price: str = "20000.00",
    **overrides: object,
) -> dict:
    job = await create_paid_job(client, customer_id, **overrides)
    proposal = await submit_proposal(client, job["job_id"], provider_id, price)
    resp = await client.post(
        f"/jobs/{job['job_id']}/proposals/{proposal['proposal_id']}/accept",
        headers=customer(customer_id),
    )
    assert resp.status_code == 200, resp.text
    return resp.json()


async def create_pending_completion_job(
    client: AsyncClient,
    customer_id: uuid.UUID,
    provider_id: uuid.UUID,
    price: str = "20000.00",
) -> dict:
    job = await create_accepted_job(client, customer_id, provider_id, price)
    job_id = job["job_id"]
    resp = await client.post(f"/jobs/{job_id}/start", headers=provider(provider_id))
    assert resp.status_code == 200, resp.text
    resp = await client.post(
        f"/jobs/{job_id}/complete",
        json={"photo_urls": ["https://cdn.example.com/done-1.jpg"]},
        headers=provider(provider_id),
    )
    assert resp.status_code == 200, resp.text
    return resp.json()


async def create_completed_job(
    client: AsyncClient,
    customer_id: uuid.UUID,
    provider_id: uuid.UUID,
    price: str = "20000.00",
) -> dict:
    job = await create_pending_completion_job(client, customer_id, provider_id, price)
    resp = await client.post(f"/jobs/{job['job_id']}/confirm", headers=customer(customer_id))
    assert resp.status_code == 200, resp.text
    return resp.json()


async def load_job(session: AsyncSession, job_id: uuid.UUID | str) -> JobRequest:
    """Read the committed row, bypassing anything cached in ``session``."""
    result = await session.execute(
        select(JobRequest)
        .where(JobRequest.job_id == uuid.UUID(str(job_id)))
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def count_rows(session: AsyncSession, model: type, *conditions: object) -> int:
    result = await session.execute(select(model).where(*conditions))
    return len(result.scalars().all())


def utcnow() -> datetime:
    return datetime.now(UTC)
