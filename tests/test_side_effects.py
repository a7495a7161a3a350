"""Tests for notifications, invoices, refunds and the receipt email."""

import uuid
from datetime import UTC, datetime
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.errors import ValidationError
from app.models.audit import RefundStatus
from app.models.invoice import Invoice
from app.models.job import JobRequest
from app.models.notification import Notification, NotificationStatus
from app.services import email as email_service
from app.services.audit import record_audit
from app.services.invoices import invoice_number_for, record_invoice
from app.services.notifications import notify
from app.services.refunds import enqueue_refund
from tests.conftest import count_rows


def _job(**overrides: object) -> JobRequest:
    values: dict = {
        "job_id": uuid.uuid4(),
        "customer_id": uuid.uuid4(),
        "title": "Back yard trim",
        "location": "4 Ocean Blvd",
        "parish": "St. James",
        "base_price": Decimal("7000.00"),
        "customer_email": "pat@example.com",
    }
    values.update(overrides)
    return JobRequest(**values)


@pytest.mark.asyncio
async def test_notify_records_pending_notification(db_session: AsyncSession) -> None:
    recipient, job_id = uuid.uuid4(), uuid.uuid4()
    notification = await notify(db_session, "job_started", recipient, job_id, "Mow", {"k": "v"})
    assert notification is not None
    assert notification.status == NotificationStatus.PENDING
    assert await count_rows(db_session, Notification, Notification.recipient_id == recipient) == 1


@pytest.mark.asyncio
async def test_notify_unknown_type_still_sent(db_session: AsyncSession) -> None:
    notification = await notify(db_session, "lawn_on_fire", uuid.uuid4(), None, None)
    assert notification is not None
    assert notification.notification_type == "lawn_on_fire"


@pytest.mark.asyncio
async def test_notify_failure_returns_none(db_session: AsyncSession) -> None:
    with patch.object(db_session, "commit", AsyncMock(side_effect=RuntimeError("db gone"))):
        result = await notify(db_session, "job_started", uuid.uuid4(), None, None)
    assert result is None


@pytest.mark.asyncio
async def test_record_invoice_is_idempotent_per_job(db_session: AsyncSession) -> None:
    job_id, customer_id = uuid.uuid4(), uuid.uuid4()
    paid_at = datetime(2026, 3, 14, 9, 30, tzinfo=UTC)
    first = await record_invoice(db_session, job_id, customer_id, Decimal("9000"), Decimal("0"), "T1", paid_at)
    second = await record_invoice(db_session, job_id, customer_id, Decimal("9000"), Decimal("0"), "T2", paid_at)
    assert first.invoice_id == second.invoice_id
    assert second.transaction_ref == "T1"
    assert await count_rows(db_session, Invoice, Invoice.job_id == job_id) == 1


def test_invoice_number_format() -> None:
    job_id = uuid.UUID("0123abcd-0000-0000-0000-000000000000")
    paid_at = datetime(2026, 3, 14, tzinfo=UTC)
    assert invoice_number_for(job_id, paid_at) == "INV-20260314-0123ABCD"


@pytest.mark.asyncio
async def test_enqueue_refund(db_session: AsyncSession) -> None:
    refund = enqueue_refund(db_session, uuid.uuid4(), uuid.uuid4(), Decimal("1200.00"), "partial")
    await db_session.commit()
    assert refund.status == RefundStatus.PENDING


def test_enqueue_refund_rejects_zero() -> None:
    with pytest.raises(ValidationError):
        enqueue_refund(MagicMock(), uuid.uuid4(), uuid.uuid4(), Decimal("0"), "nothing")


@pytest.mark.asyncio
async def test_record_audit_commits_with_caller(db_session: AsyncSession) -> None:
    entry = record_audit(db_session, uuid.uuid4(), "resolve_dispute", "job_dispute", uuid.uuid4(), {"a": 1})
    await db_session.commit()
    assert entry.details == {"a": 1}


def test_render_payment_confirmation() -> None:
    job = _job()
    invoice = Invoice(
        invoice_number="INV-20260314-ABCDEF12",
        job_id=job.job_id,
        customer_id=job.customer_id,
        amount=Decimal("12500.00"),
        platform_fee=Decimal("0"),
        transaction_ref="TXN77",
        paid_at=datetime(2026, 3, 14, 9, 30, tzinfo=UTC),
    )
    subject, body = email_service.render_payment_confirmation(job, invoice)
    assert subject == "Payment received - INV-20260314-ABCDEF12"
    assert "J$12,500.00" in body
    assert "TXN77" in body
    assert "St. James" in body


@pytest.mark.asyncio
async def test_send_payment_confirmation_skips_missing_email() -> None:
    sender = AsyncMock()
    with patch.object(email_service, "get_email_sender", return_value=sender):
        await email_service.send_payment_confirmation(_job(customer_email=None), AsyncMock())
    sender.send.assert_not_called()


@pytest.mark.asyncio
async def test_send_payment_confirmation_uses_sender() -> None:
    sender = AsyncMock()
    job = _job()
    invoice = Invoice(
        invoice_number="INV-1", job_id=job.job_id, customer_id=job.customer_id,
        amount=Decimal("7000"), platform_fee=Decimal("0"), transaction_ref="T",
        paid_at=datetime(2026, 1, 1, tzinfo=UTC),
    )
    with patch.object(email_service, "get_email_sender", return_value=sender):
        await email_service.send_payment_confirmation(job, invoice)
    sender.send.assert_awaited_once()
    assert sender.send.await_args.args[0] == "pat@example.com"


def test_render_payout_summary() -> None:
    subject, body = email_service.render_payout_summary(
        Decimal("27000.00"), 2, datetime(2026, 3, 14, 6, 0, tzinfo=UTC),
    )
    assert subject == "Payout processed - J$27,000.00"
    assert "for 2 completed jobs was processed on 2026-03-14" in body
    assert "every 14 days" in body


def test_email_backend_selection() -> None:
    assert isinstance(email_service.get_email_sender(), email_service.LogEmailSender)
    object.__setattr__(settings, "email_backend", "smtp")
    assert isinstance(email_service.get_email_sender(), email_service.SmtpEmailSender)
