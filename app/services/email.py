"""Email sending service.

Supports two backends:
- SMTP via aiosmtplib (production)
- Log-only (development / testing): logs the email instead of sending

Set EMAIL_BACKEND=smtp and configure SMTP_* settings for production.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Protocol

from app.config import settings
from app.models.invoice import Invoice
from app.models.job import JobRequest

logger = logging.getLogger(__name__)


class EmailSender(Protocol):
    async def send(self, to: str, subject: str, body: str) -> None: ...


class LogEmailSender:
    """Development sender: logs email content instead of sending."""

    async def send(self, to: str, subject: str, body: str) -> None:
        logger.info("EMAIL to=%s subject=%s\n%s", to, subject, body)


class SmtpEmailSender:
    """Production sender: sends via SMTP."""

    async def send(self, to: str, subject: str, body: str) -> None:
        import aiosmtplib
        from email.message import EmailMessage

        msg = EmailMessage()
        msg["From"] = settings.smtp_from_address
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(body)

        await aiosmtplib.send(
            msg,
            hostname=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username or None,
            password=settings.smtp_password or None,
            use_tls=settings.smtp_use_tls,
        )


def get_email_sender() -> EmailSender:
    if settings.email_backend == "smtp":
        return SmtpEmailSender()
    return LogEmailSender()


def render_payment_confirmation(job: JobRequest, invoice: Invoice) -> tuple[str, str]:
    """Return (subject, body) for the customer's payment receipt."""
    subject = f"Payment received - {invoice.invoice_number}"
    body = (
        f"Thank you! We received your payment of J${invoice.amount:,.2f} "
        f"for \"{job.title}\".\n\n"
        f"Invoice: {invoice.invoice_number}\n"
        f"Transaction reference: {invoice.transaction_ref}\n"
        f"Paid at: {invoice.paid_at:%Y-%m-%d %H:%M} UTC\n\n"
        f"Your job is now open for providers in {job.parish}."
    )
    return subject, body


async def send_payment_confirmation(job: JobRequest, invoice: Invoice) -> None:
    if not job.customer_email:
        logger.info("Job %s has no customer email, skipping receipt", job.job_id)
        return
    subject, body = render_payment_confirmation(job, invoice)
    await get_email_sender().send(job.customer_email, subject, body)


def render_payout_summary(amount: Decimal, jobs_count: int, payout_date: datetime) -> tuple[str, str]:
    """Return (subject, body) for a provider's payout notice."""
    subject = f"Payout processed - J${amount:,.2f}"
    body = (
        f"Your payout of J${amount:,.2f} for {jobs_count} completed "
        f"job{'s' if jobs_count != 1 else ''} was processed on {payout_date:%Y-%m-%d}.\n\n"
        f"Payouts run every {settings.payout_interval_days} days and include every "
        f"job completed since the last one."
    )
    return subject, body


async def send_payout_summary(
    to: str | None, amount: Decimal, jobs_count: int, payout_date: datetime
) -> None:
    if not to:
        return
    subject, body = render_payout_summary(amount, jobs_count, payout_date)
    await get_email_sender().send(to, subject, body)
