"""Payment gateway webhook processing.

The gateway posts a notification per payment attempt and may redeliver it,
concurrently or much later. Each (order, transaction) pair must move the
job's payment status at most once:

1. Parse the body (JSON, or URL-encoded form with the gateway's JSON-as-key quirk).
2. Resolve ``CustomOrderId`` / ``order_id`` to a job id.
3. Skip if the idempotency key was already recorded.
4. Skip if the job's payment is no longer ``pending``.
5. Success: claim the key, then conditionally set ``paid``. Failure code:
   conditionally set ``failed``.
6. After the commit: invoice, receipt email, notifications. None of these
   can change the response.

Idempotency keys live in Redis with a TTL so every API instance shares them.
"""

import json
import logging
import re
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from urllib.parse import parse_qsl

import redis.asyncio as aioredis
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.errors import ExternalDependencyError, NotFoundError, RaceLossError, ServiceAuthError, ValidationError
from app.models.job import PaymentStatus
from app.services import job as job_service
from app.services.email import send_payment_confirmation
from app.services.invoices import record_invoice
from app.services.notifications import notify
from app.utils.crypto import is_timestamp_valid, verify_webhook_signature

logger = logging.getLogger(__name__)

SUCCESS_RESPONSE_CODE = "1"
IDEMPOTENCY_PREFIX = "webhook:"

_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)


@dataclass
class WebhookNotification:
    order_id: uuid.UUID
    response_code: str | None
    response_description: str | None
    transaction_number: str | None

    @property
    def is_success(self) -> bool:
        return self.response_code == SUCCESS_RESPONSE_CODE


@dataclass
class WebhookOutcome:
    """HTTP status and JSON body to return to the gateway."""
    status_code: int
    body: dict = field(default_factory=dict)

    @classmethod
    def error(cls, status_code: int, message: str, **extra: object) -> "WebhookOutcome":
        return cls(status_code, {"success": False, "error": message, **extra})

    @classmethod
    def noop(cls, message: str, **extra: object) -> "WebhookOutcome":
        return cls(200, {"success": True, "processed": False, "message": message, **extra})


class WebhookPayloadError(ValidationError):
    """Unusable webhook body. ``extra`` is echoed back to the gateway."""

    def __init__(self, detail: str, **extra: object) -> None:
        self.extra = extra
        super().__init__(detail)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def parse_webhook_body(raw_body: str) -> dict:
    """Decode the gateway payload into a flat dict.

    Bodies starting with ``{`` or ``[`` are JSON. Anything else is a
    URL-encoded form; the gateway sometimes sends its JSON object as a form
    key with an empty value, which is decoded and merged.
    """
    trimmed = raw_body.strip()
    if not trimmed:
        return {}

    if trimmed[0] in "{[":
        try:
            parsed = json.loads(trimmed)
        except json.JSONDecodeError as exc:
            raise WebhookPayloadError(f"Malformed JSON body: {exc.msg}")
        if not isinstance(parsed, dict):
            raise WebhookPayloadError("Webhook body must be a JSON object")
        return parsed

    payload: dict = {}
    for key, value in parse_qsl(raw_body, keep_blank_values=True):
        if key.startswith("{") and value == "":
            try:
                from_key = json.loads(key)
            except json.JSONDecodeError:
                payload[key] = value
                continue
            if isinstance(from_key, dict):
                payload.update(from_key)
                continue
        payload[key] = value
    return payload


def _as_text(value: object) -> str | None:
    if value is None or value == "":
        return None
    return str(value).strip() or None


def extract_notification(payload: dict) -> WebhookNotification:
    """Pick the fields we act on. ``CustomOrderId`` wins over ``order_id``."""
    raw_order_id = _as_text(payload.get("CustomOrderId")) or _as_text(payload.get("order_id"))
    if raw_order_id is None:
        raise WebhookPayloadError("Missing order_id", received_keys=sorted(payload))
    if not _UUID_RE.match(raw_order_id):
        raise WebhookPayloadError("Invalid order_id format")

    return WebhookNotification(
        order_id=uuid.UUID(raw_order_id),
        response_code=_as_text(payload.get("ResponseCode")),
        response_description=_as_text(payload.get("ResponseDescription")),
        transaction_number=_as_text(payload.get("TransactionNumber")),
    )


def idempotency_key(order_id: uuid.UUID, transaction_number: str | None) -> str:
    return f"{IDEMPOTENCY_PREFIX}{order_id}-{transaction_number or 'no-txn'}"


# ---------------------------------------------------------------------------
# Boundary checks
# ---------------------------------------------------------------------------

def verify_signature(raw_body: bytes, timestamp: str | None, signature: str | None) -> None:
    """Enforce the gateway HMAC when a secret is configured.

    Raises ServiceAuthError on a missing, stale or wrong signature.
    """
    secret = settings.payment_webhook_secret
    if not secret:
        logger.warning("PAYMENT_WEBHOOK_SECRET is not set; accepting unsigned webhook")
        return
    if not timestamp or not signature:
        raise ServiceAuthError("Missing webhook signature")
    if not is_timestamp_valid(timestamp, settings.webhook_signature_max_age_seconds):
        raise ServiceAuthError("Webhook timestamp outside the allowed window")
    if not verify_webhook_signature(secret, signature, timestamp, raw_body):
        raise ServiceAuthError("Invalid webhook signature")


# ---------------------------------------------------------------------------
# Processing
# ---------------------------------------------------------------------------

async def _best_effort(db: AsyncSession, label: str, action: Callable[[], Awaitable[object]]) -> object | None:
    """Run a post-commit side effect; log and swallow its failure."""
    try:
        return await action()
    except Exception as exc:
        await db.rollback()
        error = ExternalDependencyError(f"{label} failed: {exc}")
        logger.exception("%s", error.detail)
        return None


async def _after_payment_confirmed(db: AsyncSession, job_id: uuid.UUID, reference: str) -> None:
    job = await job_service.get_job(db, job_id)
    customer_id, title = job.customer_id, job.title
    amount = job.charge_amount
    platform_fee = job.platform_fee if job.platform_fee is not None else 0
    paid_at = job.payment_confirmed_at or datetime.now(UTC)

    invoice = await _best_effort(
        db, f"Invoice for job {job_id}",
        lambda: record_invoice(db, job_id, customer_id, amount, platform_fee, reference, paid_at),
    )
    if invoice is not None:
        job = await job_service.get_job(db, job_id)
        await _best_effort(
            db, f"Payment confirmation email for job {job_id}",
            lambda: send_payment_confirmation(job, invoice),
        )
    await notify(
        db, "payment_confirmed", customer_id, job_id, title,
        {"amount": str(amount), "transaction_ref": reference},
    )


async def process_payment_notification(
    db: AsyncSession,
    redis: aioredis.Redis,
    raw_body: str,
) -> WebhookOutcome:
    """Apply one gateway delivery. Always returns a response; never raises for bad input."""
    try:
        notification = extract_notification(parse_webhook_body(raw_body))
    except WebhookPayloadError as exc:
        logger.warning("Rejected webhook payload: %s", exc.detail)
        return WebhookOutcome.error(400, exc.detail, **exc.extra)

    order_id = notification.order_id
    key = idempotency_key(order_id, notification.transaction_number)

    if await redis.exists(key):
        logger.info("Duplicate webhook %s ignored", key)
        return WebhookOutcome.noop("Already processed")

    try:
        job = await job_service.get_job(db, order_id)
    except NotFoundError:
        logger.warning("Webhook for unknown job %s", order_id)
        return WebhookOutcome.error(404, "Job not found")

    if job.payment_status != PaymentStatus.PENDING:
        logger.info("Job %s payment already %s", order_id, job.payment_status.value)
        return WebhookOutcome.noop(
            "Payment already processed", current_status=job.payment_status.value,
        )

    if notification.is_success:
        reference = notification.transaction_number
        if reference is None:
            logger.warning("Successful payment for job %s has no transaction number", order_id)
            return WebhookOutcome.error(400, "Missing transaction reference")

        claimed = await redis.set(key, "1", nx=True, ex=settings.idempotency_ttl_seconds)
        if not claimed:
            logger.info("Webhook %s claimed by a concurrent delivery", key)
            return WebhookOutcome.noop("Already processed")

        try:
            await job_service.confirm_payment(db, order_id, reference)
        except RaceLossError:
            await db.rollback()
            logger.info("Job %s payment settled concurrently; delivery %s is a no-op", order_id, key)
            return WebhookOutcome.noop("Payment already processed")
        except SQLAlchemyError:
            await db.rollback()
            await redis.delete(key)
            logger.exception("Failed to mark job %s paid", order_id)
            return WebhookOutcome.error(500, "Failed to update payment status")

        await _best_effort(
            db, f"Post-payment side effects for job {order_id}",
            lambda: _after_payment_confirmed(db, order_id, reference),
        )
    else:
        logger.info(
            "Payment for job %s failed: %s (%s)",
            order_id, notification.response_description, notification.response_code,
        )
        try:
            job = await job_service.fail_payment(db, order_id)
        except RaceLossError:
            await db.rollback()
            return WebhookOutcome.noop("Payment already processed")

        await notify(
            db, "payment_failed", job.customer_id, order_id, job.title,
            {"reason": notification.response_description},
        )

    return WebhookOutcome(200, {
        "success": True,
        "processed": True,
        "payment_success": notification.is_success,
    })
