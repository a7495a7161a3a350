"""In-app notification dispatch.

``notify`` is fire-and-forget: it records a pending notification for the push
worker and never raises. A failure here must not undo the job transition that
triggered it, so callers invoke it only after their own commit.
"""

import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.notification import Notification, NotificationStatus

logger = logging.getLogger(__name__)

# Notification types understood by the push worker
NOTIFICATION_TYPES = frozenset({
    "payment_confirmed",
    "payment_failed",
    "new_proposal",
    "proposal_accepted",
    "proposal_rejected",
    "job_started",
    "job_pending_completion",
    "job_completed",
    "job_disputed",
    "dispute_resolved",
    "payout_processed",
})


async def notify(
    db: AsyncSession,
    notification_type: str,
    recipient_id: uuid.UUID,
    job_id: uuid.UUID | None,
    job_title: str | None,
    extra: dict | None = None,
) -> Notification | None:
    """Queue a notification. Returns ``None`` if it could not be recorded."""
    if notification_type not in NOTIFICATION_TYPES:
        logger.warning("Unknown notification type %s, sending anyway", notification_type)

    try:
        notification = Notification(
            notification_id=uuid.uuid4(),
            recipient_id=recipient_id,
            notification_type=notification_type,
            job_id=job_id,
            job_title=job_title,
            extra=extra,
            status=NotificationStatus.PENDING,
        )
        db.add(notification)
        await db.commit()
    except Exception:
        await db.rollback()
        logger.exception(
            "Notification %s for %s (job %s) could not be queued",
            notification_type, recipient_id, job_id,
        )
        return None

    logger.info("Notification queued: %s → %s", notification_type, recipient_id)
    return notification
