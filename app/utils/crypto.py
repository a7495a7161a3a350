"""HMAC-SHA256 signing for payment gateway webhooks."""

import hashlib
import hmac
from datetime import UTC, datetime


def sign_webhook_payload(secret: str, timestamp: str, body: bytes | str) -> str:
    """Generate HMAC-SHA256 signature over ``{timestamp}.{body}``."""
    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")
    message = f"{timestamp}.{body}"
    return hmac.new(secret.encode(), message.encode(), hashlib.sha256).hexdigest()


def verify_webhook_signature(
    secret: str,
    signature_hex: str,
    timestamp: str,
    body: bytes | str,
) -> bool:
    """Constant-time comparison against the expected signature."""
    expected = sign_webhook_payload(secret, timestamp, body)
    return hmac.compare_digest(expected, signature_hex.strip().lower())


def is_timestamp_valid(timestamp: str, max_age_seconds: int = 300) -> bool:
    """Check if a timestamp is within the allowed window.

    Accepts ISO-8601 with an offset or integer Unix seconds.
    """
    try:
        if timestamp.strip().isdigit():
            ts = datetime.fromtimestamp(int(timestamp), tz=UTC)
        else:
            ts = datetime.fromisoformat(timestamp)
        if ts.tzinfo is None:
            return False
        now = datetime.now(UTC)
        delta = abs((now - ts).total_seconds())
        return delta <= max_age_seconds
    except (ValueError, TypeError, OverflowError, OSError):
        return False
