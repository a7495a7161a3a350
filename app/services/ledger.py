"""Ledger math: platform fee, provider payout and refund splits.

Pure functions over ``Decimal`` prices; no I/O. Every split computes one
side as a rounded percentage and derives the other by subtraction, so
``platform_fee + provider_payout == price`` holds to the cent for any input.

Splits (rates configurable via settings):

1. **Acceptance**: customer accepts a proposal, platform keeps 10%.
2. **Direct pay**: fixed catalog price, no bidding, platform keeps nothing
   at this stage.
3. **Dispute, favour customer**: job cancelled, full price refunded.
4. **Dispute, favour provider**: disputed-provider rate, provider keeps 70%.
5. **Dispute, partial**: admin picks the provider's share (10-80%); the rest
   is refunded to the customer.
6. **Dispute, dismiss**: no ledger change.
"""

import enum
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from app.config import settings
from app.errors import ValidationError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


class Resolution(enum.Enum):
    FAVOR_CUSTOMER = "favor_customer"
    FAVOR_PROVIDER = "favor_provider"
    PARTIAL = "partial"
    DISMISS = "dismiss"


@dataclass(frozen=True)
class LedgerSplit:
    """Outcome of a split. ``refund_amount`` is what goes back to the customer."""
    platform_fee: Decimal
    provider_payout: Decimal
    refund_amount: Decimal = ZERO


def to_cents(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def _check_price(price: Decimal) -> Decimal:
    if price is None or price <= 0:
        raise ValidationError("Price must be positive to compute a ledger split")
    return to_cents(price)


def acceptance_split(price: Decimal) -> LedgerSplit:
    """90/10 provider/platform division applied when a proposal is accepted."""
    price = _check_price(price)
    fee = to_cents(price * settings.fee_acceptance_percent)
    return LedgerSplit(platform_fee=fee, provider_payout=price - fee)


def direct_pay_split(price: Decimal) -> LedgerSplit:
    price = _check_price(price)
    return LedgerSplit(platform_fee=ZERO, provider_payout=price)


def validate_payout_percent(payout_percent: int | None) -> int:
    low, high = settings.partial_payout_min_percent, settings.partial_payout_max_percent
    if payout_percent is None:
        raise ValidationError("Partial resolution requires payout_percent")
    if isinstance(payout_percent, bool) or not isinstance(payout_percent, int):
        raise ValidationError("payout_percent must be a whole number")
    if not low <= payout_percent <= high:
        raise ValidationError(f"payout_percent must be between {low} and {high}, got {payout_percent}")
    return payout_percent


def dispute_split(
    resolution: Resolution,
    price: Decimal,
    payout_percent: int | None = None,
) -> LedgerSplit | None:
    """Ledger outcome of resolving a dispute. ``None`` means leave the job's amounts alone."""
    if resolution is Resolution.DISMISS:
        return None

    price = _check_price(price)

    if resolution is Resolution.FAVOR_CUSTOMER:
        return LedgerSplit(platform_fee=ZERO, provider_payout=ZERO, refund_amount=price)

    if resolution is Resolution.FAVOR_PROVIDER:
        payout = to_cents(price * settings.fee_disputed_provider_payout_percent)
        return LedgerSplit(platform_fee=price - payout, provider_payout=payout)

    if resolution is Resolution.PARTIAL:
        percent = validate_payout_percent(payout_percent)
        payout = to_cents(price * percent / Decimal(100))
        return LedgerSplit(
            platform_fee=price - payout,
            provider_payout=payout,
            refund_amount=price - payout,
        )

    raise ValidationError(f"Unknown resolution {resolution!r}")


def catalog_price(lawn_size: str, job_type: str) -> Decimal:
    """Minimum price for a lawn size plus the job-type surcharge."""
    try:
        size_price = settings.lawn_size_prices[lawn_size]
    except KeyError:
        raise ValidationError(
            f"Unknown lawn size {lawn_size!r}; expected one of {sorted(settings.lawn_size_prices)}"
        )
    try:
        surcharge = settings.job_type_surcharges[job_type]
    except KeyError:
        raise ValidationError(
            f"Unknown job type {job_type!r}; expected one of {sorted(settings.job_type_surcharges)}"
        )
    return to_cents(Decimal(size_price) + Decimal(surcharge))


def get_fee_schedule() -> dict:
    """Current fee schedule for display to customers and providers."""
    disputed = settings.fee_disputed_provider_payout_percent
    return {
        "currency": "JMD",
        "minimum_job_price": str(settings.minimum_job_price),
        "acceptance": {
            "label": settings.acceptance_fee_display,
            "platform_fee_percent": str(settings.fee_acceptance_percent * 100),
            "provider_payout_percent": str((1 - settings.fee_acceptance_percent) * 100),
            "example": f"On a J$20,000 job the provider receives "
                       f"J${acceptance_split(Decimal('20000')).provider_payout:,}",
        },
        "direct_booking": {
            "platform_fee_percent": "0",
            "note": "No fee when payment clears; the acceptance fee applies once a provider is accepted.",
        },
        "disputes": {
            "favor_provider_payout_percent": str(disputed * 100),
            "partial_payout_percent_range": [
                settings.partial_payout_min_percent,
                settings.partial_payout_max_percent,
            ],
            "favor_customer": "Full refund, job cancelled",
        },
        "catalog": {
            "lawn_size_prices": {k: str(v) for k, v in settings.lawn_size_prices.items()},
            "job_type_surcharges": {k: str(v) for k, v in settings.job_type_surcharges.items()},
        },
    }
