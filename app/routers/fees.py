"""Fee schedule endpoint: public, no auth required."""

from fastapi import APIRouter

from app.services.ledger import get_fee_schedule

router = APIRouter(tags=["fees"])


@router.get("/fees")
async def fee_schedule() -> dict:
    """Current fee schedule and catalog prices.

    - **Accepted proposals**: platform keeps 10%, provider receives 90%
    - **Direct bookings**: provider receives the full catalog price
    - **Disputes**: provider keeps 70% when resolved in their favour, or an
      admin-chosen 10-80% on a partial resolution
    """
    return get_fee_schedule()
