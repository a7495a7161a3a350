"""Payment gateway webhook endpoint.

Public and CORS-open: the gateway posts from its own origin and expects the
``{success, ...}`` envelope rather than FastAPI's ``{detail}`` errors.
"""

import logging

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.errors import ServiceAuthError
from app.redis import get_redis
from app.services import payments as payment_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": (
        "authorization, x-client-info, apikey, content-type, "
        "x-webhook-timestamp, x-webhook-signature"
    ),
    "Access-Control-Allow-Methods": "POST, OPTIONS",
}


@router.options("/webhook")
async def webhook_preflight() -> Response:
    return Response(status_code=200, headers=CORS_HEADERS)


@router.post("/webhook")
async def payment_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
) -> JSONResponse:
    """Gateway payment notification (JSON or form-encoded).

    Redeliveries of the same order/transaction are acknowledged with
    ``processed: false`` and change nothing.
    """
    raw_body = await request.body()
    try:
        payment_service.verify_signature(
            raw_body,
            request.headers.get("X-Webhook-Timestamp"),
            request.headers.get("X-Webhook-Signature"),
        )
        outcome = await payment_service.process_payment_notification(
            db, redis, raw_body.decode("utf-8", errors="replace"),
        )
    except ServiceAuthError as exc:
        logger.warning("Rejected webhook: %s", exc.detail)
        return JSONResponse(
            status_code=401,
            content={"success": False, "error": exc.detail},
            headers=CORS_HEADERS,
        )
    except Exception:
        logger.exception("Payment webhook processing failed")
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Webhook processing failed"},
            headers=CORS_HEADERS,
        )

    return JSONResponse(status_code=outcome.status_code, content=outcome.body, headers=CORS_HEADERS)
