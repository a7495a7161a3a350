"""FastAPI application entry point."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.errors import register_error_handlers
from app.middleware import BodySizeLimitMiddleware, RequestLoggingMiddleware, SecurityHeadersMiddleware
from app.routers import disputes, fees, jobs, maintenance, payments

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup and shutdown."""
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if not settings.payment_webhook_secret:
        logger.warning("PAYMENT_WEBHOOK_SECRET is not set; webhook signatures are not verified")
    logger.info("Lawn marketplace API starting (env=%s)", settings.env)

    yield

    from app.database import engine
    from app.redis import redis_pool
    await redis_pool.disconnect()
    await engine.dispose()


app = FastAPI(
    title="Lawn Care Marketplace",
    description="Job lifecycle, payments, disputes and payouts for a lawn-care marketplace",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS - restrict to configured origins (the payment webhook sets its own open headers)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Middleware (outermost first)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(BodySizeLimitMiddleware, max_bytes=1_048_576)
app.add_middleware(RequestLoggingMiddleware)

register_error_handlers(app)

# Routers
app.include_router(jobs.router)
app.include_router(disputes.router)
app.include_router(payments.router)
app.include_router(maintenance.router)
app.include_router(fees.router)


@app.get("/health")
async def health() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok"}
