import logging
import uuid
from collections.abc import AsyncGenerator

import redis.asyncio as aioredis

from app.config import settings
from app.errors import ConflictError

logger = logging.getLogger(__name__)

redis_pool = aioredis.ConnectionPool.from_url(settings.redis_url)

LOCK_PREFIX = "maintenance-lock:"


async def get_redis() -> AsyncGenerator[aioredis.Redis, None]:
    client = aioredis.Redis(connection_pool=redis_pool)
    try:
        yield client
    finally:
        await client.aclose()


async def acquire_run_lock(redis: aioredis.Redis, name: str) -> str:
    """Take the cluster-wide lock for a maintenance run. Returns the lock token.

    Raises ConflictError if another run holds it.
    """
    token = uuid.uuid4().hex
    acquired = await redis.set(
        f"{LOCK_PREFIX}{name}", token, nx=True, ex=settings.maintenance_lock_ttl_seconds,
    )
    if not acquired:
        raise ConflictError(f"A {name} run is already in progress")
    logger.info("Acquired %s lock", name)
    return token


async def release_run_lock(redis: aioredis.Redis, name: str, token: str) -> None:
    """Release the lock if we still own it (it may have expired and been retaken)."""
    key = f"{LOCK_PREFIX}{name}"
    current = await redis.get(key)
    if isinstance(current, bytes):
        current = current.decode()
    if current == token:
        await redis.delete(key)
        logger.info("Released %s lock", name)
    else:
        logger.warning("%s lock expired before the run finished", name)
