"""Caller identity dependencies for FastAPI.

End-user authentication happens upstream: the gateway verifies the session
and forwards the caller as ``X-Actor-Id`` / ``X-Actor-Role``. Scheduled
maintenance calls authenticate with the service key instead.
"""

import enum
import hmac
import uuid
from collections.abc import Awaitable, Callable

from fastapi import Depends, HTTPException, Request

from app.config import settings
from app.errors import ServiceAuthError


class ActorRole(enum.Enum):
    CUSTOMER = "customer"
    PROVIDER = "provider"
    ADMIN = "admin"


class Actor:
    """Container for the caller forwarded by the gateway."""

    def __init__(self, actor_id: uuid.UUID, role: ActorRole) -> None:
        self.actor_id = actor_id
        self.role = role

    def __repr__(self) -> str:
        return f"Actor({self.actor_id}, {self.role.value})"


async def get_actor(request: Request) -> Actor:
    """Resolve the forwarded caller identity."""
    actor_id_header = request.headers.get("X-Actor-Id")
    role_header = request.headers.get("X-Actor-Role")

    if not actor_id_header or not role_header:
        raise HTTPException(status_code=403, detail="Missing authentication headers")

    try:
        actor_id = uuid.UUID(actor_id_header)
    except ValueError:
        raise HTTPException(status_code=403, detail="Malformed X-Actor-Id header")

    try:
        role = ActorRole(role_header.strip().lower())
    except ValueError:
        raise HTTPException(status_code=403, detail=f"Unknown role {role_header!r}")

    return Actor(actor_id, role)


def require_role(*roles: ActorRole) -> Callable[..., Awaitable[Actor]]:
    """Dependency factory: the caller must hold one of ``roles``."""

    async def _check(actor: Actor = Depends(get_actor)) -> Actor:
        if actor.role not in roles:
            allowed = ", ".join(r.value for r in roles)
            raise HTTPException(status_code=403, detail=f"Requires role: {allowed}")
        return actor

    return _check


require_customer = require_role(ActorRole.CUSTOMER)
require_provider = require_role(ActorRole.PROVIDER)
require_admin = require_role(ActorRole.ADMIN)


async def verify_service_key(request: Request) -> None:
    """Maintenance endpoints: ``Authorization: Bearer <service_role_key>``."""
    auth_header = request.headers.get("Authorization", "")
    scheme, _, credential = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not credential:
        raise ServiceAuthError("Unauthorized")
    if not hmac.compare_digest(credential.strip().encode(), settings.service_role_key.encode()):
        raise ServiceAuthError("Unauthorized")
