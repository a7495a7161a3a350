"""Domain error taxonomy.

Services raise these instead of HTTP errors; ``register_error_handlers``
maps them to responses. Every message names the precondition that failed
("payment already processed", "dispute already resolved") rather than a
generic failure.
"""

import logging
import uuid

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class DomainError(Exception):
    """Base class for marketplace errors."""

    status_code = 400

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(detail)


class ValidationError(DomainError):
    """Malformed input. No state change happened."""

    status_code = 422


class PermissionDeniedError(DomainError):
    """The caller is not the party allowed to perform the action."""

    status_code = 403


class NotFoundError(DomainError):
    status_code = 404


class ConflictError(DomainError):
    """A transition guard failed. ``detail`` names the guard."""

    status_code = 409


class RaceLossError(ConflictError):
    """A conditional update matched zero rows.

    Another request settled the same precondition first. The webhook path
    treats this as a successful no-op.
    """

    def __init__(self, job_id: uuid.UUID, guard: str) -> None:
        self.job_id = job_id
        self.guard = guard
        super().__init__(f"Job {job_id} changed concurrently ({guard} no longer holds)")


class ExternalDependencyError(DomainError):
    """A best-effort side effect (email, invoice, notification) failed."""

    status_code = 502


class ServiceAuthError(DomainError):
    """Missing or invalid service credential or webhook signature."""

    status_code = 401


async def _domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
    else:
        logger.info(
            "%s %s rejected (%d): %s",
            request.method, request.url.path, exc.status_code, exc.detail,
        )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DomainError, _domain_error_handler)  # type: ignore[arg-type]
