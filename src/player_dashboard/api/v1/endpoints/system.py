"""System endpoints: circuit status, retry queue and public configuration."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request, status

from player_dashboard.api.v1.dependencies import ServicesDep, SuperadminDep
from player_dashboard.core.settings import settings
from player_dashboard.schemas.system import CircuitStatus, RetryItemView, RetryQueueStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/system", tags=["system"])

RETRY_QUEUE_PREVIEW = 50


@router.get("/circuits", response_model=list[CircuitStatus])
async def list_circuits(admin: SuperadminDep, services: ServicesDep) -> list[CircuitStatus]:
    """Return the state of every registered circuit."""
    return [CircuitStatus(**snapshot) for snapshot in services.breaker.all_status()]


@router.post("/circuits/{name}/reset", response_model=CircuitStatus)
async def reset_circuit(name: str, admin: SuperadminDep, services: ServicesDep) -> CircuitStatus:
    """Force a circuit back to closed."""
    if not services.breaker.reset(name):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown service")
    logger.info("Circuit %s reset by %s", name, admin.subject)
    return CircuitStatus(**(services.breaker.status(name) or {}))


@router.get("/retry-queue", response_model=RetryQueueStatus)
async def retry_queue_status(admin: SuperadminDep, services: ServicesDep) -> RetryQueueStatus:
    """Return the retry queue size and its oldest items."""
    items = services.retry_queue.items()
    return RetryQueueStatus(
        size=len(items),
        items=[
            RetryItemView(
                recipients=item.recipients,
                title=item.notification.get("title"),
                first_enqueued_at=item.first_enqueued_at,
                last_attempt_at=item.last_attempt_at,
            )
            for item in items[:RETRY_QUEUE_PREVIEW]
        ],
    )


@router.get("/config")
async def get_public_config(request: Request) -> dict[str, object]:
    """Return a sanitized snapshot of public runtime configuration.

    Excludes secrets and connection strings; the push VAPID key is public by
    nature and is what browser clients need to subscribe.
    """
    services = getattr(request.app.state, "services", None)
    cfg = services.settings if services is not None else settings
    return {
        "app": {
            "name": cfg.app_name,
            "version": cfg.app_version,
            "environment": cfg.environment,
        },
        "auth": {
            "jwt_algorithm": cfg.jwt_algorithm,
            "issuer": cfg.jwt_issuer,
            "audience": cfg.jwt_audience,
            "signature_window_seconds": cfg.signature_window_seconds,
        },
        "commands": {
            "timeout_seconds": cfg.command_timeout_seconds,
        },
        "messaging": {
            "provider": cfg.messaging_provider,
        },
        "push": {
            "project_id": cfg.push_project_id,
            "vapid_key": cfg.push_vapid_key,
        },
    }
