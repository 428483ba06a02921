"""Player endpoints: issue commands, push notifications and stream player events."""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect, status

from player_dashboard.api.v1.dependencies import (
    CurrentUserDep,
    ServicesDep,
    SignedRequestDep,
    authenticate_token,
)
from player_dashboard.models.command import CommandRequest, CommandType
from player_dashboard.schemas.command import CommandAccepted, CommandCreate, UrlCommandRequest
from player_dashboard.schemas.notification import NotificationCreate, NotificationResult
from player_dashboard.services.container import ServiceContainer
from player_dashboard.services.fabric import FabricMessage
from player_dashboard.services.notifications import QUEUED_FOR_RETRY

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/players", tags=["players"])

# Close code for policy violations (RFC 6455)
WS_POLICY_VIOLATION = 1008
EVENT_QUEUE_SIZE = 100


async def _dispatch(
    services: ServiceContainer,
    player_id: str,
    request: CommandRequest,
) -> CommandAccepted:
    await services.ack_listener.watch_player(player_id)
    command_id = await services.dispatcher.send(player_id, request)
    command = services.dispatcher.status(command_id)
    if command is None:  # pragma: no cover - evicted before we could read it
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Command not found")
    return CommandAccepted(command_id=command.id, status=command.status, error=command.error)


@router.post(
    "/{player_id}/commands",
    summary="Send a command to a player",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=CommandAccepted,
    dependencies=[SignedRequestDep],
)
async def send_command(
    player_id: str,
    body: CommandCreate,
    user: CurrentUserDep,
    services: ServicesDep,
) -> CommandAccepted:
    """Publish a command; its outcome is reported through ``GET /commands/{id}``."""
    logger.info("User %s sending %s to %s", user.subject, body.type.value, player_id)
    return await _dispatch(services, player_id, CommandRequest(body.type, body.payload))


@router.post(
    "/{player_id}/commands/url",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=CommandAccepted,
    dependencies=[SignedRequestDep],
)
async def update_url(
    player_id: str, body: UrlCommandRequest, services: ServicesDep
) -> CommandAccepted:
    return await _dispatch(
        services, player_id, CommandRequest(CommandType.UPDATE_URL, {"url": body.url})
    )


@router.post(
    "/{player_id}/commands/reboot",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=CommandAccepted,
    dependencies=[SignedRequestDep],
)
async def reboot(player_id: str, services: ServicesDep) -> CommandAccepted:
    return await _dispatch(services, player_id, CommandRequest(CommandType.REBOOT, {}))


@router.post(
    "/{player_id}/commands/screenshot",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=CommandAccepted,
    dependencies=[SignedRequestDep],
)
async def screenshot(player_id: str, services: ServicesDep) -> CommandAccepted:
    return await _dispatch(services, player_id, CommandRequest(CommandType.SCREENSHOT, {}))


@router.post(
    "/{player_id}/commands/update",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=CommandAccepted,
    dependencies=[SignedRequestDep],
)
async def update_app(
    player_id: str, body: UrlCommandRequest, services: ServicesDep
) -> CommandAccepted:
    return await _dispatch(
        services, player_id, CommandRequest(CommandType.UPDATE, {"url": body.url})
    )


@router.post(
    "/{player_id}/commands/system-update",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=CommandAccepted,
    dependencies=[SignedRequestDep],
)
async def update_system(
    player_id: str, body: UrlCommandRequest, services: ServicesDep
) -> CommandAccepted:
    return await _dispatch(
        services, player_id, CommandRequest(CommandType.SYSTEM_UPDATE, {"url": body.url})
    )


@router.post(
    "/{player_id}/notifications",
    summary="Push a notification to a player",
    response_model=NotificationResult,
)
async def send_notification(
    player_id: str,
    body: NotificationCreate,
    user: CurrentUserDep,
    services: ServicesDep,
) -> NotificationResult:
    """Deliver a push notification, queueing it for retry if the push service is down."""
    tokens = body.tokens or [player_id]
    result = await services.notifications.send(
        tokens,
        {"title": body.title, "body": body.body, "data": body.data},
    )
    logger.info("User %s notified %s (success=%s)", user.subject, player_id, result.success)
    return NotificationResult(
        success=result.success,
        queued=result.result == QUEUED_FOR_RETRY,
        error=result.error,
    )


@router.websocket("/{player_id}/events")
async def player_events(websocket: WebSocket, player_id: str) -> None:
    """Forward registration, heartbeat, ack and screenshot events of a player.

    Browsers cannot set headers on a WebSocket handshake, so the access
    token travels in the ``token`` query parameter.
    """
    services: ServiceContainer = websocket.app.state.services
    token = websocket.query_params.get("token")
    if not token:
        await websocket.close(code=WS_POLICY_VIOLATION)
        return
    try:
        user = await authenticate_token(token, services)
    except HTTPException:
        await websocket.close(code=WS_POLICY_VIOLATION)
        return

    await websocket.accept()
    queue: asyncio.Queue[FabricMessage] = asyncio.Queue(maxsize=EVENT_QUEUE_SIZE)

    def enqueue(message: FabricMessage) -> None:
        if queue.full():
            logger.warning("Event stream for %s is lagging; dropping %s", player_id, message.name)
            return
        queue.put_nowait(message)

    async def forward() -> None:
        while True:
            message = await queue.get()
            await websocket.send_json(
                {
                    "event": message.name,
                    "playerId": player_id,
                    "data": message.data,
                    "timestamp": message.timestamp,
                }
            )

    await services.dispatcher.subscribe_player(player_id, enqueue)
    logger.info("User %s watching events of %s", user.subject, player_id)
    forwarder = asyncio.create_task(forward(), name=f"player-events:{player_id}")
    try:
        # Client frames are ignored; reading is how a disconnect is observed.
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info("Event stream for %s closed by client", player_id)
    finally:
        forwarder.cancel()
        await asyncio.gather(forwarder, return_exceptions=True)
        await services.dispatcher.unsubscribe_player(player_id, enqueue)
