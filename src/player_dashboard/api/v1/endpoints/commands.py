"""Command status endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, HTTPException, Query, status

from player_dashboard.api.v1.dependencies import CurrentUserDep, ServicesDep
from player_dashboard.schemas.command import CommandResponse

router = APIRouter(prefix="/commands", tags=["commands"])

MAX_WAIT_SECONDS = 60.0


@router.get("/{command_id}", response_model=CommandResponse)
async def get_command(
    command_id: str,
    user: CurrentUserDep,
    services: ServicesDep,
    wait: Annotated[float | None, Query(ge=0, le=MAX_WAIT_SECONDS)] = None,
) -> CommandResponse:
    """Return the state of a command.

    With ``wait`` the request blocks for up to that many seconds while the
    command is still pending, and returns as soon as it resolves.
    """
    command = services.dispatcher.status(command_id)
    if command is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Command not found")
    if wait and not command.status.is_terminal:
        try:
            command = await services.registry.wait(command_id, timeout=wait)
        except TimeoutError:
            command = services.dispatcher.status(command_id) or command
    return CommandResponse.from_command(command)
