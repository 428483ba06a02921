"""Command request and status schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from player_dashboard.models.command import Command, CommandStatus, CommandType


class CommandCreate(BaseModel):
    """Generic command submission."""

    type: CommandType = Field(..., description="Command type understood by the player")
    payload: dict[str, Any] = Field(default_factory=dict)


class UrlCommandRequest(BaseModel):
    """Body of the URL, app update and system update shortcuts."""

    url: str = Field(..., min_length=1, max_length=2048)


class CommandAccepted(BaseModel):
    """Returned as soon as the command has been handed to the fabric (or failed)."""

    command_id: str
    status: CommandStatus
    error: str | None = None


class CommandResponse(BaseModel):
    """Current state of a command."""

    id: str
    player_id: str
    type: CommandType
    payload: dict[str, Any]
    status: CommandStatus
    error: str | None = None
    retries: int
    issued_at: datetime
    resolved_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)

    @classmethod
    def from_command(cls, command: Command) -> "CommandResponse":
        return cls.model_validate(command)
