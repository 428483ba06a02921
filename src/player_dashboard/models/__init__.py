"""Domain models for the player dashboard."""

from .command import (
    Command,
    CommandRequest,
    CommandStatus,
    CommandType,
    generate_command_id,
)

__all__ = [
    "Command",
    "CommandRequest",
    "CommandStatus",
    "CommandType",
    "generate_command_id",
]
