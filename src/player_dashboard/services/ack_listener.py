"""Consume command acknowledgments emitted by players."""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Final

from player_dashboard.core.errors import CommandStateError, UnknownCommandError
from player_dashboard.models.command import CommandStatus
from player_dashboard.services.dispatcher import Dispatcher
from player_dashboard.services.fabric import FabricMessage, MessagingFabric
from player_dashboard.services.registry import CommandRegistry
from player_dashboard.utils.time import utcnow

logger = logging.getLogger(__name__)

ACK_CHANNEL: Final[str] = "command-acknowledgments"
ACK_EVENT: Final[str] = "acknowledgment"
PLAYER_ACK_EVENT: Final[str] = "commandAck"

# Status words emitted by player firmware, normalised to terminal statuses
_STATUS_ALIASES: Final[dict[str, CommandStatus]] = {
    "acked": CommandStatus.ACKED,
    "ok": CommandStatus.ACKED,
    "success": CommandStatus.ACKED,
    "completed": CommandStatus.ACKED,
    "failed": CommandStatus.FAILED,
    "error": CommandStatus.FAILED,
}


@dataclass(frozen=True)
class Acknowledgment:
    """Acknowledgment as reported to the user-supplied callback."""

    command_id: str
    status: CommandStatus
    error: str | None
    timestamp: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "commandId": self.command_id,
            "status": self.status.value,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
        }


AckCallback = Callable[[Acknowledgment], Awaitable[None] | None]


def parse_ack(body: Any) -> tuple[str, CommandStatus, str | None] | None:
    """Extract ``(command_id, status, error)`` from an ack body, or None if malformed."""
    if not isinstance(body, Mapping):
        return None
    command_id = body.get("commandId")
    raw_status = body.get("status")
    if not isinstance(command_id, str) or not command_id or not isinstance(raw_status, str):
        return None
    status = _STATUS_ALIASES.get(raw_status.lower())
    if status is None:
        return None
    error = body.get("error")
    return command_id, status, str(error) if error is not None else None


class AckListener:
    """Advance the registry from player acknowledgments.

    Late or duplicate acknowledgments are dropped quietly: the fabric may
    redeliver after the timeout has already resolved the command.
    """

    def __init__(
        self,
        fabric: MessagingFabric,
        registry: CommandRegistry,
        on_ack: AckCallback | None = None,
        *,
        dispatcher: Dispatcher | None = None,
    ) -> None:
        self._fabric = fabric
        self._registry = registry
        self._on_ack = on_ack
        self._dispatcher = dispatcher
        self._watched: set[str] = set()
        self._started = False

    async def start(self) -> None:
        if self._started:
            return
        await self._fabric.subscribe(ACK_CHANNEL, ACK_EVENT, self.handle)
        self._started = True
        logger.info("Listening for command acknowledgments on %s", ACK_CHANNEL)

    async def stop(self) -> None:
        if self._started:
            await self._fabric.close(ACK_CHANNEL)
            self._started = False
        if self._dispatcher is not None:
            for player_id in list(self._watched):
                await self._dispatcher.unsubscribe_player(player_id, self._on_player_event)
        self._watched.clear()

    async def watch_player(self, player_id: str) -> None:
        """Also accept acknowledgments published on the player's own channel."""
        if player_id in self._watched or self._dispatcher is None:
            return
        await self._dispatcher.subscribe_player(player_id, self._on_player_event)
        self._watched.add(player_id)

    async def _on_player_event(self, message: FabricMessage) -> None:
        if message.name == PLAYER_ACK_EVENT:
            await self.handle(message)

    async def handle(self, message: FabricMessage) -> Acknowledgment | None:
        """Apply one acknowledgment; return it if it resolved a command."""
        parsed = parse_ack(message.data)
        if parsed is None:
            logger.warning("Dropping malformed acknowledgment on %s", message.channel)
            return None
        command_id, status, error = parsed

        command = self._registry.get(command_id)
        if command is None:
            logger.debug("Dropping acknowledgment for unknown command %s", command_id)
            return None
        if command.status.is_terminal:
            logger.debug(
                "Dropping late acknowledgment for %s (already %s)", command_id, command.status.value
            )
            return None

        try:
            self._registry.resolve(command_id, status, error)
        except (CommandStateError, UnknownCommandError):
            logger.debug("Dropping acknowledgment for %s lost to a concurrent resolution", command_id)
            return None

        ack = Acknowledgment(command_id=command_id, status=status, error=error, timestamp=utcnow())
        if self._on_ack is not None:
            try:
                result = self._on_ack(ack)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.error("Acknowledgment callback for %s raised", command_id, exc_info=True)
        return ack
