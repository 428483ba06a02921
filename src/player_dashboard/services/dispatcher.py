"""Command dispatch to players over the messaging fabric.

A command is recorded as pending, published on the player's channel through
the ``messaging`` circuit and then either acknowledged by the player, timed
out by a per-command timer, or failed synchronously when the publish does
not reach the fabric. While the circuit is open the command is handed to the
retry queue as a push notification instead.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Callable, Mapping, Sequence
from typing import Any, Final

from player_dashboard.core.errors import CommandStateError, UnknownCommandError
from player_dashboard.models.command import (
    Command,
    CommandRequest,
    CommandStatus,
    CommandType,
    generate_command_id,
)
from player_dashboard.services.circuit_breaker import CircuitBreaker
from player_dashboard.services.fabric import MessageCallback, MessagingFabric
from player_dashboard.services.registry import CommandRegistry
from player_dashboard.services.retry_queue import RetryQueue

logger = logging.getLogger(__name__)

MESSAGING_SERVICE: Final[str] = "messaging"
COMMAND_EVENT: Final[str] = "command"
PLAYER_EVENTS: Final[tuple[str, ...]] = (
    "registration",
    "heartbeat",
    "commandAck",
    "screenshotStatus",
)
DEFAULT_COMMAND_TIMEOUT_SECONDS: Final[float] = 30.0
TIMEOUT_ERROR: Final[str] = "Command acknowledgment timeout"
QUEUED_ERROR: Final[str] = "Messaging unavailable; command queued for push retry"
_MAX_ID_ATTEMPTS: Final[int] = 8


class _QueuedForRetry:
    """Marker returned by the messaging fallback."""

    def __repr__(self) -> str:
        return "queued_for_retry"


QUEUED_FOR_RETRY: Final = _QueuedForRetry()


def player_channel(player_id: str) -> str:
    return f"player:{player_id}"


def _player_from_channel(channel: str) -> str:
    return channel.split(":", 1)[1] if ":" in channel else channel


class Dispatcher:
    """Issue commands to players and track them until acknowledged or timed out."""

    def __init__(
        self,
        fabric: MessagingFabric,
        registry: CommandRegistry,
        breaker: CircuitBreaker,
        retry_queue: RetryQueue | None = None,
        *,
        timeout_seconds: float = DEFAULT_COMMAND_TIMEOUT_SECONDS,
        failure_threshold: int = 3,
        reset_timeout: float = 60.0,
        recipient_resolver: Callable[[str], Sequence[str]] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._fabric = fabric
        self._registry = registry
        self._breaker = breaker
        self._retry_queue = retry_queue
        self.timeout_seconds = timeout_seconds
        self._recipient_resolver = recipient_resolver or (lambda player_id: [player_id])
        self._clock = clock
        self._player_listeners: dict[str, list[MessageCallback]] = {}
        breaker.register(
            MESSAGING_SERVICE,
            failure_threshold=failure_threshold,
            reset_timeout=reset_timeout,
            fallback=self._queue_for_retry if retry_queue is not None else None,
            health_check=fabric.ping,
        )

    @property
    def registry(self) -> CommandRegistry:
        return self._registry

    async def send(self, player_id: str, request: CommandRequest) -> str:
        """Publish a command to ``player_id`` and return its id.

        The id is returned even when publishing fails; the failure is then
        visible through ``status``.
        """
        command = Command(
            id=self._allocate_id(),
            player_id=player_id,
            type=CommandType(request.type),
            payload=dict(request.payload),
        )
        self._registry.create(command)
        channel = player_channel(player_id)

        try:
            outcome = await self._breaker.exec(
                MESSAGING_SERVICE,
                self._fabric.publish,
                channel,
                COMMAND_EVENT,
                command.to_envelope(),
            )
        except Exception as exc:
            logger.error("Error sending command %s to %s", command.id, player_id, exc_info=True)
            self._fail(command.id, str(exc) or exc.__class__.__name__)
            return command.id

        if outcome is QUEUED_FOR_RETRY:
            self._fail(command.id, QUEUED_ERROR)
            return command.id

        logger.info("Command %s (%s) sent to %s", command.id, command.type.value, player_id)
        current = self._registry.get(command.id)
        if current is not None and current.status is CommandStatus.PENDING:
            handle = asyncio.get_running_loop().call_later(
                self.timeout_seconds, self._on_timeout, command.id
            )
            self._registry.attach_timeout(command.id, handle)
        return command.id

    def status(self, command_id: str) -> Command | None:
        return self._registry.get(command_id)

    async def update_url(self, player_id: str, url: str) -> str:
        return await self.send(player_id, CommandRequest(CommandType.UPDATE_URL, {"url": url}))

    async def reboot(self, player_id: str) -> str:
        return await self.send(player_id, CommandRequest(CommandType.REBOOT, {}))

    async def screenshot(self, player_id: str) -> str:
        return await self.send(player_id, CommandRequest(CommandType.SCREENSHOT, {}))

    async def update_app(self, player_id: str, url: str) -> str:
        return await self.send(player_id, CommandRequest(CommandType.UPDATE, {"url": url}))

    async def update_system(self, player_id: str, url: str) -> str:
        return await self.send(player_id, CommandRequest(CommandType.SYSTEM_UPDATE, {"url": url}))

    async def subscribe_player(self, player_id: str, callback: MessageCallback) -> None:
        """Observe registration, heartbeat, ack and screenshot events of a player."""
        listeners = self._player_listeners.get(player_id)
        if listeners is not None:
            listeners.append(callback)
            return
        self._player_listeners[player_id] = [callback]
        channel = player_channel(player_id)
        for event_name in PLAYER_EVENTS:
            await self._fabric.subscribe(channel, event_name, self._fan_out_for(player_id))

    async def unsubscribe_player(
        self, player_id: str, callback: MessageCallback | None = None
    ) -> None:
        """Stop observing a player.

        With ``callback`` only that listener is removed; the channel is closed
        once no listeners remain.
        """
        listeners = self._player_listeners.get(player_id)
        if listeners is None:
            return
        if callback is not None and callback in listeners:
            listeners.remove(callback)
        if callback is None or not listeners:
            self._player_listeners.pop(player_id, None)
            await self._fabric.close(player_channel(player_id))

    def watched_players(self) -> list[str]:
        return list(self._player_listeners)

    async def close(self) -> None:
        for player_id in list(self._player_listeners):
            await self.unsubscribe_player(player_id)

    def _fan_out_for(self, player_id: str) -> MessageCallback:
        async def fan_out(message: Any) -> None:
            for listener in list(self._player_listeners.get(player_id, [])):
                result = listener(message)
                if asyncio.iscoroutine(result):
                    await result

        return fan_out

    def _allocate_id(self) -> str:
        for _ in range(_MAX_ID_ATTEMPTS):
            command_id = generate_command_id(self._clock)
            if command_id not in self._registry:
                return command_id
        raise RuntimeError("Could not allocate a unique command id")

    def _fail(self, command_id: str, error: str) -> None:
        try:
            self._registry.resolve(command_id, CommandStatus.FAILED, error)
        except CommandStateError:
            logger.debug("Command %s resolved before publish failure was recorded", command_id)

    def _on_timeout(self, command_id: str) -> None:
        try:
            resolved = self._registry.resolve(command_id, CommandStatus.TIMEOUT, TIMEOUT_ERROR)
        except (CommandStateError, UnknownCommandError):
            return
        if resolved:
            logger.warning("Command %s timed out waiting for acknowledgment", command_id)

    def _queue_for_retry(
        self, channel: str, event_name: str, envelope: Mapping[str, Any]
    ) -> _QueuedForRetry:
        player_id = _player_from_channel(channel)
        recipients = list(self._recipient_resolver(player_id))
        notification = {
            "title": "New Command",
            "body": f"Command type: {envelope['type']}",
            "data": {
                "type": event_name,
                "commandId": envelope["id"],
                "commandType": envelope["type"],
                "payload": json.dumps(envelope.get("payload", {})),
                "timestamp": envelope["timestamp"],
            },
        }
        if self._retry_queue is not None:
            self._retry_queue.enqueue(recipients, notification)
        if self._registry.get(envelope["id"]) is not None:
            self._registry.increment_retries(envelope["id"])
        logger.warning("Messaging unavailable; command %s queued for push retry", envelope["id"])
        return QUEUED_FOR_RETRY
