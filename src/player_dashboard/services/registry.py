"""In-memory table of in-flight commands.

All mutation happens on the event loop, so the check-and-set in ``resolve``
is enough to guarantee that exactly one terminal transition wins between the
timeout timer, the acknowledgment listener and a failed publish.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from player_dashboard.core.errors import (
    CommandStateError,
    DuplicateCommandError,
    UnknownCommandError,
)
from player_dashboard.models.command import Command, CommandStatus
from player_dashboard.utils.time import utcnow

logger = logging.getLogger(__name__)

DEFAULT_GRACE_SECONDS = 300.0

Waiter = Callable[[Command], None]


@dataclass
class _Entry:
    command: Command
    waiters: list[Waiter] = field(default_factory=list)
    futures: list[asyncio.Future[Command]] = field(default_factory=list)
    timeout_handle: asyncio.TimerHandle | None = None
    eviction_handle: asyncio.TimerHandle | None = None


class CommandRegistry:
    """Map of command id to command state plus one-shot waiters."""

    def __init__(self, *, grace_seconds: float = DEFAULT_GRACE_SECONDS) -> None:
        self.grace_seconds = grace_seconds
        self._entries: dict[str, _Entry] = {}

    def create(self, command: Command) -> Command:
        """Insert ``command`` as pending.

        Raises:
            DuplicateCommandError: If the id belongs to a command still held by the registry.
        """
        if command.id in self._entries:
            raise DuplicateCommandError(f"Command id {command.id} already used")
        command.status = CommandStatus.PENDING
        self._entries[command.id] = _Entry(command=command)
        return command.snapshot()

    def resolve(
        self, command_id: str, status: CommandStatus | str, error: str | None = None
    ) -> bool:
        """Move a pending command to a terminal status.

        Returns:
            True if this call performed the transition, False if the command
            already had the same terminal status.

        Raises:
            UnknownCommandError: The id is not (or no longer) in the registry.
            CommandStateError: The target is not terminal, or the command
                already reached a different terminal status.
        """
        entry = self._entries.get(command_id)
        if entry is None:
            raise UnknownCommandError(f"Unknown command {command_id}")
        target = CommandStatus(status)
        if not target.is_terminal:
            raise CommandStateError(f"Cannot resolve command {command_id} to {target.value}")

        command = entry.command
        if command.status is target:
            return False
        if command.status.is_terminal:
            raise CommandStateError(
                f"Command {command_id} is already {command.status.value}; "
                f"refusing transition to {target.value}"
            )

        command.status = target
        command.error = error
        command.resolved_at = utcnow()
        logger.info("Command %s resolved as %s", command_id, target.value)

        if entry.timeout_handle is not None:
            entry.timeout_handle.cancel()
            entry.timeout_handle = None
        self._fire(entry)
        self._schedule_eviction(entry)
        return True

    def get(self, command_id: str) -> Command | None:
        entry = self._entries.get(command_id)
        return entry.command.snapshot() if entry else None

    def subscribe(self, command_id: str, callback: Waiter) -> None:
        """Attach a one-shot callback fired when the command resolves.

        If the command is already terminal the callback runs on the next loop
        iteration.
        """
        entry = self._require(command_id)
        if entry.command.status.is_terminal:
            loop = asyncio.get_running_loop()
            loop.call_soon(self._safe_call, callback, entry.command.snapshot())
            return
        entry.waiters.append(callback)

    async def wait(self, command_id: str, timeout: float | None = None) -> Command:
        """Wait until the command resolves and return its final snapshot."""
        entry = self._require(command_id)
        if entry.command.status.is_terminal:
            return entry.command.snapshot()
        future: asyncio.Future[Command] = asyncio.get_running_loop().create_future()
        entry.futures.append(future)
        try:
            return await asyncio.wait_for(asyncio.shield(future), timeout)
        finally:
            if not future.done():
                future.cancel()
            if future in entry.futures:
                entry.futures.remove(future)

    def attach_timeout(self, command_id: str, handle: asyncio.TimerHandle) -> None:
        """Associate the acknowledgment timer so ``resolve`` can cancel it."""
        entry = self._require(command_id)
        if entry.command.status.is_terminal:
            handle.cancel()
            return
        if entry.timeout_handle is not None:
            entry.timeout_handle.cancel()
        entry.timeout_handle = handle

    def increment_retries(self, command_id: str) -> int:
        entry = self._require(command_id)
        entry.command.retries += 1
        return entry.command.retries

    def close(self) -> None:
        """Cancel every timer; used on shutdown."""
        for entry in self._entries.values():
            for handle in (entry.timeout_handle, entry.eviction_handle):
                if handle is not None:
                    handle.cancel()
            for future in entry.futures:
                if not future.done():
                    future.cancel()
        self._entries.clear()

    def _require(self, command_id: str) -> _Entry:
        entry = self._entries.get(command_id)
        if entry is None:
            raise UnknownCommandError(f"Unknown command {command_id}")
        return entry

    def _fire(self, entry: _Entry) -> None:
        waiters, entry.waiters = entry.waiters, []
        futures, entry.futures = entry.futures, []
        snapshot = entry.command.snapshot()
        for waiter in waiters:
            self._safe_call(waiter, snapshot)
        for future in futures:
            if not future.done():
                future.set_result(snapshot)

    @staticmethod
    def _safe_call(callback: Waiter, command: Command) -> None:
        try:
            callback(command)
        except Exception:
            logger.error("Command waiter for %s raised", command.id, exc_info=True)

    def _schedule_eviction(self, entry: _Entry) -> None:
        command_id = entry.command.id
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop; command %s kept without eviction timer", command_id)
            return
        entry.eviction_handle = loop.call_later(self.grace_seconds, self._evict, command_id)

    def _evict(self, command_id: str) -> None:
        if self._entries.pop(command_id, None) is not None:
            logger.debug("Evicted command %s after grace period", command_id)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, command_id: object) -> bool:
        return command_id in self._entries
