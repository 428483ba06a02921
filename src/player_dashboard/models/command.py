"""Command value types exchanged between the dashboard and players."""

from __future__ import annotations

import secrets
import string
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Final

from player_dashboard.utils.time import iso_timestamp, utcnow

_ID_ALPHABET: Final[str] = string.digits + string.ascii_lowercase
_ID_SUFFIX_LENGTH: Final[int] = 9


class CommandStatus(str, Enum):
    """Lifecycle status of a command."""

    PENDING = "pending"
    ACKED = "acked"
    FAILED = "failed"
    TIMEOUT = "timeout"

    @property
    def is_terminal(self) -> bool:
        return self is not CommandStatus.PENDING


class CommandType(str, Enum):
    """Operations a player knows how to execute."""

    UPDATE_URL = "updateUrl"
    REBOOT = "reboot"
    SCREENSHOT = "screenshot"
    UPDATE = "update"
    SYSTEM_UPDATE = "systemUpdate"


@dataclass(frozen=True)
class CommandRequest:
    """What a caller asks the dispatcher to send."""

    type: CommandType
    payload: Mapping[str, Any] = field(default_factory=dict)


@dataclass
class Command:
    """An operator-initiated instruction addressed to a single player."""

    id: str
    player_id: str
    type: CommandType
    payload: dict[str, Any]
    issued_at: datetime = field(default_factory=utcnow)
    status: CommandStatus = CommandStatus.PENDING
    error: str | None = None
    retries: int = 0
    resolved_at: datetime | None = None

    def to_envelope(self) -> dict[str, Any]:
        """Return the wire form published on the player channel."""
        return {
            "id": self.id,
            "type": self.type.value,
            "payload": dict(self.payload),
            "timestamp": iso_timestamp(self.issued_at),
            "status": CommandStatus.PENDING.value,
        }

    def snapshot(self) -> Command:
        """Return a detached copy safe to hand to callers."""
        return replace(self, payload=dict(self.payload))


def generate_command_id(clock: Callable[[], float] = time.time) -> str:
    """Return an id of the form ``<epoch ms>-<9 random base36 chars>``."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(_ID_SUFFIX_LENGTH))
    return f"{int(clock() * 1000)}-{suffix}"
