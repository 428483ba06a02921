"""Exception hierarchy for the player dashboard."""

from __future__ import annotations


class PlayerDashboardError(RuntimeError):
    """Base class for all player dashboard failures."""


class ConfigurationError(PlayerDashboardError):
    """Raised when required configuration is missing at startup."""


class TransportError(PlayerDashboardError):
    """Raised when the messaging fabric or push service rejects a delivery."""


class CircuitOpenError(PlayerDashboardError):
    """Raised when a guarded service is open and no fallback is configured."""

    def __init__(self, service: str) -> None:
        super().__init__(f"Service {service} is unavailable")
        self.service = service


class CommandError(PlayerDashboardError):
    """Base class for command registry failures."""


class DuplicateCommandError(CommandError):
    """Raised when a command id is reused."""


class UnknownCommandError(CommandError):
    """Raised when a command id is not present in the registry."""


class CommandStateError(CommandError):
    """Raised on an illegal command status transition."""
