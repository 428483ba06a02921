"""Per-service circuit breaker guarding outbound calls.

Each named service tracks consecutive failures. Once the failure threshold is
reached the circuit opens and calls are answered by the service's fallback
until the reset timeout elapses; the next call is then a probe that either
closes the circuit again or reopens it.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from player_dashboard.core.errors import CircuitOpenError

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_THRESHOLD = 3
DEFAULT_RESET_TIMEOUT = 60.0


class CircuitState(Enum):
    """Circuit breaker states for fault tolerance."""

    CLOSED = "closed"  # Normal operation - calls allowed
    OPEN = "open"  # Calls short-circuited to the fallback
    HALF_OPEN = "half-open"  # Next call probes the service


@dataclass(frozen=True)
class ServicePolicy:
    """Per-service breaker configuration."""

    failure_threshold: int = DEFAULT_FAILURE_THRESHOLD
    reset_timeout: float = DEFAULT_RESET_TIMEOUT
    fallback: Callable[..., Any] | None = None
    health_check: Callable[[], Any] | None = None
    call_timeout: float | None = None


@dataclass
class ServiceCircuit:
    """Mutable health record for one service."""

    name: str
    policy: ServicePolicy
    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    opened_at: float | None = None
    last_failure: float | None = None
    last_success: float | None = None
    probe_in_flight: bool = False

    def snapshot(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "failure_threshold": self.policy.failure_threshold,
            "reset_timeout": self.policy.reset_timeout,
            "opened_at": self.opened_at,
            "last_failure": self.last_failure,
            "last_success": self.last_success,
        }


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class CircuitBreaker:
    """Registry of circuits keyed by service name."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._circuits: dict[str, ServiceCircuit] = {}

    def register(
        self,
        name: str,
        *,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        reset_timeout: float = DEFAULT_RESET_TIMEOUT,
        fallback: Callable[..., Any] | None = None,
        health_check: Callable[[], Any] | None = None,
        call_timeout: float | None = None,
    ) -> ServiceCircuit:
        """Register ``name`` (or replace its policy) and return its circuit."""
        policy = ServicePolicy(
            failure_threshold=max(1, failure_threshold),
            reset_timeout=reset_timeout,
            fallback=fallback,
            health_check=health_check,
            call_timeout=call_timeout,
        )
        circuit = self._circuits.get(name)
        if circuit is None:
            circuit = ServiceCircuit(name=name, policy=policy, last_success=self._clock())
            self._circuits[name] = circuit
        else:
            circuit.policy = policy
        return circuit

    def state(self, name: str) -> CircuitState | None:
        circuit = self._circuits.get(name)
        return circuit.state if circuit else None

    def is_open(self, name: str) -> bool:
        """Return True while ``name`` is open and still inside its reset window."""
        circuit = self._circuits.get(name)
        return circuit is not None and self._short_circuits(circuit)

    def _short_circuits(self, circuit: ServiceCircuit) -> bool:
        if circuit.state is CircuitState.HALF_OPEN:
            return circuit.probe_in_flight
        if circuit.state is not CircuitState.OPEN:
            return False
        opened_at = circuit.opened_at if circuit.opened_at is not None else 0.0
        return self._clock() < opened_at + circuit.policy.reset_timeout

    async def exec(self, name: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Call ``fn`` under the protection of the ``name`` circuit.

        Returns the result of ``fn``, or of the fallback when the circuit is
        open or ``fn`` fails.

        Raises:
            CircuitOpenError: The circuit is open and no fallback is configured.
            Exception: Whatever ``fn`` raised, when no fallback is configured.
        """
        circuit = self._circuits.get(name)
        if circuit is None:
            logger.warning("Service %r not registered with circuit breaker", name)
            return await _resolve(fn(*args, **kwargs))

        if self._short_circuits(circuit):
            logger.warning("Circuit for %s is OPEN. Using fallback.", name)
            if circuit.policy.fallback is None:
                raise CircuitOpenError(name)
            return await _resolve(circuit.policy.fallback(*args, **kwargs))

        if circuit.state is CircuitState.OPEN:
            logger.info("Circuit for %s is switching to HALF-OPEN", name)
            circuit.state = CircuitState.HALF_OPEN

        probing = circuit.state is CircuitState.HALF_OPEN
        if probing:
            circuit.probe_in_flight = True
        try:
            result = await self._invoke(circuit, fn, *args, **kwargs)
        except Exception as exc:
            self._on_failure(circuit, exc)
            if circuit.policy.fallback is None:
                raise
            return await _resolve(circuit.policy.fallback(*args, **kwargs))
        finally:
            if probing:
                circuit.probe_in_flight = False

        self._on_success(circuit)
        return result

    async def _invoke(
        self, circuit: ServiceCircuit, fn: Callable[..., Any], *args: Any, **kwargs: Any
    ) -> Any:
        if circuit.policy.call_timeout is None:
            return await _resolve(fn(*args, **kwargs))
        try:
            return await asyncio.wait_for(_resolve(fn(*args, **kwargs)), circuit.policy.call_timeout)
        except TimeoutError as err:
            raise TimeoutError(
                f"Service {circuit.name} timed out after {circuit.policy.call_timeout}s"
            ) from err

    def _on_success(self, circuit: ServiceCircuit) -> None:
        circuit.failure_count = 0
        circuit.last_success = self._clock()
        if circuit.state is CircuitState.HALF_OPEN:
            logger.info("Circuit for %s is now CLOSED", circuit.name)
            circuit.state = CircuitState.CLOSED
            circuit.opened_at = None

    def _on_failure(self, circuit: ServiceCircuit, exc: BaseException) -> None:
        now = self._clock()
        circuit.failure_count += 1
        circuit.last_failure = now
        logger.warning(
            "Service %s failure: %s. Count: %d", circuit.name, exc, circuit.failure_count
        )
        if circuit.state is CircuitState.HALF_OPEN or (
            circuit.state is CircuitState.CLOSED
            and circuit.failure_count >= circuit.policy.failure_threshold
        ):
            logger.error(
                "Circuit for %s is now OPEN due to %d failures",
                circuit.name,
                circuit.failure_count,
            )
            circuit.state = CircuitState.OPEN
            circuit.opened_at = now

    async def check_health(self, name: str) -> bool:
        """Run the health check of an open circuit; move it to half-open if healthy."""
        circuit = self._circuits.get(name)
        if circuit is None or circuit.state is not CircuitState.OPEN:
            return False
        if circuit.policy.health_check is None:
            return False
        try:
            healthy = bool(await _resolve(circuit.policy.health_check()))
        except Exception as exc:
            logger.warning("Health check for %s failed: %s", name, exc)
            return False
        if healthy:
            logger.info("Health check for %s succeeded, switching to HALF-OPEN", name)
            circuit.state = CircuitState.HALF_OPEN
            circuit.failure_count = 0
        return healthy

    async def check_all_health(self) -> list[str]:
        """Probe every open circuit with a health check; return the names that recovered."""
        recovered = []
        for name in list(self._circuits):
            if await self.check_health(name):
                recovered.append(name)
        return recovered

    def status(self, name: str) -> dict[str, Any] | None:
        circuit = self._circuits.get(name)
        return circuit.snapshot() if circuit else None

    def all_status(self) -> list[dict[str, Any]]:
        return [circuit.snapshot() for circuit in self._circuits.values()]

    def reset(self, name: str) -> bool:
        """Force ``name`` back to closed; return False if it is not registered."""
        circuit = self._circuits.get(name)
        if circuit is None:
            return False
        circuit.state = CircuitState.CLOSED
        circuit.failure_count = 0
        circuit.opened_at = None
        circuit.last_failure = None
        circuit.last_success = self._clock()
        circuit.probe_in_flight = False
        logger.info("Circuit for %s was reset", name)
        return True

    def __contains__(self, name: object) -> bool:
        return name in self._circuits
