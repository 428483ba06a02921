"""Command dispatch, revocation and resilience services."""

from .ack_listener import AckListener
from .circuit_breaker import CircuitBreaker, CircuitState
from .container import ServiceContainer, build_container
from .dispatcher import Dispatcher
from .registry import CommandRegistry
from .retry_queue import RetryQueue
from .revocation import RevocationStore
from .signing import RequestSigner

__all__ = [
    "AckListener",
    "CircuitBreaker",
    "CircuitState",
    "CommandRegistry",
    "Dispatcher",
    "RequestSigner",
    "RetryQueue",
    "RevocationStore",
    "ServiceContainer",
    "build_container",
]
