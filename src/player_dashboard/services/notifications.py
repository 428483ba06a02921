"""Breaker-guarded push notifications with queue-for-retry fallback."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any, Final

from player_dashboard.core.errors import TransportError
from player_dashboard.services.circuit_breaker import CircuitBreaker
from player_dashboard.services.push import PushResult, PushSender
from player_dashboard.services.retry_queue import RetryQueue

logger = logging.getLogger(__name__)

PUSH_SERVICE: Final[str] = "push"
QUEUED_FOR_RETRY: Final[str] = "queued_for_retry"


class NotificationService:
    """Send notifications to players, queueing them when the push service is down."""

    def __init__(
        self,
        sender: PushSender,
        breaker: CircuitBreaker,
        retry_queue: RetryQueue,
        *,
        failure_threshold: int = 3,
        reset_timeout: float = 60.0,
    ) -> None:
        self._sender = sender
        self._breaker = breaker
        self._retry_queue = retry_queue
        breaker.register(
            PUSH_SERVICE,
            failure_threshold=failure_threshold,
            reset_timeout=reset_timeout,
            fallback=self._queue_for_retry,
        )

    async def send(self, tokens: Sequence[str], notification: Mapping[str, Any]) -> PushResult:
        return await self._breaker.exec(PUSH_SERVICE, self._deliver, tokens, notification)

    async def _deliver(self, tokens: Sequence[str], notification: Mapping[str, Any]) -> PushResult:
        result = await self._sender.send(tokens, notification)
        if not result.success:
            raise TransportError(result.error or "Push delivery failed")
        return result

    def _queue_for_retry(
        self, tokens: Sequence[str], notification: Mapping[str, Any]
    ) -> PushResult:
        logger.error("Push service unavailable. Queued notification for %s", list(tokens))
        self._retry_queue.enqueue(tokens, notification)
        return PushResult(success=False, result=QUEUED_FOR_RETRY, error="Push service unavailable")
