"""Background maintenance: retry draining, denylist purging and circuit health checks."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from player_dashboard.services.circuit_breaker import CircuitBreaker
from player_dashboard.services.retry_queue import RetryQueue
from player_dashboard.services.revocation import RevocationStore

logger = logging.getLogger(__name__)


@dataclass
class MaintenanceState:
    """Counters describing what the worker has done so far."""

    drains: int = 0
    purges: int = 0
    health_checks: int = 0
    tokens_purged: int = 0
    notifications_delivered: int = 0
    last_errors: dict[str, str] = field(default_factory=dict)


class MaintenanceWorker:
    """Run periodic housekeeping jobs until stopped.

    Each job has its own loop so a slow drain does not delay health checks.
    A failing job is logged and retried on its next tick.
    """

    def __init__(
        self,
        *,
        retry_queue: RetryQueue | None = None,
        revocation: RevocationStore | None = None,
        breaker: CircuitBreaker | None = None,
        drain_interval: float = 300.0,
        purge_interval: float = 3_600.0,
        health_interval: float = 10.0,
    ) -> None:
        self.retry_queue = retry_queue
        self.revocation = revocation
        self.breaker = breaker
        self.drain_interval = drain_interval
        self.purge_interval = purge_interval
        self.health_interval = health_interval
        self.state = MaintenanceState()
        self._tasks: list[asyncio.Task[None]] = []
        self._stopping = asyncio.Event()

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    async def start(self) -> None:
        """Start the background loops."""
        if self.running:
            return
        self._stopping.clear()
        jobs: list[tuple[str, float, Callable[[], Awaitable[Any]]]] = []
        if self.retry_queue is not None:
            jobs.append(("retry-drain", self.drain_interval, self.drain_retry_queue))
        if self.revocation is not None:
            jobs.append(("denylist-purge", self.purge_interval, self.purge_denylist))
        if self.breaker is not None:
            jobs.append(("circuit-health", self.health_interval, self.check_circuits))
        self._tasks = [
            asyncio.create_task(self._run_every(name, interval, job), name=f"maintenance:{name}")
            for name, interval, job in jobs
        ]
        logger.info("Maintenance worker started with %d jobs", len(self._tasks))

    async def stop(self) -> None:
        """Stop the background loops and wait for them to finish."""
        if not self._tasks:
            return
        self._stopping.set()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

    async def run_once(self) -> MaintenanceState:
        """Run every configured job a single time, in order."""
        if self.retry_queue is not None:
            await self.drain_retry_queue()
        if self.revocation is not None:
            await self.purge_denylist()
        if self.breaker is not None:
            await self.check_circuits()
        return self.state

    async def drain_retry_queue(self) -> None:
        if self.retry_queue is None:
            return
        report = await self.retry_queue.drain()
        self.state.drains += 1
        self.state.notifications_delivered += report.delivered

    async def purge_denylist(self) -> None:
        if self.revocation is None:
            return
        logger.info("Running denylist cleanup job")
        cleared = await self.revocation.purge_expired()
        self.state.purges += 1
        self.state.tokens_purged += cleared

    async def check_circuits(self) -> None:
        if self.breaker is None:
            return
        recovered = await self.breaker.check_all_health()
        self.state.health_checks += 1
        if recovered:
            logger.info("Circuits recovered: %s", ", ".join(recovered))

    async def _run_every(
        self, name: str, interval: float, job: Callable[[], Awaitable[Any]]
    ) -> None:
        interval = max(0.01, float(interval))
        while not self._stopping.is_set():
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=interval)
            except TimeoutError:
                pass
            if self._stopping.is_set():
                return
            try:
                await job()
            except Exception as exc:
                logger.error("Maintenance job %s failed: %s", name, exc, exc_info=True)
                self.state.last_errors[name] = str(exc)
