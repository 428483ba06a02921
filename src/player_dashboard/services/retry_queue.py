"""Bounded retry queue for notifications that could not be delivered.

Items are retried in insertion order (FIFO) by ``RetryQueue.drain``, which the
maintenance worker runs periodically. Delivery uses the raw push sender, not
the breaker-wrapped one, so a retry never re-enqueues itself.

Neither storage adapter promises exactly-once delivery: the in-memory one
loses its items on restart and the JSON file one is best effort.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Protocol

from player_dashboard.core.security import canonical_json
from player_dashboard.services.circuit_breaker import CircuitBreaker
from player_dashboard.services.push import PushSender

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_KEY = "failedNotifications"


@dataclass
class RetryItem:
    """A notification waiting for redelivery."""

    recipients: list[str]
    notification: dict[str, Any]
    first_enqueued_at: float
    last_attempt_at: float

    @property
    def dedupe_key(self) -> str:
        return canonical_json([self.recipients, self.notification])

    @property
    def identity(self) -> tuple[str, float]:
        """Stable across storage round-trips; unique because of the dedupe window."""
        return self.dedupe_key, self.first_enqueued_at

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RetryItem:
        return cls(
            recipients=[str(r) for r in data["recipients"]],
            notification=dict(data["notification"]),
            first_enqueued_at=float(data["first_enqueued_at"]),
            last_attempt_at=float(data["last_attempt_at"]),
        )


@dataclass
class DrainReport:
    """Summary of one drain pass."""

    delivered: int = 0
    failed: int = 0
    skipped: int = 0
    dropped: int = 0
    remaining: int = 0
    errors: list[str] = field(default_factory=list)


class RetryStorage(Protocol):
    """Backing store for queued items."""

    def load(self) -> list[RetryItem]: ...

    def save(self, items: Sequence[RetryItem]) -> None: ...


class InMemoryRetryStorage:
    """In-process list; contents are lost when the process exits."""

    def __init__(self) -> None:
        self._items: list[RetryItem] = []

    def load(self) -> list[RetryItem]:
        return list(self._items)

    def save(self, items: Sequence[RetryItem]) -> None:
        self._items = list(items)


class JsonFileRetryStorage:
    """A single keyed slot in a JSON document on disk holding an array of items.

    Other keys in the document are preserved, so several queues can share
    one file.
    """

    def __init__(self, path: str | os.PathLike[str], key: str = DEFAULT_STORAGE_KEY) -> None:
        self.path = Path(path)
        self.key = key

    def _read_document(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            document = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Retry storage %s is unreadable, starting empty: %s", self.path, exc)
            return {}
        return document if isinstance(document, dict) else {}

    def load(self) -> list[RetryItem]:
        items: list[RetryItem] = []
        for raw in self._read_document().get(self.key, []):
            try:
                items.append(RetryItem.from_dict(raw))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Discarding malformed retry item in %s: %s", self.path, exc)
        return items

    def save(self, items: Sequence[RetryItem]) -> None:
        document = self._read_document()
        document[self.key] = [item.to_dict() for item in items]
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(document, handle)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise


class RetryQueue:
    """FIFO queue of failed notifications with max-age and size bounds."""

    def __init__(
        self,
        storage: RetryStorage,
        sender: PushSender,
        breaker: CircuitBreaker | None = None,
        *,
        service_name: str = "push",
        max_age_seconds: float = 86_400.0,
        grace_seconds: float = 60.0,
        dedupe_window_seconds: float = 10.0,
        max_items: int = 10_000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._storage = storage
        self._sender = sender
        self._breaker = breaker
        self.service_name = service_name
        self.max_age_seconds = max_age_seconds
        self.grace_seconds = grace_seconds
        self.dedupe_window_seconds = dedupe_window_seconds
        self.max_items = max(1, max_items)
        self._clock = clock

    def enqueue(self, recipients: Sequence[str], notification: Mapping[str, Any]) -> bool:
        """Queue a notification; return False if an identical one was queued moments ago."""
        now = self._clock()
        item = RetryItem(
            recipients=[str(r) for r in recipients],
            notification=dict(notification),
            first_enqueued_at=now,
            last_attempt_at=now,
        )
        items = self._storage.load()
        key = item.dedupe_key
        for existing in items:
            if (
                existing.dedupe_key == key
                and now - existing.first_enqueued_at < self.dedupe_window_seconds
            ):
                logger.debug("Notification already queued for %s", item.recipients)
                return False

        items.append(item)
        overflow = len(items) - self.max_items
        if overflow > 0:
            logger.warning("Retry queue full; dropping %d oldest notifications", overflow)
            items = items[overflow:]
        self._storage.save(items)
        logger.info("Queued notification for %d recipients for retry", len(item.recipients))
        return True

    async def drain(self) -> DrainReport:
        """Attempt redelivery of every eligible item.

        Storage is only rewritten once the pass ends, even when it is
        interrupted, and only delivered or expired items are removed from it.
        Items enqueued while a delivery is in flight are kept.
        """
        report = DrainReport()
        items = self._storage.load()
        if not items:
            return report

        logger.info("Attempting to retry %d failed notifications", len(items))
        finished: set[tuple[str, float]] = set()
        attempted: dict[tuple[str, float], float] = {}
        try:
            for item in items:
                now = self._clock()
                if now - item.first_enqueued_at > self.max_age_seconds:
                    logger.warning(
                        "Dropping notification for %s queued %.0fs ago (max age %.0fs)",
                        item.recipients,
                        now - item.first_enqueued_at,
                        self.max_age_seconds,
                    )
                    finished.add(item.identity)
                    report.dropped += 1
                    continue
                if now - item.last_attempt_at < self.grace_seconds:
                    report.skipped += 1
                    continue
                if self._breaker is not None and self._breaker.is_open(self.service_name):
                    report.skipped += 1
                    continue

                try:
                    result = await self._sender.send(item.recipients, item.notification)
                    success, error = result.success, result.error
                except Exception as exc:
                    logger.error(
                        "Retry of notification for %s raised", item.recipients, exc_info=True
                    )
                    success, error = False, str(exc)

                if success:
                    finished.add(item.identity)
                    report.delivered += 1
                    continue
                attempted[item.identity] = self._clock()
                report.failed += 1
                if error:
                    report.errors.append(error)
        finally:
            report.remaining = self._settle(finished, attempted)

        logger.info(
            "Notification retry complete. %d succeeded, %d still pending.",
            report.delivered,
            report.remaining,
        )
        return report

    def _settle(
        self, finished: set[tuple[str, float]], attempted: dict[tuple[str, float], float]
    ) -> int:
        """Apply one drain pass to the current storage contents; return what is left."""
        pending: list[RetryItem] = []
        for item in self._storage.load():
            if item.identity in finished:
                continue
            if item.identity in attempted:
                item.last_attempt_at = attempted[item.identity]
            pending.append(item)
        if len(pending) > self.max_items:
            pending = pending[len(pending) - self.max_items :]
        self._storage.save(pending)
        return len(pending)

    def items(self) -> list[RetryItem]:
        return self._storage.load()

    def __len__(self) -> int:
        return len(self._storage.load())
