"""Signed-request envelopes with a single-use replay window."""
from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any, Final

from player_dashboard.core.security import canonical_json, compute_mac, macs_equal

logger = logging.getLogger(__name__)

SIGNATURE_WINDOW_SECONDS: Final[int] = 300


class RequestSigner:
    """Sign and verify ``(payload, timestamp, subject)`` envelopes.

    The MAC is HMAC-SHA256 over the canonical JSON of
    ``{"payload", "timestamp", "subject"}``; timestamps are milliseconds since
    the epoch. An accepted ``(mac, subject)`` pair is remembered until the end
    of its acceptance window so the same envelope cannot be presented twice.
    """

    def __init__(
        self,
        secret: str,
        *,
        window_seconds: int = SIGNATURE_WINDOW_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._secret = secret
        self._window_ms = int(window_seconds * 1000)
        self._clock = clock
        self._seen: dict[tuple[str, str], int] = {}

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    @staticmethod
    def _message(payload: Any, timestamp: int, subject: str) -> str:
        return canonical_json({"payload": payload, "timestamp": timestamp, "subject": subject})

    def sign(self, payload: Any, subject: str, timestamp: int | None = None) -> tuple[str, int]:
        """Return ``(mac, timestamp)`` for the payload on behalf of ``subject``."""
        ts = self._now_ms() if timestamp is None else int(timestamp)
        return compute_mac(self._secret, self._message(payload, ts, subject)), ts

    def verify(self, payload: Any, mac: str, timestamp: int, subject: str) -> bool:
        """Return True if the envelope is authentic, fresh and unused.

        Rejection reasons are deliberately not reported to the caller.
        """
        now = self._now_ms()
        self._sweep(now)

        if abs(now - timestamp) > self._window_ms:
            logger.debug("Rejected signature for %s: outside replay window", subject)
            return False

        cache_key = (mac, subject)
        if cache_key in self._seen:
            logger.warning("Rejected replayed signature for %s", subject)
            return False

        expected = compute_mac(self._secret, self._message(payload, timestamp, subject))
        if not macs_equal(expected, mac):
            logger.debug("Rejected signature for %s: MAC mismatch", subject)
            return False

        self._seen[cache_key] = timestamp + self._window_ms
        return True

    def _sweep(self, now_ms: int) -> None:
        expired = [key for key, expires_at in self._seen.items() if expires_at < now_ms]
        for key in expired:
            del self._seen[key]

    @property
    def window_seconds(self) -> int:
        return self._window_ms // 1000

    def __len__(self) -> int:
        return len(self._seen)
