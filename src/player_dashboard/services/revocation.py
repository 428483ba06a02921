"""Token revocation (denylist) backed by a TTL key/value store."""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable
from typing import Final

from player_dashboard.services.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

DENYLIST_PREFIX: Final[str] = "denylist:"


class RevocationStore:
    """Short-TTL set of revoked token identifiers.

    Each entry expires together with the token it revokes, so the set never
    grows beyond the number of live revoked tokens.

    Lookups fail open: when the backing store is unreachable ``is_revoked``
    logs a warning and returns False.
    """

    def __init__(self, store: KeyValueStore, clock: Callable[[], float] = time.time) -> None:
        self._store = store
        self._clock = clock

    @staticmethod
    def key_for(tid: str) -> str:
        return f"{DENYLIST_PREFIX}{tid}"

    async def revoke(self, tid: str, expiry_epoch_seconds: float) -> bool:
        """Deny ``tid`` until ``expiry_epoch_seconds``.

        The entry expires at the token's own ``exp``, never before it.

        Returns:
            True if an entry was written, False when the token has already expired.
        """
        remaining = expiry_epoch_seconds - self._clock()
        if remaining <= 0:
            logger.debug("Token %s already expired; not added to denylist", tid)
            return False
        await self._store.set(self.key_for(tid), "1", expire_at=expiry_epoch_seconds)
        logger.info("Token %s added to denylist for %ds", tid, math.ceil(remaining))
        return True

    async def is_revoked(self, tid: str) -> bool:
        """Return True if ``tid`` is currently denied."""
        try:
            return await self._store.get(self.key_for(tid)) is not None
        except Exception as exc:
            logger.warning("Revocation store unavailable, treating token %s as valid: %s", tid, exc)
            return False

    async def purge_expired(self) -> int:
        """Delete denylist keys without a positive TTL and return how many were removed."""
        cleared = 0
        for key in await self._store.keys(f"{DENYLIST_PREFIX}*"):
            if await self._store.ttl(key) <= 0:
                cleared += await self._store.delete(key)
        logger.info("Cleared %d expired tokens from denylist", cleared)
        return cleared
