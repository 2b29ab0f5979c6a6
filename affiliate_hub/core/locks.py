"""
Per-affiliate serialization scope.

Mutating operations for one affiliate (onboarding transitions, commission
creation, payout reservation) run one at a time inside this process.
Different affiliates get different locks and never wait on each other.
Cross-process safety comes from the database (row locks, version counters
and unique constraints); this registry keeps a single worker from racing
itself.
"""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Dict, Optional

from affiliate_hub.config import settings
from affiliate_hub.core.exceptions import ConcurrencyConflict

logger = logging.getLogger(__name__)


class AffiliateLockRegistry:
    """Hands out one asyncio.Lock per affiliate id."""

    def __init__(self, timeout: Optional[float] = None):
        self._locks: Dict[uuid.UUID, asyncio.Lock] = {}
        self._waiters: Dict[uuid.UUID, int] = {}
        self.timeout = timeout if timeout is not None else settings.AFFILIATE_LOCK_TIMEOUT_SECONDS

    async def _acquire(self, lock: asyncio.Lock) -> bool:
        """
        Acquire ``lock`` within the timeout. Returns True if it is now held.

        The acquire runs as its own task and is only cancelled after the
        wait, so an acquire that completes as the timeout fires is kept
        instead of being lost with the lock still taken.
        """
        acquire = asyncio.ensure_future(lock.acquire())
        try:
            await asyncio.wait({acquire}, timeout=self.timeout)
        except asyncio.CancelledError:
            acquire.cancel()
            await asyncio.wait({acquire})
            if not acquire.cancelled():
                lock.release()
            raise

        if not acquire.done():
            acquire.cancel()
            await asyncio.wait({acquire})
        return not acquire.cancelled()

    @asynccontextmanager
    async def hold(self, affiliate_id: uuid.UUID, operation: str):
        """
        Serialize ``operation`` for ``affiliate_id``.

        Raises ConcurrencyConflict if the lock cannot be acquired within the
        configured timeout.
        """
        lock = self._locks.setdefault(affiliate_id, asyncio.Lock())
        self._waiters[affiliate_id] = self._waiters.get(affiliate_id, 0) + 1
        try:
            if not await self._acquire(lock):
                logger.warning(
                    f"Lock timeout for affiliate {affiliate_id} during {operation}"
                )
                raise ConcurrencyConflict(affiliate_id, operation)
            try:
                yield
            finally:
                lock.release()
        finally:
            self._waiters[affiliate_id] -= 1
            if self._waiters[affiliate_id] == 0:
                # Nobody else is queued; drop the lock so the registry stays small
                del self._waiters[affiliate_id]
                self._locks.pop(affiliate_id, None)

    def is_locked(self, affiliate_id: uuid.UUID) -> bool:
        lock = self._locks.get(affiliate_id)
        return lock is not None and lock.locked()


_registry: Optional[AffiliateLockRegistry] = None


def get_lock_registry() -> AffiliateLockRegistry:
    """Process-wide lock registry."""
    global _registry
    if _registry is None:
        _registry = AffiliateLockRegistry()
    return _registry
