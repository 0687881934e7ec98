"""
Position locks.

Serializes work on one position, keyed ``{user}:{chain}:{token}``.

- Exclusive holders (swaps, rebalances) exclude every other holder
- Shared holders (balance reads) coexist with each other, never with an exclusive one
- Waiters are served first in, first out; a queued exclusive waiter holds off new shared requests
- Holders older than the TTL are reclaimed on the next acquire for that key
"""

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ...config import settings

logger = logging.getLogger(__name__)


class LockMode(str, Enum):
    EXCLUSIVE = "exclusive"
    SHARED = "shared"


class PositionLockTimeout(Exception):
    """A lock could not be acquired within the wait bound."""

    def __init__(self, key: str, mode: LockMode, timeout: float):
        self.key = key
        self.mode = mode
        self.timeout = timeout
        super().__init__(f"Could not acquire {mode.value} lock on {key!r} within {timeout:g}s")


@dataclass(frozen=True)
class LockHandle:
    id: int
    key: str
    mode: LockMode
    acquired_at: float


@dataclass
class _Waiter:
    id: int
    mode: LockMode
    future: "asyncio.Future[LockHandle]"


class PositionLock:
    def __init__(self, ttl_seconds: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self.ttl_s = ttl_seconds if ttl_seconds is not None else settings.position_lock_ttl_seconds
        self._clock = clock
        self._held: Dict[str, List[LockHandle]] = {}
        self._waiters: Dict[str, List[_Waiter]] = {}
        self._ids = itertools.count(1)

    @staticmethod
    def key(user_id: str, chain_id: int, token_address: str) -> str:
        return f"{user_id}:{chain_id}:{token_address.lower()}"

    async def acquire(self, key: str, mode: LockMode, timeout: Optional[float] = None) -> LockHandle:
        """Wait for the lock; raises ``PositionLockTimeout`` after ``timeout`` seconds (default: the TTL)."""
        self._reclaim_stale(key)
        if self.can_acquire(key, mode):
            return self._grant(key, mode)

        timeout = self.ttl_s if timeout is None else timeout
        logger.info(f"Lock contention on {key} ({mode.value}), waiting up to {timeout:g}s")

        waiter = _Waiter(next(self._ids), mode, asyncio.get_running_loop().create_future())
        self._waiters.setdefault(key, []).append(waiter)
        try:
            return await asyncio.wait_for(asyncio.shield(waiter.future), timeout=timeout)
        except asyncio.TimeoutError:
            if self._abandon(key, waiter):
                raise PositionLockTimeout(key, mode, timeout) from None
            # granted in the same tick the wait expired
            return waiter.future.result()
        except asyncio.CancelledError:
            if not self._abandon(key, waiter):
                self.release(waiter.future.result())
            raise

    def release(self, handle: LockHandle) -> None:
        held = self._held.get(handle.key)
        if not held or all(h.id != handle.id for h in held):
            return

        held[:] = [h for h in held if h.id != handle.id]
        if not held:
            del self._held[handle.key]
        logger.debug(f"Lock released: {handle.key} ({handle.mode.value})")
        self._process_queue(handle.key)

    def is_locked(self, key: str) -> bool:
        return bool(self._held.get(key))

    def can_acquire(self, key: str, mode: LockMode) -> bool:
        """Whether a new request for ``mode`` would be granted right now."""
        return self._compatible(key, mode) and not self._waiters.get(key)

    def active_locks(self) -> List[Dict[str, Any]]:
        now = self._clock()
        return [
            {
                "key": h.key,
                "mode": h.mode.value,
                "acquired_at": h.acquired_at,
                "age_seconds": now - h.acquired_at,
            }
            for held in self._held.values()
            for h in held
        ]

    def reclaim_stale(self) -> int:
        """Release every holder older than the TTL; returns how many were released."""
        return sum(self._reclaim_stale(key) for key in list(self._held))

    # Internal

    def _compatible(self, key: str, mode: LockMode) -> bool:
        held = self._held.get(key)
        if not held:
            return True
        return mode == LockMode.SHARED and all(h.mode == LockMode.SHARED for h in held)

    def _grant(self, key: str, mode: LockMode) -> LockHandle:
        handle = LockHandle(id=next(self._ids), key=key, mode=mode, acquired_at=self._clock())
        self._held.setdefault(key, []).append(handle)
        logger.debug(f"Lock acquired: {key} ({mode.value})")
        return handle

    def _process_queue(self, key: str) -> None:
        queue = self._waiters.get(key)
        while queue:
            waiter = queue[0]
            if waiter.future.done():
                queue.pop(0)
                continue
            if not self._compatible(key, waiter.mode):
                break
            queue.pop(0)
            waiter.future.set_result(self._grant(key, waiter.mode))

        if not queue:
            self._waiters.pop(key, None)

    def _abandon(self, key: str, waiter: _Waiter) -> bool:
        """Drop a waiter that gave up. False if it had already been granted."""
        if waiter.future.done() and not waiter.future.cancelled():
            return False
        waiter.future.cancel()
        queue = self._waiters.get(key, [])
        if waiter in queue:
            queue.remove(waiter)
        self._process_queue(key)
        return True

    def _reclaim_stale(self, key: str) -> int:
        now = self._clock()
        stale = [h for h in self._held.get(key, []) if now - h.acquired_at > self.ttl_s]
        for handle in stale:
            logger.warning(f"Releasing stale lock on {key} ({handle.mode.value}, held {now - handle.acquired_at:.0f}s)")
            self.release(handle)
        return len(stale)
