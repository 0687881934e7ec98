import asyncio
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Hashable, Optional


@dataclass
class CacheEntry:
    value: Any
    expires_at: float


class TTLCache:
    """In-memory TTL cache with LRU eviction.

    Reads never suspend, so they can run concurrently with each other and with
    an in-flight write. Writes are serialized by a lock. An expired entry is
    dropped on read and reported as a miss.
    """

    def __init__(
        self,
        default_ttl: float = 300,
        max_size: int = 1000,
        clock: Callable[[], float] = time.time,
    ):
        self.default_ttl = default_ttl
        self.max_size = max_size
        self._clock = clock
        self._cache: "OrderedDict[Hashable, CacheEntry]" = OrderedDict()
        self._lock = asyncio.Lock()

    def get(self, key: Hashable) -> Optional[Any]:
        entry = self._cache.get(key)
        if entry is None:
            return None

        if self._clock() >= entry.expires_at:
            self._cache.pop(key, None)
            return None

        self._cache.move_to_end(key)
        return entry.value

    async def set(self, key: Hashable, value: Any, ttl: Optional[float] = None) -> None:
        async with self._lock:
            ttl = self.default_ttl if ttl is None else ttl
            self._cache[key] = CacheEntry(value=value, expires_at=self._clock() + ttl)
            self._cache.move_to_end(key)

            # Evict least recently used over max size
            while len(self._cache) > self.max_size:
                self._cache.popitem(last=False)

    async def delete(self, key: Hashable) -> None:
        async with self._lock:
            self._cache.pop(key, None)

    async def clear(self) -> None:
        async with self._lock:
            self._cache.clear()

    def size(self) -> int:
        return len(self._cache)
