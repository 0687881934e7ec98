"""
Process-wide cache of provider risk reports keyed by (chain, address).
"""

import logging
import time
from typing import Callable, Optional

from ...cache import TTLCache
from .models import ContractRiskReport

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 24 * 60 * 60


class RiskCache:
    """TTL cache for ``ContractRiskReport``.

    Addresses are lower-cased so checksummed and plain forms share an entry.
    Expired entries read as absent.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_size: int = 5000,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl_seconds = ttl_seconds
        self._cache = TTLCache(default_ttl=ttl_seconds, max_size=max_size, clock=clock)

    @staticmethod
    def _key(chain_id: int, address: str) -> tuple:
        return (chain_id, address.lower())

    def get(self, chain_id: int, address: str) -> Optional[ContractRiskReport]:
        return self._cache.get(self._key(chain_id, address))

    async def put(self, report: ContractRiskReport) -> None:
        await self._cache.set(self._key(report.chain_id, report.address), report)
        logger.debug(f"Risk report cached: {report.address} chain={report.chain_id}")

    async def invalidate(self, chain_id: int, address: str) -> None:
        await self._cache.delete(self._key(chain_id, address))

    async def clear(self) -> None:
        await self._cache.clear()

    def size(self) -> int:
        return self._cache.size()
