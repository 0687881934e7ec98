"""
Tests for the risk report cache and the underlying TTL cache
"""

import asyncio

import pytest

from txpipeline.cache import TTLCache
from txpipeline.core.risk import ContractRiskReport, RiskCache

ADDRESS = "0xAbCdEf0000000000000000000000000000000001"


class ManualClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestTTLCache:
    """Test TTL expiry and LRU eviction."""

    @pytest.mark.asyncio
    async def test_hit_before_expiry(self):
        clock = ManualClock()
        cache = TTLCache(default_ttl=10, clock=clock)
        await cache.set("k", "v")

        clock.now = 9.9
        assert cache.get("k") == "v"

    @pytest.mark.asyncio
    async def test_miss_at_expiry(self):
        clock = ManualClock()
        cache = TTLCache(default_ttl=10, clock=clock)
        await cache.set("k", "v")

        clock.now = 10
        assert cache.get("k") is None
        assert cache.size() == 0

    @pytest.mark.asyncio
    async def test_per_entry_ttl(self):
        clock = ManualClock()
        cache = TTLCache(default_ttl=10, clock=clock)
        await cache.set("short", 1, ttl=1)
        await cache.set("long", 2)

        clock.now = 5
        assert cache.get("short") is None
        assert cache.get("long") == 2

    @pytest.mark.asyncio
    async def test_lru_eviction(self):
        cache = TTLCache(default_ttl=60, max_size=2)
        await cache.set("a", 1)
        await cache.set("b", 2)
        cache.get("a")
        await cache.set("c", 3)

        assert cache.get("a") == 1
        assert cache.get("b") is None
        assert cache.get("c") == 3

    @pytest.mark.asyncio
    async def test_concurrent_writes(self):
        cache = TTLCache(default_ttl=60, max_size=500)

        await asyncio.gather(*(cache.set(i, i * 2) for i in range(200)))

        assert cache.size() == 200
        assert cache.get(199) == 398

    @pytest.mark.asyncio
    async def test_delete_and_clear(self):
        cache = TTLCache()
        await cache.set("a", 1)
        await cache.set("b", 2)

        await cache.delete("a")
        assert cache.get("a") is None

        await cache.clear()
        assert cache.size() == 0


class TestRiskCache:
    """Test keying and expiry of risk reports."""

    @pytest.mark.asyncio
    async def test_address_case_insensitive(self):
        cache = RiskCache(ttl_seconds=60)
        await cache.put(ContractRiskReport(address=ADDRESS, chain_id=1))

        assert cache.get(1, ADDRESS.lower()) is not None
        assert cache.get(1, ADDRESS.upper().replace("0X", "0x")) is not None

    @pytest.mark.asyncio
    async def test_chains_are_separate(self):
        cache = RiskCache(ttl_seconds=60)
        await cache.put(ContractRiskReport(address=ADDRESS, chain_id=1))

        assert cache.get(8453, ADDRESS) is None

    @pytest.mark.asyncio
    async def test_expired_report_reads_as_absent(self):
        clock = ManualClock()
        cache = RiskCache(ttl_seconds=60, clock=clock)
        await cache.put(ContractRiskReport(address=ADDRESS, chain_id=1))

        clock.now = 61
        assert cache.get(1, ADDRESS) is None

    @pytest.mark.asyncio
    async def test_invalidate(self):
        cache = RiskCache(ttl_seconds=60)
        await cache.put(ContractRiskReport(address=ADDRESS, chain_id=1))

        await cache.invalidate(1, ADDRESS)

        assert cache.get(1, ADDRESS) is None
