"""
Tests for MEV Protection
"""

import pytest

from conftest import FakeRelay, no_sleep
from txpipeline.core.execution.mev import MevProtection
from txpipeline.core.recovery import NetworkError, RetryConfig, RetryPolicy
from txpipeline.providers.flashbots import RelayRejectedError


def protection(relay: FakeRelay) -> MevProtection:
    return MevProtection(relay, RetryPolicy(RetryConfig(max_attempts=2), sleep=no_sleep))


class TestMevProtection:

    def test_only_mainnet_supported(self):
        mev = protection(FakeRelay())
        assert mev.is_supported(1) is True
        assert mev.is_supported(8453) is False
        assert mev.is_supported(42161) is False

    @pytest.mark.asyncio
    async def test_returns_relay_hash(self):
        relay = FakeRelay(result="0xabc")
        assert await protection(relay).send_protected("0x02f8") == "0xabc"
        assert relay.submitted == ["0x02f8"]

    @pytest.mark.asyncio
    async def test_transient_failure_retried_then_none(self):
        """Test transport failures are retried once and then reported as None."""
        relay = FakeRelay(error=NetworkError("reset"))

        assert await protection(relay).send_protected("0x02f8") is None
        assert len(relay.submitted) == 2

    @pytest.mark.asyncio
    async def test_rejection_not_retried(self):
        """Test a relay-level rejection returns None without retrying."""
        relay = FakeRelay(error=RelayRejectedError("nonce too low"))

        assert await protection(relay).send_protected("0x02f8") is None
        assert len(relay.submitted) == 1
