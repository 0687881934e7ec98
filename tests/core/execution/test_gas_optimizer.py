"""
Tests for the Gas Optimizer
"""

import pytest

from conftest import RECIPIENT, SENDER, FakeChainClient
from txpipeline.core.execution.gas import GasOptimizer
from txpipeline.core.execution.models import GasStrategy, SimulationResult, TransactionRequest

GWEI = 10 ** 9


@pytest.fixture
def fee_chain() -> FakeChainClient:
    chain = FakeChainClient()
    chain.base_fee = 20 * GWEI
    chain.gas_price = 22 * GWEI
    return chain


class TestEip1559Fees:
    """Tests for fee selection on base-fee chains."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("strategy,expected_max,expected_priority", [
        (GasStrategy.SLOW, 22 * GWEI + 1 * GWEI, 1 * GWEI),
        (GasStrategy.STANDARD, 25 * GWEI + 1_500_000_000, 1_500_000_000),
        (GasStrategy.FAST, 40 * GWEI + 3 * GWEI, 3 * GWEI),
    ])
    async def test_strategy_sizing(self, fee_chain, strategy, expected_max, expected_priority):
        """Test each strategy applies its multiplier and tip."""
        estimate = await GasOptimizer(fee_chain).estimate_fees(1, strategy)

        assert estimate.is_eip1559
        assert estimate.max_fee_per_gas == expected_max
        assert estimate.max_priority_fee_per_gas == expected_priority
        assert estimate.base_fee_per_gas == 20 * GWEI

    @pytest.mark.asyncio
    async def test_defaults_to_standard(self, fee_chain):
        """Test no strategy means standard."""
        estimate = await GasOptimizer(fee_chain).estimate_fees(1)
        assert estimate.strategy == GasStrategy.STANDARD

    @pytest.mark.asyncio
    async def test_clamped_to_request_caps(self, fee_chain):
        """Test request caps bound both fee fields."""
        estimate = await GasOptimizer(fee_chain).estimate_fees(
            1, GasStrategy.FAST, max_fee_per_gas=30 * GWEI, max_priority_fee_per_gas=2 * GWEI
        )

        assert estimate.max_fee_per_gas == 30 * GWEI
        assert estimate.max_priority_fee_per_gas == 2 * GWEI

    @pytest.mark.asyncio
    async def test_priority_never_exceeds_fee_cap(self, fee_chain):
        """Test a tiny fee cap also bounds the priority fee."""
        estimate = await GasOptimizer(fee_chain).estimate_fees(1, GasStrategy.FAST, max_fee_per_gas=GWEI // 2)

        assert estimate.max_fee_per_gas == GWEI // 2
        assert estimate.max_priority_fee_per_gas <= estimate.max_fee_per_gas

    @pytest.mark.asyncio
    async def test_floored_to_granularity(self, fee_chain):
        """Test fees are rounded down to the chain's fee unit."""
        fee_chain.base_fee = 20 * GWEI + 123_456
        optimizer = GasOptimizer(fee_chain, fee_granularity={1: 1_000_000})

        estimate = await optimizer.estimate_fees(1, GasStrategy.STANDARD)

        assert estimate.max_fee_per_gas % 1_000_000 == 0
        assert estimate.max_priority_fee_per_gas % 1_000_000 == 0
        assert estimate.max_fee_per_gas <= (20 * GWEI + 123_456) * 125 // 100 + 1_500_000_000


class TestLegacyFees:
    """Tests for chains without a base fee."""

    @pytest.mark.asyncio
    async def test_gas_price_multiplied(self, fee_chain):
        """Test legacy chains scale the node's gas price."""
        fee_chain.base_fee = None

        estimate = await GasOptimizer(fee_chain).estimate_fees(56, GasStrategy.FAST)

        assert not estimate.is_eip1559
        assert estimate.gas_price == 44 * GWEI
        assert estimate.effective_cap == 44 * GWEI

    @pytest.mark.asyncio
    async def test_legacy_cap(self, fee_chain):
        """Test a fee cap bounds the legacy gas price."""
        fee_chain.base_fee = None

        estimate = await GasOptimizer(fee_chain).estimate_fees(56, GasStrategy.FAST, max_fee_per_gas=25 * GWEI)

        assert estimate.gas_price == 25 * GWEI


class TestGasLimit:
    """Tests for gas limit selection."""

    def _request(self, **kwargs) -> TransactionRequest:
        return TransactionRequest(chain_id=1, from_address=SENDER, to_address=RECIPIENT, **kwargs)

    def test_explicit_limit_wins(self):
        sim = SimulationResult(success=True, gas_estimate=50_000)
        assert GasOptimizer.gas_limit(self._request(gas_limit=90_000), sim) == 90_000

    def test_buffer_applied_to_simulated_gas(self):
        sim = SimulationResult(success=True, gas_estimate=100_000)
        assert GasOptimizer.gas_limit(self._request(), sim, buffer_percent=20) == 120_000

    def test_default_without_estimate(self):
        assert GasOptimizer.gas_limit(self._request(), None) == 200_000
