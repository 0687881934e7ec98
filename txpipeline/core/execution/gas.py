"""
Gas fee selection.

Fees are sized per strategy from the latest base fee (or legacy gas price),
clamped to any caps carried by the request, and floored to the chain's fee
granularity.
"""

import logging
from typing import TYPE_CHECKING, Dict, Optional, Tuple

from .models import GasFeeEstimate, GasStrategy, SimulationResult, TransactionRequest

if TYPE_CHECKING:
    from ...providers.base import ChainClient

logger = logging.getLogger(__name__)

GWEI = 10 ** 9

# Priority fee per strategy (wei)
PRIORITY_FEES: Dict[GasStrategy, int] = {
    GasStrategy.SLOW: 1 * GWEI,
    GasStrategy.STANDARD: 1_500_000_000,
    GasStrategy.FAST: 3 * GWEI,
}

# Base fee multiplier as (numerator, denominator)
BASE_FEE_MULTIPLIERS: Dict[GasStrategy, Tuple[int, int]] = {
    GasStrategy.SLOW: (11, 10),
    GasStrategy.STANDARD: (125, 100),
    GasStrategy.FAST: (2, 1),
}

DEFAULT_LEGACY_GAS_PRICE = 50 * GWEI
DEFAULT_GAS_LIMIT = 200_000


def _floor(value: int, granularity: int) -> int:
    if granularity <= 1:
        return value
    return value - (value % granularity)


class GasOptimizer:
    def __init__(
        self,
        chain_client: "ChainClient",
        fee_granularity: Optional[Dict[int, int]] = None,
    ):
        self.chain_client = chain_client
        self.fee_granularity = dict(fee_granularity or {})

    def granularity(self, chain_id: int) -> int:
        return max(self.fee_granularity.get(chain_id, 1), 1)

    async def estimate_fees(
        self,
        chain_id: int,
        strategy: Optional[GasStrategy] = None,
        max_fee_per_gas: Optional[int] = None,
        max_priority_fee_per_gas: Optional[int] = None,
    ) -> GasFeeEstimate:
        strategy = GasStrategy(strategy) if strategy else GasStrategy.STANDARD
        fee_data = await self.chain_client.get_fee_data(chain_id)
        base_fee = fee_data.get("base_fee_per_gas")
        num, den = BASE_FEE_MULTIPLIERS[strategy]
        step = self.granularity(chain_id)

        if base_fee is None:
            gas_price = fee_data.get("gas_price")
            if gas_price is None:
                logger.warning(f"No fee data for chain {chain_id}, using default gas price")
                gas_price = DEFAULT_LEGACY_GAS_PRICE
            else:
                gas_price = gas_price * num // den
            if max_fee_per_gas is not None:
                gas_price = min(gas_price, max_fee_per_gas)
            return GasFeeEstimate(strategy=strategy, gas_price=_floor(gas_price, step))

        priority_fee = PRIORITY_FEES[strategy]
        max_fee = base_fee * num // den + priority_fee

        if max_fee_per_gas is not None:
            max_fee = min(max_fee, max_fee_per_gas)
        if max_priority_fee_per_gas is not None:
            priority_fee = min(priority_fee, max_priority_fee_per_gas)
        priority_fee = min(priority_fee, max_fee)

        estimate = GasFeeEstimate(
            strategy=strategy,
            max_fee_per_gas=_floor(max_fee, step),
            max_priority_fee_per_gas=_floor(priority_fee, step),
            base_fee_per_gas=base_fee,
        )
        logger.debug(
            f"Gas fees estimated for chain {chain_id} ({strategy.value}): "
            f"base={base_fee} max={estimate.max_fee_per_gas} priority={estimate.max_priority_fee_per_gas}"
        )
        return estimate

    @staticmethod
    def gas_limit(
        request: TransactionRequest,
        simulation: Optional[SimulationResult],
        buffer_percent: int = 10,
    ) -> int:
        """Explicit request limit, else simulated gas plus headroom."""
        if request.gas_limit:
            return request.gas_limit
        if simulation and simulation.gas_estimate > 0:
            return simulation.gas_estimate + simulation.gas_estimate * buffer_percent // 100
        return DEFAULT_GAS_LIMIT
