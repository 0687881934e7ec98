"""
Guardrails

Evaluates a transaction against the acting user's limits and the platform's
chain and token rules. Every rule runs, even after an earlier one fails, so
the caller always sees the full verdict set.
"""

import logging
import math
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Iterable, List, Optional

from ..execution.models import NATIVE_TOKEN, SimulationResult, TransactionRecord, TransactionRequest, TxStatus
from .models import GuardrailCheck, GuardrailConfig, GuardrailContext, UserLimits, all_passed, utcnow

logger = logging.getLogger(__name__)

# approved and signed records have passed policy and count against the caps
SPENT_STATUSES = frozenset({TxStatus.APPROVED, TxStatus.SIGNED, TxStatus.BROADCAST, TxStatus.CONFIRMED})
DAY_WINDOW = timedelta(hours=24)


class Guardrails:
    def __init__(
        self,
        config: Optional[GuardrailConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config or GuardrailConfig()
        self._clock = clock

    def check(
        self,
        request: TransactionRequest,
        limits: UserLimits,
        history: Iterable[TransactionRecord],
        simulation: Optional[SimulationResult],
        context: GuardrailContext,
    ) -> List[GuardrailCheck]:
        now = context.now or self._clock()
        spent = [r for r in history if r.status in SPENT_STATUSES and r.created_at >= now - DAY_WINDOW]

        checks = [
            self._check_max_per_tx(context.value_usd, limits),
            self._check_max_per_day(context.value_usd, limits, spent),
            self._check_cooldown(context.value_usd, limits, spent, now),
            self._check_slippage(limits, simulation, context),
            self._check_chain(request.chain_id),
            self._check_tokens(request, simulation),
        ]

        logger.info(
            f"Guardrail checks complete: passed={all_passed(checks)} "
            f"failed={[c.rule for c in checks if not c.passed]}"
        )
        return checks

    def now(self) -> datetime:
        return self._clock()

    def is_large(self, value_usd: float, limits: UserLimits) -> bool:
        return value_usd > limits.max_per_tx * self.config.large_tx_ratio

    def requires_confirmation(self, value_usd: float, limits: UserLimits) -> bool:
        """Transactions above half the per-tx cap need explicit confirmation."""
        return self.is_large(value_usd, limits)

    def _check_max_per_tx(self, value_usd: float, limits: UserLimits) -> GuardrailCheck:
        if value_usd <= limits.max_per_tx:
            return GuardrailCheck(
                "max-per-tx", True,
                f"Transaction value ${value_usd:.2f} within limit (${limits.max_per_tx:g})",
            )
        return GuardrailCheck(
            "max-per-tx", False,
            f"Transaction value ${value_usd:.2f} exceeds per-tx limit of ${limits.max_per_tx:g}",
        )

    def _check_max_per_day(
        self,
        value_usd: float,
        limits: UserLimits,
        spent: List[TransactionRecord],
    ) -> GuardrailCheck:
        total = sum(r.value_usd or 0.0 for r in spent) + value_usd
        if total <= limits.max_per_day:
            return GuardrailCheck(
                "max-per-day", True,
                f"Daily spending ${total:.2f} within limit (${limits.max_per_day:g})",
            )
        return GuardrailCheck(
            "max-per-day", False,
            f"Daily spending ${total:.2f} would exceed limit of ${limits.max_per_day:g}",
        )

    def _check_cooldown(
        self,
        value_usd: float,
        limits: UserLimits,
        spent: List[TransactionRecord],
        now: datetime,
    ) -> GuardrailCheck:
        if not self.is_large(value_usd, limits):
            return GuardrailCheck("cooldown", True, "Cooldown not required for this transaction size")

        large = [r.created_at for r in spent if self.is_large(r.value_usd or 0.0, limits)]
        if not large:
            return GuardrailCheck("cooldown", True, "Cooldown period passed")

        elapsed = (now - max(large)).total_seconds()
        if elapsed >= limits.cooldown_seconds:
            return GuardrailCheck("cooldown", True, "Cooldown period passed")

        wait = math.ceil(limits.cooldown_seconds - elapsed)
        return GuardrailCheck(
            "cooldown", False,
            f"Please wait {wait}s before the next large transaction",
        )

    def _check_slippage(
        self,
        limits: UserLimits,
        simulation: Optional[SimulationResult],
        context: GuardrailContext,
    ) -> GuardrailCheck:
        expected = context.expected_output_amount
        if expected is None or expected <= 0:
            return GuardrailCheck("slippage", True, "No expected output to compare")

        inbound = simulation.inbound() if simulation and simulation.success else []
        if context.expected_output_token:
            wanted = context.expected_output_token.lower()
            inbound = [c for c in inbound if c.token.lower() == wanted]
        if not inbound:
            return GuardrailCheck("slippage", False, "Simulation shows no incoming amount to verify slippage")

        actual = sum((c.amount for c in inbound), Decimal(0))
        shortfall_bps = max(Decimal(0), (expected - actual) / expected * 10000)
        if shortfall_bps <= limits.slippage_bps:
            return GuardrailCheck(
                "slippage", True,
                f"Slippage {shortfall_bps:.0f} bps within tolerance ({limits.slippage_bps} bps)",
            )
        return GuardrailCheck(
            "slippage", False,
            f"Slippage {shortfall_bps:.0f} bps exceeds tolerance of {limits.slippage_bps} bps",
        )

    def _check_chain(self, chain_id: int) -> GuardrailCheck:
        if chain_id in self.config.blocked_chains:
            return GuardrailCheck("chain-allowlist", False, f"Chain {chain_id} is blocked")
        if self.config.allowed_chains and chain_id not in self.config.allowed_chains:
            return GuardrailCheck("chain-allowlist", False, f"Chain {chain_id} is not allowed")
        return GuardrailCheck("chain-allowlist", True, f"Chain {chain_id} is allowed")

    def _check_tokens(
        self,
        request: TransactionRequest,
        simulation: Optional[SimulationResult],
    ) -> GuardrailCheck:
        blocked = set(self.config.blocked_tokens)
        touched = {request.to_address.lower()}
        if simulation:
            touched.update(c.token.lower() for c in simulation.balance_changes if c.token != NATIVE_TOKEN)

        hits = sorted(touched & blocked)
        if hits:
            return GuardrailCheck("token-denylist", False, f"Blocked token or contract: {', '.join(hits)}")
        return GuardrailCheck("token-denylist", True, "No blocked tokens involved")
