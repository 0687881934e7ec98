"""
Risk profile presets that size user limits from portfolio value.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

from .models import UserLimits

logger = logging.getLogger(__name__)

MIN_MAX_PER_TX = 10
MIN_MAX_PER_DAY = 50


class RiskProfileName(str, Enum):
    CONSERVATIVE = "conservative"
    MODERATE = "moderate"
    AGGRESSIVE = "aggressive"


@dataclass(frozen=True)
class RiskProfile:
    name: RiskProfileName
    max_per_tx_pct: float       # % of portfolio per transaction
    max_per_day_pct: float      # % of portfolio per day
    cooldown_seconds: int
    slippage_bps: int


PROFILES: Dict[RiskProfileName, RiskProfile] = {
    RiskProfileName.CONSERVATIVE: RiskProfile(RiskProfileName.CONSERVATIVE, 5, 15, 60, 50),
    RiskProfileName.MODERATE: RiskProfile(RiskProfileName.MODERATE, 15, 40, 30, 100),
    RiskProfileName.AGGRESSIVE: RiskProfile(RiskProfileName.AGGRESSIVE, 30, 80, 10, 300),
}


class RiskProfiles:
    @staticmethod
    def get(name: str) -> RiskProfile:
        return PROFILES[RiskProfileName(name)]

    @staticmethod
    def list() -> List[RiskProfile]:
        return list(PROFILES.values())

    @staticmethod
    def compute_limits(name: str, portfolio_value_usd: float) -> UserLimits:
        """Concrete limits for a profile, floored so small portfolios never get $0 caps."""
        profile = RiskProfiles.get(name)
        limits = UserLimits(
            max_per_tx=max(round(portfolio_value_usd * profile.max_per_tx_pct / 100), MIN_MAX_PER_TX),
            max_per_day=max(round(portfolio_value_usd * profile.max_per_day_pct / 100), MIN_MAX_PER_DAY),
            cooldown_seconds=profile.cooldown_seconds,
            slippage_bps=profile.slippage_bps,
        )
        logger.debug(f"Risk limits computed for {profile.name.value} at ${portfolio_value_usd}: {limits.to_dict()}")
        return limits

    @staticmethod
    def format_profile(name: str, portfolio_value_usd: Optional[float] = None) -> str:
        profile = RiskProfiles.get(name)
        lines = [
            f"**{profile.name.value.capitalize()} Risk Profile**",
            f"Max per tx: {profile.max_per_tx_pct:g}% of portfolio",
            f"Max per day: {profile.max_per_day_pct:g}% of portfolio",
            f"Cooldown: {profile.cooldown_seconds}s",
            f"Slippage: {profile.slippage_bps} bps",
        ]
        if portfolio_value_usd is not None:
            limits = RiskProfiles.compute_limits(name, portfolio_value_usd)
            lines.extend([
                "",
                f"At ${portfolio_value_usd:,.0f} portfolio:",
                f"  Max per tx: ${limits.max_per_tx:,.0f}",
                f"  Max per day: ${limits.max_per_day:,.0f}",
            ])
        return "\n".join(lines)
