"""
Policy Module

User-policy guardrails evaluated before a transaction is approved:
- Guardrails: per-tx cap, rolling daily cap, cooldown, slippage, chain and token rules
- LimitsStore: persisted per-user limits
- RiskProfiles: presets that size limits from portfolio value
"""

from .models import (
    GuardrailCheck,
    GuardrailConfig,
    GuardrailContext,
    UserLimits,
    all_passed,
    failure_reasons,
)
from .guardrails import Guardrails
from .limits import LimitsStore
from .risk_profiles import RiskProfile, RiskProfileName, RiskProfiles

__all__ = [
    # Models
    "GuardrailCheck",
    "GuardrailConfig",
    "GuardrailContext",
    "UserLimits",
    "all_passed",
    "failure_reasons",
    # Components
    "Guardrails",
    "LimitsStore",
    "RiskProfile",
    "RiskProfileName",
    "RiskProfiles",
]
