"""
Guardrail Models

Types for user-policy checks run before a transaction is approved.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional


@dataclass
class GuardrailCheck:
    """Outcome of one guardrail rule."""
    rule: str
    passed: bool
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"rule": self.rule, "passed": self.passed, "message": self.message}


def all_passed(checks: List[GuardrailCheck]) -> bool:
    return all(c.passed for c in checks)


def failure_reasons(checks: List[GuardrailCheck]) -> str:
    return "; ".join(c.message for c in checks if not c.passed)


@dataclass
class UserLimits:
    """Per-user spending policy (USD amounts)."""
    max_per_tx: float = 1000.0
    max_per_day: float = 5000.0
    cooldown_seconds: int = 30
    slippage_bps: int = 100

    def to_dict(self) -> Dict[str, Any]:
        return {
            "maxPerTx": self.max_per_tx,
            "maxPerDay": self.max_per_day,
            "cooldownSeconds": self.cooldown_seconds,
            "slippageBps": self.slippage_bps,
        }


@dataclass
class GuardrailContext:
    """Values the guardrails need that are not part of the request itself."""
    value_usd: float
    expected_output_amount: Optional[Decimal] = None
    expected_output_token: Optional[str] = None   # Contract address or "native"
    now: Optional[datetime] = None


@dataclass
class GuardrailConfig:
    """Platform-wide rules applied to every user."""
    allowed_chains: List[int] = field(default_factory=list)   # Empty = all chains
    blocked_chains: List[int] = field(default_factory=list)
    blocked_tokens: List[str] = field(default_factory=list)
    large_tx_ratio: float = 0.5

    def __post_init__(self):
        self.blocked_tokens = [t.lower() for t in self.blocked_tokens]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
