"""
Risk models: dimensions reported by the data provider, cached reports,
admin contract lists and the engine's verdict.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


GLOBAL_SCOPE = "*"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RiskSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RiskAction(str, Enum):
    ALLOW = "allow"
    WARN = "warn"
    BLOCK = "block"

    @property
    def rank(self) -> int:
        return _ACTION_RANK[self]


_ACTION_RANK = {RiskAction.ALLOW: 0, RiskAction.WARN: 1, RiskAction.BLOCK: 2}


class RiskClassification(str, Enum):
    """A RiskAction, or ``unknown`` when no verdict could be obtained."""
    ALLOW = "allow"
    WARN = "warn"
    BLOCK = "block"
    UNKNOWN = "unknown"


class RiskSource(str, Enum):
    CONTRACT_LIST = "contract_list"
    CACHE = "cache"
    PROVIDER = "provider"
    UNAVAILABLE = "unavailable"


class AllowlistAction(str, Enum):
    ALLOW = "allow"
    BLOCK = "block"


def worst_action(actions) -> RiskAction:
    """Worst-of aggregation: block beats warn beats allow. Empty is allow."""
    worst = RiskAction.ALLOW
    for action in actions:
        if action.rank > worst.rank:
            worst = action
    return worst


@dataclass
class RiskDimension:
    name: str
    severity: RiskSeverity
    description: str
    score: int                                  # 0-100, higher is riskier

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "severity": self.severity.value,
            "description": self.description,
            "score": self.score,
        }


def score_to_level(score: float) -> str:
    if score >= 80:
        return "critical"
    if score >= 60:
        return "high"
    if score >= 35:
        return "medium"
    if score >= 15:
        return "low"
    return "safe"


@dataclass
class ContractRiskReport:
    """Provider-derived risk facts for a contract."""
    address: str
    chain_id: int
    dimensions: List[RiskDimension] = field(default_factory=list)
    is_honeypot: bool = False
    has_owner_privileges: bool = False
    is_proxy: bool = False
    is_verified: bool = True
    cached_at: datetime = field(default_factory=utcnow)

    @property
    def overall_score(self) -> int:
        if not self.dimensions:
            return 0
        return round(sum(d.score for d in self.dimensions) / len(self.dimensions))

    @property
    def risk_level(self) -> str:
        return score_to_level(self.overall_score)


@dataclass
class TokenSafetyReport(ContractRiskReport):
    """Contract report plus token-specific facts."""
    symbol: str = "UNKNOWN"
    name: str = "Unknown Token"
    can_take_back_ownership: bool = False
    has_mint_function: bool = False
    can_blacklist: bool = False
    has_trading_cooldown: bool = False
    buy_tax: float = 0.0                        # Percent
    sell_tax: float = 0.0
    holder_count: int = 0
    top_holder_percent: float = 0.0


@dataclass
class ContractListEntry:
    address: str
    chain_id: int
    action: AllowlistAction
    reason: str = ""
    scope: str = GLOBAL_SCOPE                   # User id, or "*" for admin entries
    added_at: datetime = field(default_factory=utcnow)


@dataclass
class DimensionVerdict:
    dimension: RiskDimension
    action: RiskAction

    def to_dict(self) -> Dict[str, Any]:
        return {**self.dimension.to_dict(), "action": self.action.value}


@dataclass
class RiskVerdict:
    address: str
    chain_id: int
    classification: RiskClassification
    action: RiskAction                          # classification with unknown resolved by policy
    reason: str
    source: RiskSource
    dimensions: List[DimensionVerdict] = field(default_factory=list)
    report: Optional[ContractRiskReport] = None

    @property
    def is_blocked(self) -> bool:
        return self.action == RiskAction.BLOCK

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "address": self.address,
            "chainId": self.chain_id,
            "classification": self.classification.value,
            "action": self.action.value,
            "reason": self.reason,
            "source": self.source.value,
            "dimensions": [d.to_dict() for d in self.dimensions],
        }
        if self.report is not None:
            result["overallScore"] = self.report.overall_score
            result["riskLevel"] = self.report.risk_level
        return result
