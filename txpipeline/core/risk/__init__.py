"""
Contract and token risk assessment.
"""

from .models import (
    GLOBAL_SCOPE,
    AllowlistAction,
    ContractListEntry,
    ContractRiskReport,
    DimensionVerdict,
    RiskAction,
    RiskClassification,
    RiskDimension,
    RiskSeverity,
    RiskSource,
    RiskVerdict,
    TokenSafetyReport,
    worst_action,
)
from .cache import RiskCache
from .contract_list import ContractListStore
from .contract_audit import AuditFinding, AuditSeverity, ContractAuditor, ContractAuditReport
from .engine import RiskEngine, worst_verdict

__all__ = [
    # Models
    "GLOBAL_SCOPE",
    "AllowlistAction",
    "ContractListEntry",
    "ContractRiskReport",
    "DimensionVerdict",
    "RiskAction",
    "RiskClassification",
    "RiskDimension",
    "RiskSeverity",
    "RiskSource",
    "RiskVerdict",
    "TokenSafetyReport",
    "worst_action",
    # Components
    "RiskCache",
    "ContractListStore",
    "AuditFinding",
    "AuditSeverity",
    "ContractAuditor",
    "ContractAuditReport",
    "RiskEngine",
    "worst_verdict",
]
