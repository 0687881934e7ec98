"""
Risk Engine

Resolves a safety verdict for a contract or token:
1. Contract lists (user scope, then admin scope) are authoritative
2. Cached provider report, if not expired
3. Risk data provider, retried with bounded backoff and cached on success

When none of these yields a report the verdict is ``unknown`` and the
configured unknown policy decides whether it blocks or warns.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional

from ...config import settings
from ..recovery import RetryConfig, RetryPolicy
from .cache import RiskCache
from .contract_audit import ContractAuditor, ContractAuditReport
from .contract_list import ContractListStore
from .models import (
    GLOBAL_SCOPE,
    AllowlistAction,
    ContractListEntry,
    ContractRiskReport,
    DimensionVerdict,
    RiskAction,
    RiskClassification,
    RiskSeverity,
    RiskSource,
    RiskVerdict,
    TokenSafetyReport,
    worst_action,
)

if TYPE_CHECKING:
    from ...providers.base import RiskDataClient

logger = logging.getLogger(__name__)

DEFAULT_SEVERITY_ACTIONS: Dict[RiskSeverity, RiskAction] = {
    RiskSeverity.CRITICAL: RiskAction.BLOCK,
    RiskSeverity.HIGH: RiskAction.WARN,
    RiskSeverity.MEDIUM: RiskAction.WARN,
    RiskSeverity.LOW: RiskAction.ALLOW,
}

_LEVEL_TAGS = {
    "safe": "GREEN",
    "low": "BLUE",
    "medium": "YELLOW",
    "high": "ORANGE",
    "critical": "RED",
}

_SEVERITY_ICONS = {
    RiskSeverity.CRITICAL: "[!]",
    RiskSeverity.HIGH: "[!]",
    RiskSeverity.MEDIUM: "[~]",
    RiskSeverity.LOW: "[-]",
}


def worst_verdict(verdicts: Iterable[RiskVerdict]) -> Optional[RiskVerdict]:
    """The verdict with the worst resolved action; earliest wins ties."""
    worst: Optional[RiskVerdict] = None
    for verdict in verdicts:
        if worst is None or verdict.action.rank > worst.action.rank:
            worst = verdict
    return worst


class RiskEngine:
    def __init__(
        self,
        data_client: "RiskDataClient",
        cache: Optional[RiskCache] = None,
        contract_lists: Optional[ContractListStore] = None,
        retry_policy: Optional[RetryPolicy] = None,
        severity_actions: Optional[Dict[RiskSeverity, RiskAction]] = None,
        unknown_policy: Optional[str] = None,
        lookup_timeout_s: Optional[float] = None,
        auditor: Optional[ContractAuditor] = None,
    ):
        self.data_client = data_client
        self.cache = cache or RiskCache(
            ttl_seconds=settings.risk_cache_ttl_seconds,
            max_size=settings.risk_cache_max_size,
        )
        self.contract_lists = contract_lists
        self.retry_policy = retry_policy or RetryPolicy(
            RetryConfig(
                max_attempts=settings.risk_retry_attempts,
                initial_delay_seconds=settings.risk_retry_initial_delay_seconds,
                max_delay_seconds=settings.risk_retry_max_delay_seconds,
            )
        )
        if severity_actions is None:
            severity_actions = {
                RiskSeverity(k): RiskAction(v) for k, v in settings.risk_severity_actions.items()
            }
        self.severity_actions = {**DEFAULT_SEVERITY_ACTIONS, **severity_actions}
        self.unknown_action = RiskAction(unknown_policy or settings.risk_unknown_policy)
        self.lookup_timeout_s = lookup_timeout_s or settings.risk_lookup_timeout_seconds
        self.auditor = auditor

    async def assess(self, chain_id: int, address: str, user_id: Optional[str] = None) -> RiskVerdict:
        if self.contract_lists is not None:
            entry = await self.contract_lists.lookup(address, chain_id, user_id)
            if entry is not None:
                return self._verdict_from_list(entry)

        cached = self.cache.get(chain_id, address)
        if cached is not None:
            logger.debug(f"Risk report from cache: {address} chain={chain_id}")
            return self._verdict_from_report(cached, RiskSource.CACHE)

        try:
            report = await asyncio.wait_for(
                self.retry_policy.run(
                    lambda: self.data_client.get_token_security(chain_id, address),
                    description=f"risk lookup {address}",
                ),
                timeout=self.lookup_timeout_s,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Risk lookup timed out: {address} chain={chain_id}")
            return self._unknown(chain_id, address, "Risk assessment timed out")
        except Exception as e:
            logger.warning(f"Risk lookup failed: {address} chain={chain_id}: {e}")
            return self._unknown(chain_id, address, "Risk assessment unavailable")

        if report is None:
            return self._unknown(chain_id, address, "No risk data available for this contract")

        await self.cache.put(report)
        return self._verdict_from_report(report, RiskSource.PROVIDER)

    async def assess_many(
        self,
        chain_id: int,
        addresses: Iterable[str],
        user_id: Optional[str] = None,
    ) -> List[RiskVerdict]:
        """Assess several targets concurrently, one verdict per distinct address."""
        unique: Dict[str, str] = {}
        for address in addresses:
            unique.setdefault(address.lower(), address)
        return list(await asyncio.gather(*(self.assess(chain_id, a, user_id) for a in unique.values())))

    def _unknown(self, chain_id: int, address: str, reason: str) -> RiskVerdict:
        return RiskVerdict(
            address=address,
            chain_id=chain_id,
            classification=RiskClassification.UNKNOWN,
            action=self.unknown_action,
            reason=reason,
            source=RiskSource.UNAVAILABLE,
        )

    def _verdict_from_list(self, entry: ContractListEntry) -> RiskVerdict:
        if entry.action == AllowlistAction.BLOCK:
            action = RiskAction.BLOCK
            where = "your blocklist" if entry.scope != GLOBAL_SCOPE else "the blocklist"
        else:
            action = RiskAction.ALLOW
            where = "your allowlist" if entry.scope != GLOBAL_SCOPE else "the allowlist"
        reason = f"Contract is on {where}"
        if entry.reason:
            reason = f"{reason}: {entry.reason}"
        return RiskVerdict(
            address=entry.address,
            chain_id=entry.chain_id,
            classification=RiskClassification(action.value),
            action=action,
            reason=reason,
            source=RiskSource.CONTRACT_LIST,
        )

    def _verdict_from_report(self, report: ContractRiskReport, source: RiskSource) -> RiskVerdict:
        mapped = [
            DimensionVerdict(dimension=d, action=self.severity_actions.get(d.severity, RiskAction.WARN))
            for d in report.dimensions
        ]
        action = worst_action(m.action for m in mapped)

        flagged = [m.dimension.description for m in mapped if m.action == action]
        if action == RiskAction.ALLOW:
            reason = "No blocking risks detected"
        else:
            reason = "; ".join(flagged)

        return RiskVerdict(
            address=report.address,
            chain_id=report.chain_id,
            classification=RiskClassification(action.value),
            action=action,
            reason=reason,
            source=source,
            dimensions=mapped,
            report=report,
        )

    # Contract list management

    def _require_lists(self) -> ContractListStore:
        if self.contract_lists is None:
            raise RuntimeError("Contract lists are not configured")
        return self.contract_lists

    async def allow_contract(self, address: str, chain_id: int, reason: str = "", scope: str = GLOBAL_SCOPE) -> ContractListEntry:
        return await self._require_lists().set_action(address, chain_id, AllowlistAction.ALLOW, reason, scope)

    async def block_contract(self, address: str, chain_id: int, reason: str = "", scope: str = GLOBAL_SCOPE) -> ContractListEntry:
        return await self._require_lists().set_action(address, chain_id, AllowlistAction.BLOCK, reason, scope)

    async def remove_from_list(self, address: str, chain_id: int, scope: str = GLOBAL_SCOPE) -> bool:
        return await self._require_lists().remove(address, chain_id, scope)

    async def list_entries(self, scope: str = GLOBAL_SCOPE) -> List[ContractListEntry]:
        return await self._require_lists().list_entries(scope)

    @staticmethod
    def format_report(report: ContractRiskReport) -> str:
        if isinstance(report, TokenSafetyReport):
            title = f"*Risk Report: {report.name} ({report.symbol})*"
        else:
            title = f"*Risk Report: {report.address}*"

        lines = [
            title,
            "",
            f"Risk Level: [{_LEVEL_TAGS[report.risk_level]}] {report.risk_level.upper()} ({report.overall_score}/100)",
            "",
            "*Key Facts:*",
            f"  Source verified: {'Yes' if report.is_verified else 'No'}",
            f"  Honeypot: {'YES' if report.is_honeypot else 'No'}",
        ]

        if isinstance(report, TokenSafetyReport):
            lines.append(f"  Holders: {report.holder_count:,}")
            if report.buy_tax > 0 or report.sell_tax > 0:
                lines.append(f"  Buy tax: {report.buy_tax:.1f}% | Sell tax: {report.sell_tax:.1f}%")
            if report.top_holder_percent > 0:
                lines.append(f"  Top holder concentration: {report.top_holder_percent:.1f}%")
        lines.append("")

        if report.dimensions:
            lines.append("*Risk Findings:*")
            for dim in sorted(report.dimensions, key=lambda d: d.score, reverse=True):
                lines.append(f"  {_SEVERITY_ICONS[dim.severity]} {dim.description}")
        else:
            lines.append("_No significant risks detected._")

        return "\n".join(lines)

    # Source audit

    async def audit_contract(self, chain_id: int, address: str) -> ContractAuditReport:
        if self.auditor is None:
            raise RuntimeError("Contract auditing is not configured")
        return await self.auditor.audit(chain_id, address)

    @staticmethod
    def format_contract_audit(report: ContractAuditReport) -> str:
        return ContractAuditor.format_audit_report(report)
