"""
Contract Source Audit

Fetches verified source from the chain's block explorer and scans it for
patterns that let an owner inflate supply, drain funds or change fees.
This is a pattern scan, not a proof: it flags code worth a closer look.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Pattern

import httpx

from ...config import settings
from ..recovery import (
    NetworkError,
    OperationTimeoutError,
    ProviderUnavailableError,
    RateLimitError,
    RetryConfig,
    RetryPolicy,
    parse_retry_after,
)
from .models import utcnow

logger = logging.getLogger(__name__)

EXPLORER_APIS: Dict[int, str] = {
    1: "https://api.etherscan.io/api",
    8453: "https://api.basescan.org/api",
    42161: "https://api.arbiscan.io/api",
    10: "https://api-optimistic.etherscan.io/api",
    137: "https://api.polygonscan.com/api",
    56: "https://api.bscscan.com/api",
    43114: "https://api.snowtrace.io/api",
    324: "https://block-explorer-api.mainnet.zksync.io/api",
    534352: "https://api.scrollscan.com/api",
    81457: "https://api.blastscan.io/api",
    100: "https://api.gnosisscan.io/api",
    59144: "https://api.lineascan.build/api",
    250: "https://api.ftmscan.com/api",
    5000: "https://api.mantlescan.xyz/api",
}


class AuditSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    DANGER = "danger"


@dataclass(frozen=True)
class SourcePattern:
    name: str
    regex: Pattern[str]
    severity: AuditSeverity
    description: str


SOURCE_PATTERNS: List[SourcePattern] = [
    SourcePattern(
        "selfdestruct",
        re.compile(r"selfdestruct\s*\(", re.IGNORECASE),
        AuditSeverity.DANGER,
        "Contract contains selfdestruct: it can be destroyed, locking funds",
    ),
    SourcePattern(
        "delegatecall_arbitrary",
        re.compile(r"\.delegatecall\s*\(", re.IGNORECASE),
        AuditSeverity.WARNING,
        "Uses delegatecall: could execute arbitrary code if the target is untrusted",
    ),
    SourcePattern(
        "hidden_mint",
        re.compile(r"function\s+\w*mint\w*\s*\([^)]*\)\s*(?:external|public|internal)", re.IGNORECASE),
        AuditSeverity.WARNING,
        "Contains mint function(s): supply can be inflated by authorized callers",
    ),
    SourcePattern(
        "owner_transfer",
        re.compile(r"onlyOwner[^}]{0,500}(?:_?transfer|_?send|_?withdraw)", re.IGNORECASE | re.DOTALL),
        AuditSeverity.DANGER,
        "Owner-only transfer/withdraw function: owner can drain funds",
    ),
    SourcePattern(
        "modifiable_fees",
        re.compile(r"function\s+set\w*(?:Fee|Tax|Rate)\s*\(", re.IGNORECASE),
        AuditSeverity.WARNING,
        "Fee/tax is modifiable: owner can change trading fees at any time",
    ),
    SourcePattern(
        "proxy_upgradeable",
        re.compile(r"upgradeTo|_upgradeTo|ERC1967|TransparentUpgradeableProxy|UUPSUpgradeable", re.IGNORECASE),
        AuditSeverity.INFO,
        "Contract is upgradeable via proxy: implementation can be changed",
    ),
    SourcePattern(
        "assembly_usage",
        re.compile(r"assembly\s*\{", re.IGNORECASE),
        AuditSeverity.INFO,
        "Uses inline assembly: harder to audit, may contain hidden logic",
    ),
]

_SEVERITY_ICONS = {
    AuditSeverity.DANGER: "[!]",
    AuditSeverity.WARNING: "[~]",
    AuditSeverity.INFO: "[-]",
}


@dataclass
class AuditFinding:
    pattern: str
    severity: AuditSeverity
    description: str
    match_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pattern": self.pattern,
            "severity": self.severity.value,
            "description": self.description,
            "match_count": self.match_count,
        }


@dataclass
class VerifiedSource:
    source: str
    contract_name: str
    compiler_version: str


@dataclass
class ContractAuditReport:
    address: str
    chain_id: int
    source_verified: bool
    summary: str
    contract_name: Optional[str] = None
    compiler_version: Optional[str] = None
    findings: List[AuditFinding] = field(default_factory=list)
    audited_at: datetime = field(default_factory=utcnow)

    def _has(self, pattern: str) -> bool:
        return any(f.pattern == pattern for f in self.findings)

    @property
    def is_proxy(self) -> bool:
        return self._has("proxy_upgradeable")

    @property
    def has_self_destruct(self) -> bool:
        return self._has("selfdestruct")

    @property
    def has_hidden_mint(self) -> bool:
        return self._has("hidden_mint")

    @property
    def has_delegatecall(self) -> bool:
        return self._has("delegatecall_arbitrary")

    @property
    def has_modifiable_fees(self) -> bool:
        return self._has("modifiable_fees")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "chain_id": self.chain_id,
            "source_verified": self.source_verified,
            "contract_name": self.contract_name,
            "compiler_version": self.compiler_version,
            "findings": [f.to_dict() for f in self.findings],
            "is_proxy": self.is_proxy,
            "has_self_destruct": self.has_self_destruct,
            "has_hidden_mint": self.has_hidden_mint,
            "has_delegatecall": self.has_delegatecall,
            "has_modifiable_fees": self.has_modifiable_fees,
            "summary": self.summary,
            "audited_at": self.audited_at.isoformat(),
        }


class ContractAuditor:
    """Explorer-backed source scanner (Etherscan-compatible ``getsourcecode``)."""

    name = "explorer"

    def __init__(
        self,
        api_keys: Optional[Dict[int, str]] = None,
        timeout_s: Optional[float] = None,
        retry_policy: Optional[RetryPolicy] = None,
        explorer_urls: Optional[Dict[int, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_keys = dict(settings.explorer_api_keys if api_keys is None else api_keys)
        self.timeout_s = timeout_s or settings.explorer_timeout_seconds
        self.retry_policy = retry_policy or RetryPolicy(RetryConfig(max_attempts=3, max_delay_seconds=10.0))
        self.explorer_urls = {**EXPLORER_APIS, **(explorer_urls or {})}
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout_s,
                headers={"Accept": "application/json"},
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def fetch_source_code(self, chain_id: int, address: str) -> Optional[VerifiedSource]:
        """Verified source for ``address``, or None when the explorer has none or cannot be reached."""
        base_url = self.explorer_urls.get(chain_id)
        if not base_url:
            logger.warning(f"No explorer API for chain {chain_id}")
            return None

        params = {"module": "contract", "action": "getsourcecode", "address": address.lower()}
        api_key = self.api_keys.get(chain_id)
        if api_key:
            params["apikey"] = api_key

        try:
            data = await self.retry_policy.run(
                lambda: self._get_json(base_url, params),
                description=f"getsourcecode {address}",
            )
        except (OperationTimeoutError, NetworkError, RateLimitError, ProviderUnavailableError) as e:
            logger.warning(f"Failed to fetch source code for {address} on chain {chain_id}: {e}")
            return None

        if not isinstance(data, dict):
            return None
        results = data.get("result")
        if str(data.get("status")) != "1" or not isinstance(results, list) or not results:
            return None
        entry = results[0]
        if not entry.get("SourceCode"):
            return None

        return VerifiedSource(
            source=entry["SourceCode"],
            contract_name=entry.get("ContractName", ""),
            compiler_version=entry.get("CompilerVersion", ""),
        )

    async def _get_json(self, url: str, params: Dict[str, str]) -> Dict[str, Any]:
        try:
            response = await self._get_client().get(url, params=params)
        except httpx.TimeoutException as e:
            raise OperationTimeoutError("Explorer request timed out", operation="getsourcecode") from e
        except httpx.TransportError as e:
            raise NetworkError(f"Explorer request failed: {e}", provider=self.name) from e

        if response.status_code == 429:
            raise RateLimitError(
                "Explorer rate limit exceeded",
                retry_after=parse_retry_after(response.headers.get("retry-after")),
                provider=self.name,
            )
        if response.status_code >= 400:
            raise ProviderUnavailableError(
                f"Explorer API error: HTTP {response.status_code}",
                provider=self.name,
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise ProviderUnavailableError("Explorer returned a non-JSON body", provider=self.name) from e

    @staticmethod
    def analyze_source(source: str) -> List[AuditFinding]:
        findings = []
        for pattern in SOURCE_PATTERNS:
            count = sum(1 for _ in pattern.regex.finditer(source))
            if count:
                findings.append(AuditFinding(pattern.name, pattern.severity, pattern.description, count))
        return findings

    async def audit(self, chain_id: int, address: str) -> ContractAuditReport:
        verified = await self.fetch_source_code(chain_id, address)
        if verified is None:
            return ContractAuditReport(
                address=address,
                chain_id=chain_id,
                source_verified=False,
                summary="Source code not verified on block explorer, cannot audit.",
            )

        findings = self.analyze_source(verified.source)
        logger.info(f"Contract audit complete: {address} chain={chain_id} findings={len(findings)}")
        return ContractAuditReport(
            address=address,
            chain_id=chain_id,
            source_verified=True,
            summary=self.build_summary(findings),
            contract_name=verified.contract_name or None,
            compiler_version=verified.compiler_version or None,
            findings=findings,
        )

    @staticmethod
    def build_summary(findings: List[AuditFinding]) -> str:
        dangers = sum(1 for f in findings if f.severity == AuditSeverity.DANGER)
        warnings = sum(1 for f in findings if f.severity == AuditSeverity.WARNING)
        if dangers:
            return f"DANGER: {dangers} critical pattern(s) found. {warnings} warning(s)."
        if warnings:
            return f"{warnings} warning(s) found. Review carefully before interacting."
        return "No dangerous patterns detected in source code."

    @staticmethod
    def format_audit_report(report: ContractAuditReport) -> str:
        lines = ["*Contract Source Audit*", ""]

        if not report.source_verified:
            lines.append("Source: NOT VERIFIED")
            lines.append("_Cannot audit unverified contracts. Proceed with extreme caution._")
            return "\n".join(lines)

        lines.append(f"Contract: {report.contract_name or 'Unknown'}")
        lines.append(f"Compiler: {report.compiler_version or 'Unknown'}")
        lines.append(f"Proxy: {'Yes (upgradeable)' if report.is_proxy else 'No'}")
        lines.append("")

        if not report.findings:
            lines.append("_No dangerous patterns detected._")
        else:
            lines.append("*Findings:*")
            for finding in report.findings:
                repeat = f" ({finding.match_count}x)" if finding.match_count > 1 else ""
                lines.append(f"  {_SEVERITY_ICONS[finding.severity]} {finding.description}{repeat}")

        lines.append("")
        lines.append(f"_{report.summary}_")
        return "\n".join(lines)
