"""GoPlus token security API client."""

import logging
from typing import Any, Dict, List, Optional

import httpx

from ..config import settings
from ..core.recovery import (
    ErrorCategory,
    NetworkError,
    OperationTimeoutError,
    ProviderUnavailableError,
    RateLimitError,
    RETRYABLE_STATUS_CODES,
    UnrecoverableError,
    parse_retry_after,
)
from ..core.risk.models import RiskDimension, RiskSeverity, TokenSafetyReport
from .base import RiskDataClient

logger = logging.getLogger(__name__)

# GoPlus chain IDs match standard EVM chain IDs
SUPPORTED_CHAINS = frozenset({1, 8453, 42161, 10, 137, 56, 43114, 324, 534352, 81457, 100, 59144, 250, 5000})


def _flag(data: Dict[str, Any], key: str) -> bool:
    return str(data.get(key, "")) == "1"


def _percent(value: Any) -> float:
    try:
        return float(value or 0) * 100
    except (TypeError, ValueError):
        return 0.0


def _count(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


class GoPlusProvider(RiskDataClient):
    """Fetches token security facts and scores them into risk dimensions."""

    name = "goplus"

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout_s: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.goplus_base_url).rstrip("/")
        self.timeout_s = timeout_s or settings.risk_lookup_timeout_seconds
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout_s,
                headers={"Accept": "application/json"},
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def ready(self) -> bool:
        return bool(self.base_url)

    async def health_check(self) -> Dict[str, Any]:
        try:
            response = await self._get_client().get("/supported_chains")
            response.raise_for_status()
            return {"status": "healthy", "latency_ms": int(response.elapsed.total_seconds() * 1000)}
        except httpx.HTTPError as e:
            return {"status": "error", "reason": str(e)}

    def supports_chain(self, chain_id: int) -> bool:
        return chain_id in SUPPORTED_CHAINS

    async def get_token_security(self, chain_id: int, address: str) -> Optional[TokenSafetyReport]:
        if not self.supports_chain(chain_id):
            logger.warning(f"Chain {chain_id} not supported by GoPlus")
            return None

        token = address.lower()
        try:
            response = await self._get_client().get(
                f"/token_security/{chain_id}",
                params={"contract_addresses": token},
            )
        except httpx.TimeoutException as e:
            raise OperationTimeoutError("GoPlus request timed out", operation="token_security") from e
        except httpx.TransportError as e:
            raise NetworkError(f"GoPlus request failed: {e}", provider=self.name) from e

        if response.status_code == 429:
            raise RateLimitError(
                "GoPlus rate limit exceeded",
                retry_after=parse_retry_after(response.headers.get("retry-after")),
                provider=self.name,
            )
        if response.status_code in RETRYABLE_STATUS_CODES or response.status_code >= 500:
            raise ProviderUnavailableError(
                f"GoPlus API error: HTTP {response.status_code}",
                provider=self.name,
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            raise UnrecoverableError(
                f"GoPlus rejected request: HTTP {response.status_code}",
                category=ErrorCategory.PROVIDER,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderUnavailableError("GoPlus returned a non-JSON body", provider=self.name) from e

        if data.get("code") != 1:
            raise ProviderUnavailableError(
                f"GoPlus returned code {data.get('code')}: {data.get('message', '')}",
                provider=self.name,
            )

        token_data = (data.get("result") or {}).get(token)
        if not token_data:
            logger.warning(f"Token {token} not found in GoPlus response (chain {chain_id})")
            return None

        return self.parse_token_report(address, chain_id, token_data)

    def parse_token_report(self, address: str, chain_id: int, data: Dict[str, Any]) -> TokenSafetyReport:
        dimensions: List[RiskDimension] = []

        is_honeypot = _flag(data, "is_honeypot")
        can_take_back_ownership = _flag(data, "can_take_back_ownership")
        owner_change_balance = _flag(data, "owner_change_balance")
        has_mint_function = _flag(data, "is_mintable")
        can_blacklist = _flag(data, "is_blacklisted")
        has_trading_cooldown = _flag(data, "trading_cooldown")
        is_open_source = _flag(data, "is_open_source")
        buy_tax = _percent(data.get("buy_tax"))
        sell_tax = _percent(data.get("sell_tax"))
        holder_count = _count(data.get("holder_count"))

        # Top 10 non-contract holders
        human_holders = [h for h in data.get("holders") or [] if not h.get("is_contract")][:10]
        top_holder_percent = sum(_percent(h.get("percent")) for h in human_holders)

        if is_honeypot:
            dimensions.append(RiskDimension(
                "honeypot", RiskSeverity.CRITICAL,
                "Token is flagged as a honeypot, you may not be able to sell", 100,
            ))

        if can_take_back_ownership:
            dimensions.append(RiskDimension(
                "owner_takeback", RiskSeverity.HIGH,
                "Owner can reclaim ownership after renouncing", 80,
            ))

        if owner_change_balance:
            dimensions.append(RiskDimension(
                "owner_modify_balance", RiskSeverity.CRITICAL,
                "Owner can modify token balances", 90,
            ))

        if has_mint_function:
            dimensions.append(RiskDimension(
                "mintable", RiskSeverity.MEDIUM,
                "Token has a mint function, supply can be inflated", 50,
            ))

        if can_blacklist:
            dimensions.append(RiskDimension(
                "blacklist", RiskSeverity.MEDIUM,
                "Contract can blacklist addresses from trading", 40,
            ))

        if has_trading_cooldown:
            dimensions.append(RiskDimension(
                "trading_cooldown", RiskSeverity.LOW,
                "Token has a trading cooldown period", 20,
            ))

        for label, tax in (("buy_tax", buy_tax), ("sell_tax", sell_tax)):
            if tax > 5:
                dimensions.append(RiskDimension(
                    label,
                    RiskSeverity.HIGH if tax > 20 else RiskSeverity.MEDIUM,
                    f"{label.replace('_', ' ').capitalize()}: {tax:.1f}%",
                    int(min(tax * 2, 100)),
                ))

        if not is_open_source:
            dimensions.append(RiskDimension(
                "not_verified", RiskSeverity.MEDIUM,
                "Contract source code is not verified", 40,
            ))

        if top_holder_percent > 25:
            dimensions.append(RiskDimension(
                "whale_concentration",
                RiskSeverity.HIGH if top_holder_percent > 50 else RiskSeverity.MEDIUM,
                f"Top holders control {top_holder_percent:.1f}% of supply",
                int(min(top_holder_percent, 100)),
            ))

        if 0 < holder_count < 100:
            dimensions.append(RiskDimension(
                "low_holders", RiskSeverity.MEDIUM,
                f"Only {holder_count} holders", 40,
            ))

        lp_holders = data.get("lp_holders") or []
        if lp_holders:
            total_lp = sum(_percent(h.get("percent")) for h in lp_holders)
            locked_lp = sum(_percent(h.get("percent")) for h in lp_holders if h.get("is_locked") == 1)
            locked_share = (locked_lp / total_lp) * 100 if total_lp > 0 else 0
            if locked_share < 80:
                high = locked_share < 20
                dimensions.append(RiskDimension(
                    "unlocked_liquidity",
                    RiskSeverity.HIGH if high else RiskSeverity.MEDIUM,
                    f"Only {locked_share:.1f}% of LP tokens are locked",
                    70 if high else 40,
                ))

        lp_holder_count = _count(data.get("lp_holder_count"))
        if 0 < lp_holder_count < 5:
            dimensions.append(RiskDimension(
                "low_lp_holders", RiskSeverity.MEDIUM,
                f"Only {lp_holder_count} LP holder(s), liquidity is concentrated", 45,
            ))

        report = TokenSafetyReport(
            address=address,
            chain_id=chain_id,
            dimensions=dimensions,
            is_honeypot=is_honeypot,
            has_owner_privileges=can_take_back_ownership or owner_change_balance,
            is_proxy=_flag(data, "is_proxy"),
            is_verified=is_open_source,
            symbol=data.get("token_symbol") or "UNKNOWN",
            name=data.get("token_name") or "Unknown Token",
            can_take_back_ownership=can_take_back_ownership,
            has_mint_function=has_mint_function,
            can_blacklist=can_blacklist,
            has_trading_cooldown=has_trading_cooldown,
            buy_tax=buy_tax,
            sell_tax=sell_tax,
            holder_count=holder_count,
            top_holder_percent=top_holder_percent,
        )

        logger.info(
            f"Token risk report generated: {address} chain={chain_id} "
            f"score={report.overall_score} level={report.risk_level} dimensions={len(dimensions)}"
        )
        return report
