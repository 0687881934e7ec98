"""
Transaction simulation.

Dry-runs a request before anything is signed. With Tenderly credentials the
full simulation API is used and asset changes are reported; otherwise the
chain's ``eth_estimateGas`` serves as an estimate-only dry run, which reverts
when the transaction would fail.
"""

import asyncio
import logging
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any, Dict, List, Optional

import httpx

from ...config import settings
from .models import NATIVE_TOKEN, BalanceChange, SimulationResult, TransactionRequest

if TYPE_CHECKING:
    from ...providers.base import ChainClient

logger = logging.getLogger(__name__)

TENDERLY_API_URL = "https://api.tenderly.co/api/v1"

NATIVE_SYMBOLS: Dict[int, str] = {
    56: "BNB",
    100: "xDAI",
    137: "POL",
    250: "FTM",
    5000: "MNT",
    43114: "AVAX",
}

WEI_PER_ETHER = Decimal(10) ** 18


def native_symbol(chain_id: int) -> str:
    return NATIVE_SYMBOLS.get(chain_id, "ETH")


def _parse_asset_change(change: Any, sender: str) -> Optional[BalanceChange]:
    """Convert one Tenderly asset change; None for shapes we do not understand."""
    if not isinstance(change, dict):
        return None
    token_info = change.get("token_info")
    if not isinstance(token_info, dict):
        return None
    raw_amount = change.get("raw_amount")
    decimals = token_info.get("decimals")
    if raw_amount is None or decimals is None:
        return None

    try:
        amount = Decimal(int(str(raw_amount), 0)) / (Decimal(10) ** int(decimals))
    except (TypeError, ValueError, InvalidOperation):
        return None

    source = str(change.get("from") or "").lower()
    token = token_info.get("contract_address") or token_info.get("address") or NATIVE_TOKEN
    return BalanceChange(
        token=token,
        symbol=token_info.get("symbol") or "",
        amount=abs(amount),
        direction="out" if source == sender.lower() else "in",
    )


class TransactionSimulator:
    def __init__(
        self,
        chain_client: "ChainClient",
        tenderly_api_key: Optional[str] = None,
        tenderly_account: Optional[str] = None,
        tenderly_project: Optional[str] = None,
        timeout_s: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.chain_client = chain_client
        self.tenderly_api_key = tenderly_api_key
        self.tenderly_account = tenderly_account
        self.tenderly_project = tenderly_project
        self.timeout_s = timeout_s or settings.simulation_timeout_seconds
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

        if self.has_tenderly:
            logger.info("Simulator initialized with Tenderly API")
        else:
            logger.info("Simulator initialized in estimate-only mode (no Tenderly key)")

    @property
    def has_tenderly(self) -> bool:
        return bool(self.tenderly_api_key and self.tenderly_account and self.tenderly_project)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=TENDERLY_API_URL,
                timeout=self.timeout_s,
                headers={"X-Access-Key": self.tenderly_api_key or ""},
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def simulate(self, request: TransactionRequest) -> SimulationResult:
        """Dry-run ``request``. Never raises; failures come back as ``success=False``."""
        try:
            return await asyncio.wait_for(self._simulate(request), timeout=self.timeout_s)
        except asyncio.TimeoutError:
            logger.warning(f"Simulation timed out after {self.timeout_s}s")
            return SimulationResult(success=False, error="Simulation timed out")
        except Exception as e:
            logger.exception(f"Simulation error: {e}")
            return SimulationResult(success=False, error=f"Simulation error: {e}")

    async def _simulate(self, request: TransactionRequest) -> SimulationResult:
        if self.has_tenderly:
            return await self._simulate_with_tenderly(request)
        return await self._estimate_only(request)

    async def _simulate_with_tenderly(self, request: TransactionRequest) -> SimulationResult:
        path = f"/account/{self.tenderly_account}/project/{self.tenderly_project}/simulate"
        payload = {
            "network_id": str(request.chain_id),
            "from": request.from_address,
            "to": request.to_address,
            "value": str(request.value),
            "input": request.data or "0x",
            "gas": request.gas_limit or settings.default_simulation_gas,
            "save": False,
            "save_if_fails": False,
        }

        try:
            response = await self._get_client().post(path, json=payload)
        except httpx.HTTPError as e:
            logger.error(f"Tenderly simulation error, falling back to estimate: {e}")
            return await self._estimate_only(request)

        if not response.is_success:
            logger.error(f"Tenderly simulation failed: status={response.status_code} body={response.text[:200]}")
            return await self._estimate_only(request)

        try:
            data = response.json()
            sim = data["simulation"]
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Unexpected Tenderly response, falling back to estimate: {e}")
            return await self._estimate_only(request)

        asset_changes = ((data.get("transaction") or {}).get("transaction_info") or {}).get("asset_changes") or []
        balance_changes: List[BalanceChange] = []
        for change in asset_changes:
            parsed = _parse_asset_change(change, request.from_address)
            if parsed is None:
                logger.debug(f"Skipping unrecognised asset change: {change!r}")
                continue
            balance_changes.append(parsed)

        success = bool(sim.get("status"))
        logger.info(
            f"Tenderly simulation complete: success={success} gas_used={sim.get('gas_used')} "
            f"changes={len(balance_changes)}"
        )
        return SimulationResult(
            success=success,
            gas_estimate=int(sim.get("gas_used") or 0),
            balance_changes=balance_changes,
            error=None if success else (sim.get("error_message") or "Execution reverted"),
            raw_result=data,
        )

    async def _estimate_only(self, request: TransactionRequest) -> SimulationResult:
        try:
            gas_estimate = await self.chain_client.estimate_gas(request)
        except Exception as e:
            logger.warning(f"Gas estimation dry run failed: {e}")
            return SimulationResult(success=False, error=str(e))

        balance_changes: List[BalanceChange] = []
        if request.value > 0:
            balance_changes.append(
                BalanceChange(
                    token=NATIVE_TOKEN,
                    symbol=native_symbol(request.chain_id),
                    amount=Decimal(request.value) / WEI_PER_ETHER,
                    direction="out",
                )
            )

        logger.info(f"Estimate-only simulation: gas={gas_estimate} value={request.value}")
        return SimulationResult(success=True, gas_estimate=gas_estimate, balance_changes=balance_changes)

    @staticmethod
    def format_preview(result: SimulationResult, gas_price_wei: Optional[int] = None, chain_id: int = 1) -> str:
        lines = ["*Transaction Preview*", ""]

        if not result.success:
            lines.append("Status: WOULD FAIL")
            if result.error:
                lines.append(f"Reason: {result.error}")
            return "\n".join(lines)

        if result.balance_changes:
            lines.append("*Balance Changes:*")
            for change in result.balance_changes:
                sign = "-" if change.direction == "out" else "+"
                lines.append(f"  {sign}{change.amount} {change.symbol}")
            lines.append("")

        gas_line = f"Est. gas: {result.gas_estimate:,}"
        if gas_price_wei:
            cost = Decimal(result.gas_estimate * gas_price_wei) / WEI_PER_ETHER
            gas_line += f" (~{cost:.6f} {native_symbol(chain_id)})"
        lines.append(gas_line)

        return "\n".join(lines)
