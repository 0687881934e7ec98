"""JSON-RPC access to EVM chains (Alchemy by default, per-chain overrides)."""

import itertools
import logging
from typing import Any, Dict, List, Optional

import httpx

from ..config import settings
from ..core.execution.models import SignedTransaction, TransactionReceipt, TransactionRequest
from ..core.recovery import (
    ChainRpcError,
    NetworkError,
    OperationTimeoutError,
    ProviderUnavailableError,
    RateLimitError,
    RetryConfig,
    RetryPolicy,
    parse_retry_after,
)
from .base import ChainClient

logger = logging.getLogger(__name__)


def _hex_to_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    return int(value, 16)


class JsonRpcChainClient(ChainClient):
    """Chain client speaking raw JSON-RPC over httpx.

    Idempotent reads go through a ``RetryPolicy``; ``eth_sendRawTransaction``
    is attempted exactly once.
    """

    name = "jsonrpc"

    def __init__(
        self,
        rpc_urls: Optional[Dict[int, str]] = None,
        timeout_s: Optional[float] = None,
        read_retry: Optional[RetryPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._rpc_urls = dict(rpc_urls or {})
        self.timeout_s = timeout_s or settings.rpc_timeout_seconds
        self._read_retry = read_retry or RetryPolicy(
            RetryConfig(max_attempts=settings.rpc_read_attempts, initial_delay_seconds=0.3, max_delay_seconds=5.0)
        )
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._ids = itertools.count(1)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport)
        return self._client

    def _get_url(self, chain_id: int) -> str:
        url = self._rpc_urls.get(chain_id) or settings.resolve_rpc_url(chain_id)
        if not url:
            raise ValueError(f"No RPC URL configured for chain {chain_id}")
        return url

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _rpc_call(self, chain_id: int, method: str, params: List[Any]) -> Any:
        """Make one RPC call, mapping failures onto the recovery error types."""
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": next(self._ids),
        }

        try:
            response = await self._get_client().post(self._get_url(chain_id), json=payload)
        except httpx.TimeoutException as e:
            raise OperationTimeoutError(f"{method} timed out on chain {chain_id}", operation=method) from e
        except httpx.TransportError as e:
            raise NetworkError(f"{method} failed on chain {chain_id}: {e}", provider=self.name) from e

        if response.status_code == 429:
            raise RateLimitError(
                f"{method} rate limited on chain {chain_id}",
                retry_after=parse_retry_after(response.headers.get("retry-after")),
                provider=self.name,
            )
        if response.status_code >= 500:
            raise ProviderUnavailableError(
                f"{method} returned HTTP {response.status_code} on chain {chain_id}",
                provider=self.name,
                status_code=response.status_code,
            )
        response.raise_for_status()

        try:
            body = response.json()
        except ValueError as e:
            raise ProviderUnavailableError(f"{method} returned a non-JSON body", provider=self.name) from e

        error = body.get("error")
        if error:
            raise ChainRpcError(
                error.get("message", str(error)) if isinstance(error, dict) else str(error),
                method=method,
                code=error.get("code") if isinstance(error, dict) else None,
                data=error.get("data") if isinstance(error, dict) else None,
                chain_id=chain_id,
            )
        return body.get("result")

    async def _read(self, chain_id: int, method: str, params: List[Any]) -> Any:
        return await self._read_retry.run(
            lambda: self._rpc_call(chain_id, method, params),
            description=f"{method}[{chain_id}]",
        )

    async def get_transaction_count(self, chain_id: int, address: str, block: str = "pending") -> int:
        result = await self._read(chain_id, "eth_getTransactionCount", [address, block])
        return int(result, 16)

    async def get_fee_data(self, chain_id: int) -> Dict[str, Optional[int]]:
        """Latest base fee and gas price.

        ``base_fee_per_gas`` is None on chains without EIP-1559.
        """
        base_fee: Optional[int] = None
        try:
            history = await self._read(chain_id, "eth_feeHistory", [1, "latest", [50]])
            fees = (history or {}).get("baseFeePerGas") or []
            if fees:
                base_fee = int(fees[-1], 16)
        except ChainRpcError as e:
            logger.debug(f"eth_feeHistory unsupported on chain {chain_id}: {e}")

        gas_price = _hex_to_int(await self._read(chain_id, "eth_gasPrice", []))
        return {"base_fee_per_gas": base_fee, "gas_price": gas_price}

    async def estimate_gas(self, request: TransactionRequest) -> int:
        result = await self._read(request.chain_id, "eth_estimateGas", [request.to_call()])
        return int(result, 16)

    async def send_raw_transaction(self, chain_id: int, signed: SignedTransaction) -> str:
        return await self._rpc_call(chain_id, "eth_sendRawTransaction", [signed.raw_transaction])

    async def get_transaction_receipt(self, chain_id: int, tx_hash: str) -> Optional[TransactionReceipt]:
        receipt = await self._read(chain_id, "eth_getTransactionReceipt", [tx_hash])
        if not receipt:
            return None
        return TransactionReceipt(
            tx_hash=receipt.get("transactionHash", tx_hash),
            success=int(receipt.get("status", "0x1"), 16) == 1,
            block_number=_hex_to_int(receipt.get("blockNumber")),
            gas_used=_hex_to_int(receipt.get("gasUsed")),
            effective_gas_price=_hex_to_int(receipt.get("effectiveGasPrice")),
        )

    async def get_transaction_by_hash(self, chain_id: int, tx_hash: str) -> Optional[Dict[str, Any]]:
        return await self._read(chain_id, "eth_getTransactionByHash", [tx_hash])
