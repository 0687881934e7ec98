"""Flashbots Protect private transaction relay."""

from typing import Any, Dict, Optional

import httpx

from ..config import settings
from ..core.recovery import (
    ErrorCategory,
    NetworkError,
    OperationTimeoutError,
    ProviderUnavailableError,
    RateLimitError,
    UnrecoverableError,
    parse_retry_after,
)
from .base import PrivateRelay


class RelayRejectedError(UnrecoverableError):
    """The relay answered with a JSON-RPC error."""

    def __init__(self, message: str):
        super().__init__(message, category=ErrorCategory.PROVIDER)


class FlashbotsProtectRelay(PrivateRelay):
    """Posts ``eth_sendRawTransaction`` to Flashbots Protect (Ethereum mainnet)."""

    name = "flashbots"
    supported_chains = [1]

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        timeout_s: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.rpc_url = rpc_url or settings.flashbots_rpc_url
        self.timeout_s = timeout_s or settings.broadcast_timeout_seconds
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport)
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def send_raw_transaction(self, raw_transaction: str) -> str:
        payload: Dict[str, Any] = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "eth_sendRawTransaction",
            "params": [raw_transaction],
        }

        try:
            response = await self._get_client().post(
                self.rpc_url,
                json=payload,
                headers={"Content-Type": "application/json"},
            )
        except httpx.TimeoutException as e:
            raise OperationTimeoutError("Flashbots relay timed out", operation="eth_sendRawTransaction") from e
        except httpx.TransportError as e:
            raise NetworkError(f"Flashbots relay unreachable: {e}", provider=self.name) from e

        if response.status_code == 429:
            raise RateLimitError(
                "Flashbots relay rate limited",
                retry_after=parse_retry_after(response.headers.get("retry-after")),
                provider=self.name,
            )
        if response.status_code >= 500:
            raise ProviderUnavailableError(
                f"Flashbots relay HTTP {response.status_code}",
                provider=self.name,
                status_code=response.status_code,
            )
        if not response.is_success:
            raise RelayRejectedError(f"Flashbots relay HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise RelayRejectedError("Flashbots relay returned a non-JSON body") from e

        error = data.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise RelayRejectedError(message or "Flashbots relay rejected the transaction")

        result = data.get("result")
        if not result:
            raise RelayRejectedError("Flashbots relay returned no transaction hash")
        return result
