from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from ..core.execution.models import SignedTransaction, TransactionReceipt, TransactionRequest
from ..core.risk.models import TokenSafetyReport


class Provider(ABC):
    """Base provider interface"""

    name: str
    timeout_s: float = 10

    @abstractmethod
    async def ready(self) -> bool:
        """Check if provider is ready to serve requests"""
        pass

    @abstractmethod
    async def health_check(self) -> Dict[str, Any]:
        """Return provider health status"""
        pass


class RiskDataClient(Provider):
    """External token/contract safety data source.

    ``get_token_security`` returns ``None`` when the provider does not know
    the token (unsupported chain, address missing from the response) and
    raises ``RecoverableError`` for transient failures.
    """

    @abstractmethod
    async def get_token_security(self, chain_id: int, address: str) -> Optional[TokenSafetyReport]:
        pass


class ChainClient(ABC):
    """Read and broadcast access to an EVM chain."""

    @abstractmethod
    async def get_transaction_count(self, chain_id: int, address: str, block: str = "pending") -> int:
        pass

    @abstractmethod
    async def get_fee_data(self, chain_id: int) -> Dict[str, Optional[int]]:
        """Returns ``base_fee_per_gas`` (None on legacy chains) and ``gas_price``."""
        pass

    @abstractmethod
    async def estimate_gas(self, request: TransactionRequest) -> int:
        pass

    @abstractmethod
    async def send_raw_transaction(self, chain_id: int, signed: SignedTransaction) -> str:
        pass

    @abstractmethod
    async def get_transaction_receipt(self, chain_id: int, tx_hash: str) -> Optional[TransactionReceipt]:
        pass

    @abstractmethod
    async def get_transaction_by_hash(self, chain_id: int, tx_hash: str) -> Optional[Dict[str, Any]]:
        pass


class PrivateRelay(ABC):
    """Private transaction submission endpoint."""

    supported_chains: List[int] = []

    @abstractmethod
    async def send_raw_transaction(self, raw_transaction: str) -> str:
        pass
