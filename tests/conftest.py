"""
Shared fixtures: in-memory database and in-process fakes for the chain,
signer, risk data provider and private relay.
"""

import hashlib
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio

from txpipeline.core.execution.executor import TransactionExecutor
from txpipeline.core.execution.gas import GasOptimizer
from txpipeline.core.execution.mev import MevProtection
from txpipeline.core.execution.models import (
    PreparedTransaction,
    SignedTransaction,
    TransactionReceipt,
    TransactionRequest,
)
from txpipeline.core.execution.nonce_manager import NonceManager
from txpipeline.core.execution.signer import Signer
from txpipeline.core.execution.simulator import TransactionSimulator
from txpipeline.core.policy import Guardrails, LimitsStore
from txpipeline.core.recovery import RetryConfig, RetryPolicy
from txpipeline.core.risk import ContractListStore, RiskCache, RiskEngine, TokenSafetyReport
from txpipeline.db.database import Database
from txpipeline.db.txlog import TransactionLog
from txpipeline.providers.base import ChainClient, PrivateRelay, RiskDataClient

GWEI = 10 ** 9

SENDER = "0x1111111111111111111111111111111111111111"
RECIPIENT = "0x2222222222222222222222222222222222222222"
TOKEN = "0x3333333333333333333333333333333333333333"


class FakeChainClient(ChainClient):
    """In-memory chain. Sent transactions are mined immediately unless
    ``receipt_status`` is None."""

    def __init__(self, start_nonce: int = 0):
        self.start_nonce = start_nonce
        self.base_fee: Optional[int] = 30 * GWEI
        self.gas_price: Optional[int] = 32 * GWEI
        self.gas_estimate = 21_000
        self.estimate_error: Optional[Exception] = None
        self.send_error: Optional[Exception] = None
        self.receipt_status: Optional[bool] = True
        self.pool: Dict[str, Dict[str, Any]] = {}
        self.pool_error: Optional[Exception] = None
        self.receipts: Dict[str, TransactionReceipt] = {}
        self.sent: List[SignedTransaction] = []
        self.calls: List[str] = []

    async def get_transaction_count(self, chain_id: int, address: str, block: str = "pending") -> int:
        self.calls.append("get_transaction_count")
        return self.start_nonce

    async def get_fee_data(self, chain_id: int) -> Dict[str, Optional[int]]:
        self.calls.append("get_fee_data")
        return {"base_fee_per_gas": self.base_fee, "gas_price": self.gas_price}

    async def estimate_gas(self, request: TransactionRequest) -> int:
        self.calls.append("estimate_gas")
        if self.estimate_error:
            raise self.estimate_error
        return self.gas_estimate

    async def send_raw_transaction(self, chain_id: int, signed: SignedTransaction) -> str:
        self.calls.append("send_raw_transaction")
        if self.send_error:
            raise self.send_error
        self.sent.append(signed)
        self.pool[signed.tx_hash] = {"hash": signed.tx_hash}
        if self.receipt_status is not None:
            self.mine(signed.tx_hash, self.receipt_status)
        return signed.tx_hash

    async def get_transaction_receipt(self, chain_id: int, tx_hash: str) -> Optional[TransactionReceipt]:
        self.calls.append("get_transaction_receipt")
        return self.receipts.get(tx_hash)

    async def get_transaction_by_hash(self, chain_id: int, tx_hash: str) -> Optional[Dict[str, Any]]:
        self.calls.append("get_transaction_by_hash")
        if self.pool_error:
            raise self.pool_error
        return self.pool.get(tx_hash)

    def mine(self, tx_hash: str, success: bool = True, block_number: int = 100) -> None:
        self.receipts[tx_hash] = TransactionReceipt(
            tx_hash=tx_hash,
            success=success,
            block_number=block_number,
            gas_used=21_000,
            effective_gas_price=31 * GWEI,
        )


class FakeSigner(Signer):
    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.signed: List[PreparedTransaction] = []

    async def sign_transaction(self, prepared: PreparedTransaction) -> SignedTransaction:
        if self.error:
            raise self.error
        self.signed.append(prepared)
        payload = repr(sorted(prepared.to_dict().items())).encode()
        return SignedTransaction(
            raw_transaction="0x02" + payload.hex(),
            tx_hash="0x" + hashlib.sha256(payload).hexdigest(),
        )


class FakeRiskClient(RiskDataClient):
    name = "fake-risk"

    def __init__(self, reports: Optional[Dict[str, TokenSafetyReport]] = None):
        self.reports = {k.lower(): v for k, v in (reports or {}).items()}
        self.error: Optional[Exception] = None
        self.calls = 0

    async def ready(self) -> bool:
        return True

    async def health_check(self) -> Dict[str, Any]:
        return {"status": "healthy"}

    async def get_token_security(self, chain_id: int, address: str) -> Optional[TokenSafetyReport]:
        self.calls += 1
        if self.error:
            raise self.error
        return self.reports.get(address.lower())


class FakeRelay(PrivateRelay):
    supported_chains = [1]

    def __init__(self, result: Optional[str] = "0x" + "ab" * 32, error: Optional[Exception] = None):
        self.result = result
        self.error = error
        self.submitted: List[str] = []

    async def send_raw_transaction(self, raw_transaction: str) -> str:
        self.submitted.append(raw_transaction)
        if self.error:
            raise self.error
        return self.result


async def no_sleep(_delay: float) -> None:
    return None


@pytest_asyncio.fixture
async def db():
    database = Database(":memory:")
    await database.connect()
    yield database
    await database.close()


@pytest.fixture
def chain() -> FakeChainClient:
    return FakeChainClient()


@pytest.fixture
def signer() -> FakeSigner:
    return FakeSigner()


@pytest.fixture
def risk_client() -> FakeRiskClient:
    return FakeRiskClient()


@pytest.fixture
def relay() -> FakeRelay:
    return FakeRelay()


@pytest.fixture
def make_executor(db, chain, risk_client, relay):
    """Factory so tests can tweak collaborators before building."""

    def _make(
        unknown_policy: str = "block",
        guardrails: Optional[Guardrails] = None,
        poll_attempts: int = 3,
        mev_enabled: bool = True,
        notifier=None,
        position_lock=None,
    ) -> TransactionExecutor:
        risk_engine = RiskEngine(
            risk_client,
            cache=RiskCache(ttl_seconds=3600),
            contract_lists=ContractListStore(db),
            retry_policy=RetryPolicy(RetryConfig(max_attempts=1), sleep=no_sleep),
            unknown_policy=unknown_policy,
            lookup_timeout_s=5,
        )
        executor = TransactionExecutor(
            tx_log=TransactionLog(db),
            chain_client=chain,
            simulator=TransactionSimulator(chain),
            guardrails=guardrails or Guardrails(),
            limits=LimitsStore(db),
            risk_engine=risk_engine,
            nonce_manager=NonceManager(chain),
            gas_optimizer=GasOptimizer(chain),
            mev=MevProtection(relay, RetryPolicy(RetryConfig(max_attempts=2), sleep=no_sleep)) if mev_enabled else None,
            notifier=notifier,
            position_lock=position_lock,
            sleep=no_sleep,
        )
        executor.poll_attempts = poll_attempts
        return executor

    return _make

