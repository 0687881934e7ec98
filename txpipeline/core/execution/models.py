"""
Transaction execution models and types.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional


MAX_UINT256 = 2 ** 256
NATIVE_TOKEN = "native"

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
_HEX_RE = re.compile(r"^0x([0-9a-fA-F]{2})*$")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TxStatus(str, Enum):
    """Transaction lifecycle status."""
    PENDING = "pending"          # Record created, nothing done yet
    SIMULATED = "simulated"      # Dry run succeeded
    APPROVED = "approved"        # Guardrails and risk passed
    SIGNED = "signed"            # Signer returned raw transaction
    BROADCAST = "broadcast"      # Submitted, awaiting inclusion
    CONFIRMED = "confirmed"      # Included with status 1
    FAILED = "failed"            # Technical failure or on-chain revert
    REJECTED = "rejected"        # Policy decision

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({TxStatus.CONFIRMED, TxStatus.FAILED, TxStatus.REJECTED})


class GasStrategy(str, Enum):
    SLOW = "slow"
    STANDARD = "standard"
    FAST = "fast"


class ErrorCode(str, Enum):
    """Internal error codes kept in the log for diagnosis."""
    SIMULATION_FAILED = "SIMULATION_FAILED"
    GUARDRAIL_REJECTED = "GUARDRAIL_REJECTED"
    RISK_BLOCKED = "RISK_BLOCKED"
    USER_DECLINED = "USER_DECLINED"
    NONCE_UNAVAILABLE = "NONCE_UNAVAILABLE"
    GAS_ESTIMATION_FAILED = "GAS_ESTIMATION_FAILED"
    SIGNER_ERROR = "SIGNER_ERROR"
    BROADCAST_FAILED = "BROADCAST_FAILED"
    TX_REVERTED = "TX_REVERTED"
    POSITION_LOCKED = "POSITION_LOCKED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


@dataclass(frozen=True)
class TransactionRequest:
    """An already-formed transaction the agent wants executed."""
    chain_id: int
    from_address: str
    to_address: str
    value: int = 0                              # Wei
    data: Optional[str] = None                  # Calldata (hex)
    gas_limit: Optional[int] = None
    max_fee_per_gas: Optional[int] = None       # Caller-supplied caps
    max_priority_fee_per_gas: Optional[int] = None
    gas_strategy: Optional[GasStrategy] = None
    mev_protection: Optional[bool] = None       # None = configured default

    def __post_init__(self):
        if isinstance(self.value, bool) or not isinstance(self.value, int):
            raise ValueError("value must be an integer amount of wei")
        if not 0 <= self.value < MAX_UINT256:
            raise ValueError("value must fit in an unsigned 256-bit integer")
        if self.chain_id <= 0:
            raise ValueError(f"Invalid chain id: {self.chain_id}")
        for name in ("from_address", "to_address"):
            if not _ADDRESS_RE.match(getattr(self, name) or ""):
                raise ValueError(f"Invalid {name}: {getattr(self, name)!r}")
        if self.data is not None and not _HEX_RE.match(self.data):
            raise ValueError("data must be 0x-prefixed hex")
        for name in ("gas_limit", "max_fee_per_gas", "max_priority_fee_per_gas"):
            cap = getattr(self, name)
            if cap is not None and cap <= 0:
                raise ValueError(f"{name} must be positive")
        if self.gas_strategy is not None and not isinstance(self.gas_strategy, GasStrategy):
            object.__setattr__(self, "gas_strategy", GasStrategy(self.gas_strategy))

    @property
    def has_calldata(self) -> bool:
        return bool(self.data) and self.data != "0x"

    def to_call(self) -> Dict[str, Any]:
        """JSON-RPC call object for eth_call / eth_estimateGas."""
        call = {
            "from": self.from_address,
            "to": self.to_address,
            "value": hex(self.value),
        }
        if self.has_calldata:
            call["data"] = self.data
        if self.gas_limit:
            call["gas"] = hex(self.gas_limit)
        return call


@dataclass
class BalanceChange:
    token: str                                  # Contract address or "native"
    symbol: str
    amount: Decimal                             # Positive magnitude
    direction: str                              # "in" or "out"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token": self.token,
            "symbol": self.symbol,
            "amount": str(self.amount),
            "direction": self.direction,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BalanceChange":
        return cls(
            token=data["token"],
            symbol=data.get("symbol", ""),
            amount=Decimal(str(data["amount"])),
            direction=data["direction"],
        )


@dataclass
class SimulationResult:
    success: bool
    gas_estimate: int = 0
    balance_changes: List[BalanceChange] = field(default_factory=list)
    error: Optional[str] = None
    raw_result: Optional[Dict[str, Any]] = None

    def inbound(self) -> List[BalanceChange]:
        return [c for c in self.balance_changes if c.direction == "in"]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "gasEstimate": str(self.gas_estimate),
            "balanceChanges": [c.to_dict() for c in self.balance_changes],
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SimulationResult":
        return cls(
            success=bool(data["success"]),
            gas_estimate=int(data.get("gasEstimate") or 0),
            balance_changes=[BalanceChange.from_dict(c) for c in data.get("balanceChanges", [])],
            error=data.get("error"),
        )


@dataclass
class GasFeeEstimate:
    """Fee parameters chosen for a transaction."""
    strategy: GasStrategy
    max_fee_per_gas: Optional[int] = None      # EIP-1559
    max_priority_fee_per_gas: Optional[int] = None
    gas_price: Optional[int] = None            # Legacy
    base_fee_per_gas: Optional[int] = None

    @property
    def is_eip1559(self) -> bool:
        return self.max_fee_per_gas is not None

    @property
    def effective_cap(self) -> int:
        """Upper bound paid per unit of gas."""
        return self.max_fee_per_gas if self.is_eip1559 else (self.gas_price or 0)


@dataclass
class PreparedTransaction:
    """A transaction ready to be signed."""
    request: TransactionRequest
    nonce: int
    gas_limit: int
    fees: GasFeeEstimate

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for signing."""
        req = self.request
        tx = {
            "from": req.from_address,
            "to": req.to_address,
            "data": req.data or "0x",
            "value": hex(req.value),
            "chainId": hex(req.chain_id),
            "nonce": hex(self.nonce),
            "gas": hex(self.gas_limit),
        }
        if self.fees.is_eip1559:
            tx["maxFeePerGas"] = hex(self.fees.max_fee_per_gas)
            tx["maxPriorityFeePerGas"] = hex(self.fees.max_priority_fee_per_gas or 0)
        else:
            tx["gasPrice"] = hex(self.fees.gas_price or 0)
        return tx


@dataclass
class SignedTransaction:
    raw_transaction: str                        # 0x-prefixed RLP
    tx_hash: str


@dataclass
class TransactionReceipt:
    tx_hash: str
    success: bool
    block_number: Optional[int] = None
    gas_used: Optional[int] = None
    effective_gas_price: Optional[int] = None


@dataclass
class ExecutionMeta:
    """Caller context attached to a request."""
    user_id: str
    skill_name: str = ""
    intent_description: str = ""
    native_price_usd: Optional[float] = None
    value_usd: Optional[float] = None           # Overrides value * native price
    expected_output_amount: Optional[Decimal] = None
    expected_output_token: Optional[str] = None


@dataclass
class TransactionRecord:
    """Persisted view of one transaction's progress."""
    id: str
    user_id: str
    chain_id: int
    from_address: str
    to_address: str
    value: str                                  # Decimal string of wei
    status: TxStatus = TxStatus.PENDING
    value_usd: Optional[float] = None
    hash: Optional[str] = None
    nonce: Optional[int] = None
    skill_name: str = ""
    intent_description: str = ""
    simulation_result: Optional[Dict[str, Any]] = None
    guardrail_checks: Optional[List[Dict[str, Any]]] = None
    risk_verdict: Optional[Dict[str, Any]] = None
    gas_used: Optional[int] = None
    gas_price: Optional[int] = None
    block_number: Optional[int] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def is_final(self) -> bool:
        return self.status.is_terminal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "chainId": self.chain_id,
            "from": self.from_address,
            "to": self.to_address,
            "value": self.value,
            "valueUsd": self.value_usd,
            "hash": self.hash,
            "nonce": self.nonce,
            "status": self.status.value,
            "skillName": self.skill_name,
            "intentDescription": self.intent_description,
            "simulationResult": self.simulation_result,
            "guardrailChecks": self.guardrail_checks,
            "riskVerdict": self.risk_verdict,
            "gasUsed": self.gas_used,
            "gasPrice": self.gas_price,
            "blockNumber": self.block_number,
            "error": self.error,
            "errorCode": self.error_code,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


@dataclass
class StatusChange:
    """One row of the append-only status history."""
    tx_id: str
    from_status: Optional[TxStatus]
    to_status: TxStatus
    detail: Optional[str] = None
    at: datetime = field(default_factory=utcnow)
