"""
Transaction Execution Layer

Provides the infrastructure for executing agent-requested on-chain transactions:
- TransactionSimulator: dry-runs a request (Tenderly or eth_estimateGas)
- NonceManager: hands out nonces per (address, chain)
- GasOptimizer: picks fees for a gas strategy
- MevProtection: private relay submission on mainnet
- PositionLock: exclusive/shared locks per (user, chain, token)
- TransactionExecutor: drives a request from pending to a terminal status

Usage:
    from txpipeline.pipeline import build_pipeline
    from txpipeline.core.execution.models import TransactionRequest, ExecutionMeta

    pipeline = await build_pipeline()
    outcome = await pipeline.executor.execute(request, signer, ExecutionMeta(user_id="u1"))

The executor is not re-exported here; import it from
``txpipeline.core.execution.executor``.
"""

from .models import (
    MAX_UINT256,
    NATIVE_TOKEN,
    BalanceChange,
    ErrorCode,
    ExecutionMeta,
    GasFeeEstimate,
    GasStrategy,
    PreparedTransaction,
    SignedTransaction,
    SimulationResult,
    StatusChange,
    TransactionReceipt,
    TransactionRecord,
    TransactionRequest,
    TxStatus,
)
from .position_lock import LockHandle, LockMode, PositionLock, PositionLockTimeout
from .state import InvalidTransitionError, can_transition, validate_transition

__all__ = [
    # Models
    "MAX_UINT256",
    "NATIVE_TOKEN",
    "BalanceChange",
    "ErrorCode",
    "ExecutionMeta",
    "GasFeeEstimate",
    "GasStrategy",
    "PreparedTransaction",
    "SignedTransaction",
    "SimulationResult",
    "StatusChange",
    "TransactionReceipt",
    "TransactionRecord",
    "TransactionRequest",
    "TxStatus",
    # Position locks
    "LockHandle",
    "LockMode",
    "PositionLock",
    "PositionLockTimeout",
    # State machine
    "InvalidTransitionError",
    "can_transition",
    "validate_transition",
]
