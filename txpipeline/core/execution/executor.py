"""
Transaction executor.

Drives one request through its lifecycle:
- Simulation
- Guardrail and risk checks (with optional caller approval)
- Nonce reservation and fee selection
- Signing
- Broadcast (private relay or public mempool)
- Confirmation monitoring

Every status change is written to the transaction log before the next step
starts, and observers are notified after each write. ``execute`` never raises.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional

import structlog

from ...config import settings
from ..policy import GuardrailCheck, GuardrailContext, Guardrails, LimitsStore, all_passed, failure_reasons
from ..policy.guardrails import SPENT_STATUSES
from ..recovery import ChainRpcError, ErrorCategory
from ..risk import RiskAction, RiskEngine, RiskVerdict, worst_verdict
from .events import TransitionEvent, TransitionNotifier
from .gas import GasOptimizer
from .mev import MevProtection
from .models import (
    NATIVE_TOKEN,
    ErrorCode,
    ExecutionMeta,
    PreparedTransaction,
    SignedTransaction,
    SimulationResult,
    TransactionReceipt,
    TransactionRecord,
    TransactionRequest,
    TxStatus,
)
from .nonce_manager import NonceManager
from .position_lock import LockMode, PositionLock, PositionLockTimeout
from .signer import Signer
from .simulator import TransactionSimulator

if TYPE_CHECKING:
    from ...db.txlog import TransactionLog
    from ...providers.base import ChainClient

logger = logging.getLogger(__name__)

WEI_PER_ETHER = Decimal(10) ** 18
ACTIVITY_WINDOW = timedelta(hours=24)


def technical_failure_message(code: ErrorCode) -> str:
    return f"Transaction failed, please retry later (code: {code.value})"


@dataclass
class ExecutionCallbacks:
    """Caller hooks. Decision hooks return True to proceed."""
    on_simulated: Optional[Callable[[SimulationResult, str], Awaitable[None]]] = None
    on_risk_warning: Optional[Callable[[str], Awaitable[bool]]] = None
    on_confirmation_required: Optional[Callable[[str, str], Awaitable[bool]]] = None
    on_broadcast: Optional[Callable[[str], Awaitable[None]]] = None
    on_confirmed: Optional[Callable[[str, Optional[int]], Awaitable[None]]] = None
    on_failed: Optional[Callable[[str], Awaitable[None]]] = None


@dataclass
class ExecutionOutcome:
    """What the caller gets back; always present, never an exception."""
    status: TxStatus
    message: str
    tx_id: Optional[str] = None
    hash: Optional[str] = None
    error_code: Optional[ErrorCode] = None
    checks: List[GuardrailCheck] = field(default_factory=list)
    risk_verdicts: List[RiskVerdict] = field(default_factory=list)
    record: Optional[TransactionRecord] = None

    @property
    def success(self) -> bool:
        return self.status == TxStatus.CONFIRMED

    @property
    def pending(self) -> bool:
        return self.status == TxStatus.BROADCAST


class _Halt(Exception):
    """Internal: stop the pipeline with a terminal outcome already recorded."""

    def __init__(self, outcome: ExecutionOutcome):
        super().__init__(outcome.message)
        self.outcome = outcome


class TransactionExecutor:
    """
    Orchestrates simulation, policy, signing and broadcast for agent requests.

    All collaborators are injected; one instance is shared per process so the
    nonce manager and risk cache it holds are shared too.
    """

    def __init__(
        self,
        tx_log: "TransactionLog",
        chain_client: "ChainClient",
        simulator: TransactionSimulator,
        guardrails: Guardrails,
        limits: LimitsStore,
        risk_engine: RiskEngine,
        nonce_manager: NonceManager,
        gas_optimizer: GasOptimizer,
        mev: Optional[MevProtection] = None,
        notifier: Optional[TransitionNotifier] = None,
        position_lock: Optional[PositionLock] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.tx_log = tx_log
        self.chain_client = chain_client
        self.simulator = simulator
        self.guardrails = guardrails
        self.limits = limits
        self.risk_engine = risk_engine
        self.nonce_manager = nonce_manager
        self.gas_optimizer = gas_optimizer
        self.mev = mev
        self.notifier = notifier or TransitionNotifier()
        self.position_lock = position_lock
        self._sleep = sleep
        self._policy_locks: Dict[str, asyncio.Lock] = {}

        self.signer_timeout_s = settings.signer_timeout_seconds
        self.broadcast_timeout_s = settings.broadcast_timeout_seconds
        self.approval_timeout_s = settings.approval_timeout_seconds
        self.poll_attempts = settings.confirmation_poll_attempts
        self.poll_initial_delay_s = settings.confirmation_poll_initial_delay_seconds
        self.poll_max_delay_s = settings.confirmation_poll_max_delay_seconds
        self.position_lock_wait_s = settings.position_lock_wait_seconds

    # ---- Public API ----

    async def execute(
        self,
        request: TransactionRequest,
        signer: Signer,
        meta: ExecutionMeta,
        callbacks: Optional[ExecutionCallbacks] = None,
    ) -> ExecutionOutcome:
        callbacks = callbacks or ExecutionCallbacks()
        value_usd = self.value_usd(request, meta)

        try:
            record = await self.tx_log.create(request, meta, value_usd)
        except Exception as e:
            logger.exception(f"Could not create transaction record: {e}")
            return ExecutionOutcome(
                status=TxStatus.FAILED,
                message=technical_failure_message(ErrorCode.INTERNAL_ERROR),
                error_code=ErrorCode.INTERNAL_ERROR,
            )

        self._emit(record, None, "created")

        with structlog.contextvars.bound_contextvars(tx_id=record.id, user_id=meta.user_id, chain_id=request.chain_id):
            try:
                if self.position_lock is None:
                    return await self._run(record, request, signer, meta, callbacks, value_usd)
                return await self._run_locked(record, request, signer, meta, callbacks, value_usd)
            except _Halt as halt:
                return halt.outcome
            except Exception as e:
                logger.exception(f"Unexpected execution failure: {e}")
                try:
                    current = await self.tx_log.get(record.id) or record
                except Exception as lookup_error:
                    logger.warning(f"Could not reload {record.id}: {lookup_error}")
                    current = record
                if current.is_final:
                    return self._outcome_for(current)
                return await self._fail(current, ErrorCode.INTERNAL_ERROR, str(e), callbacks)

    async def reconcile(self, tx_id: str) -> ExecutionOutcome:
        """Re-check a record left in ``broadcast`` against the chain."""
        record = await self.tx_log.get(tx_id)
        if record is None:
            raise KeyError(tx_id)
        if record.status != TxStatus.BROADCAST or not record.hash:
            return self._outcome_for(record)

        try:
            receipt = await self.chain_client.get_transaction_receipt(record.chain_id, record.hash)
        except Exception as e:
            logger.warning(f"Receipt lookup failed during reconcile of {tx_id}: {e}")
            receipt = None

        if receipt is None:
            return self._outcome_for(record)
        return await self._finalize(record, receipt, ExecutionCallbacks())

    async def reconcile_broadcast(self, limit: int = 100) -> List[ExecutionOutcome]:
        records = await self.tx_log.get_by_status(TxStatus.BROADCAST, limit=limit)
        outcomes = []
        for record in records:
            outcomes.append(await self.reconcile(record.id))
        logger.info(
            f"Reconciled {len(records)} broadcast transactions: "
            f"{sum(1 for o in outcomes if o.status != TxStatus.BROADCAST)} resolved"
        )
        return outcomes

    def value_usd(self, request: TransactionRequest, meta: ExecutionMeta) -> float:
        if meta.value_usd is not None:
            return float(meta.value_usd)
        price = meta.native_price_usd if meta.native_price_usd is not None else settings.fallback_native_price_usd
        return float(Decimal(request.value) / WEI_PER_ETHER * Decimal(str(price)))

    # ---- Pipeline ----

    async def _run_locked(
        self,
        record: TransactionRecord,
        request: TransactionRequest,
        signer: Signer,
        meta: ExecutionMeta,
        callbacks: ExecutionCallbacks,
        value_usd: float,
    ) -> ExecutionOutcome:
        key = PositionLock.key(meta.user_id, request.chain_id, request.to_address)
        try:
            handle = await self.position_lock.acquire(key, LockMode.EXCLUSIVE, timeout=self.position_lock_wait_s)
        except PositionLockTimeout as e:
            logger.warning(str(e))
            raise _Halt(await self._fail(record, ErrorCode.POSITION_LOCKED, str(e), callbacks))

        try:
            return await self._run(record, request, signer, meta, callbacks, value_usd)
        finally:
            self.position_lock.release(handle)

    def _policy_lock(self, user_id: str) -> asyncio.Lock:
        lock = self._policy_locks.get(user_id)
        if lock is None:
            lock = self._policy_locks[user_id] = asyncio.Lock()
        return lock

    async def _run(
        self,
        record: TransactionRecord,
        request: TransactionRequest,
        signer: Signer,
        meta: ExecutionMeta,
        callbacks: ExecutionCallbacks,
        value_usd: float,
    ) -> ExecutionOutcome:
        # 1. Simulate
        simulation = await self.simulator.simulate(request)
        preview = self.simulator.format_preview(simulation, chain_id=request.chain_id)
        await self._notify(callbacks.on_simulated, simulation, preview)

        if not simulation.success:
            raise _Halt(await self._fail(
                record,
                ErrorCode.SIMULATION_FAILED,
                f"Simulation failed: {simulation.error or 'unknown error'}",
                callbacks,
                simulation_result=simulation.to_dict(),
            ))

        record = await self._advance(record, TxStatus.SIMULATED, simulation_result=simulation.to_dict())

        # 2. Policy. Spending history is read and the approval written under one
        # per-user lock so concurrent requests see each other.
        async with self._policy_lock(meta.user_id):
            checks, verdicts = await self._evaluate_policy(request, meta, simulation, value_usd)
            checks_data = [c.to_dict() for c in checks]
            worst = worst_verdict(verdicts)
            verdict_data = worst.to_dict() if worst else None

            reasons = []
            if not all_passed(checks):
                reasons.append(f"Guardrails blocked: {failure_reasons(checks)}")
            if worst is not None and worst.is_blocked:
                reasons.append(f"Risk engine blocked: {worst.reason}")
            if reasons:
                code = ErrorCode.GUARDRAIL_REJECTED if not all_passed(checks) else ErrorCode.RISK_BLOCKED
                raise _Halt(await self._reject(
                    record, code, "; ".join(reasons), callbacks, checks, verdicts,
                    guardrail_checks=checks_data, risk_verdict=verdict_data,
                ))

            if worst is not None and worst.action == RiskAction.WARN:
                if callbacks.on_risk_warning is None:
                    logger.warning(f"Risk warning with no approval hook, proceeding: {worst.reason}")
                elif not await self._ask(callbacks.on_risk_warning, f"Risk warning: {worst.reason}"):
                    raise _Halt(await self._reject(
                        record, ErrorCode.USER_DECLINED, "Transaction cancelled after risk warning.",
                        callbacks, checks, verdicts,
                        guardrail_checks=checks_data, risk_verdict=verdict_data,
                    ))

            limits = await self.limits.get(meta.user_id)
            if callbacks.on_confirmation_required and self.guardrails.requires_confirmation(value_usd, limits):
                if not await self._ask(callbacks.on_confirmation_required, preview, record.id):
                    raise _Halt(await self._reject(
                        record, ErrorCode.USER_DECLINED, "Transaction cancelled by user.",
                        callbacks, checks, verdicts,
                        guardrail_checks=checks_data, risk_verdict=verdict_data,
                    ))

            record = await self._advance(
                record, TxStatus.APPROVED, guardrail_checks=checks_data, risk_verdict=verdict_data
            )

        # 3. Nonce, gas, sign
        prepared = await self._prepare(record, request, simulation, callbacks)
        signed = await self._sign(record, prepared, signer, callbacks)
        record = await self._advance(record, TxStatus.SIGNED, nonce=prepared.nonce, hash=signed.tx_hash)

        # 4. Broadcast
        tx_hash = await self._broadcast(record, request, prepared, signed, callbacks)
        record = await self._advance(
            record, TxStatus.BROADCAST, hash=tx_hash, gas_price=prepared.fees.effective_cap
        )
        logger.info(f"Transaction broadcast: {tx_hash}")
        await self._notify(callbacks.on_broadcast, tx_hash)

        # 5. Confirm
        receipt = await self._wait_for_receipt(request.chain_id, tx_hash)
        if receipt is None:
            logger.warning(f"No receipt after {self.poll_attempts} polls, leaving {tx_hash} as broadcast")
            return ExecutionOutcome(
                status=TxStatus.BROADCAST,
                message=f"Transaction submitted, confirmation pending: {tx_hash}",
                tx_id=record.id,
                hash=tx_hash,
                checks=checks,
                risk_verdicts=verdicts,
                record=record,
            )

        outcome = await self._finalize(record, receipt, callbacks)
        outcome.checks = checks
        outcome.risk_verdicts = verdicts
        return outcome

    async def _evaluate_policy(
        self,
        request: TransactionRequest,
        meta: ExecutionMeta,
        simulation: SimulationResult,
        value_usd: float,
    ):
        limits = await self.limits.get(meta.user_id)
        history = await self.tx_log.get_user_activity(
            meta.user_id, since=self.guardrails.now() - ACTIVITY_WINDOW, statuses=SPENT_STATUSES
        )
        checks = self.guardrails.check(
            request,
            limits,
            history,
            simulation,
            GuardrailContext(
                value_usd=value_usd,
                expected_output_amount=meta.expected_output_amount,
                expected_output_token=meta.expected_output_token,
            ),
        )

        targets = []
        if request.has_calldata:
            targets.append(request.to_address)
        targets.extend(c.token for c in simulation.inbound() if c.token != NATIVE_TOKEN)

        verdicts = []
        if targets:
            verdicts = await self.risk_engine.assess_many(request.chain_id, targets, meta.user_id)
        return checks, verdicts

    async def _prepare(
        self,
        record: TransactionRecord,
        request: TransactionRequest,
        simulation: SimulationResult,
        callbacks: ExecutionCallbacks,
    ) -> PreparedTransaction:
        try:
            nonce = await self.nonce_manager.reserve(request.from_address, request.chain_id)
        except Exception as e:
            logger.error(f"Nonce reservation failed: {e}")
            raise _Halt(await self._fail(record, ErrorCode.NONCE_UNAVAILABLE, str(e), callbacks))

        try:
            fees = await self.gas_optimizer.estimate_fees(
                request.chain_id,
                request.gas_strategy,
                request.max_fee_per_gas,
                request.max_priority_fee_per_gas,
            )
        except Exception as e:
            logger.error(f"Fee estimation failed: {e}")
            await self.nonce_manager.release(request.from_address, request.chain_id, nonce)
            raise _Halt(await self._fail(record, ErrorCode.GAS_ESTIMATION_FAILED, str(e), callbacks))

        gas_limit = GasOptimizer.gas_limit(request, simulation, settings.gas_limit_buffer_percent)
        return PreparedTransaction(request=request, nonce=nonce, gas_limit=gas_limit, fees=fees)

    async def _sign(
        self,
        record: TransactionRecord,
        prepared: PreparedTransaction,
        signer: Signer,
        callbacks: ExecutionCallbacks,
    ) -> SignedTransaction:
        request = prepared.request
        try:
            return await asyncio.wait_for(signer.sign_transaction(prepared), timeout=self.signer_timeout_s)
        except Exception as e:
            logger.error(f"Signing failed for nonce {prepared.nonce}: {e!r}")
            await self.nonce_manager.release(request.from_address, request.chain_id, prepared.nonce)
            raise _Halt(await self._fail(record, ErrorCode.SIGNER_ERROR, f"Signer error: {e!r}", callbacks))

    async def _broadcast(
        self,
        record: TransactionRecord,
        request: TransactionRequest,
        prepared: PreparedTransaction,
        signed: SignedTransaction,
        callbacks: ExecutionCallbacks,
    ) -> str:
        wants_protection = (
            request.mev_protection if request.mev_protection is not None else settings.mev_protection_default
        )
        if wants_protection and self.mev is not None:
            if self.mev.is_supported(request.chain_id):
                tx_hash = await self.mev.send_protected(signed.raw_transaction)
                if tx_hash:
                    return tx_hash
                logger.warning("Private relay unavailable, falling back to public broadcast")
            else:
                logger.debug(f"MEV protection not available on chain {request.chain_id}, using public broadcast")

        try:
            return await asyncio.wait_for(
                self.chain_client.send_raw_transaction(request.chain_id, signed),
                timeout=self.broadcast_timeout_s,
            )
        except Exception as e:
            logger.error(f"Broadcast failed: {e!r}")
            if self._node_rejected(e) and await self._never_reached_pool(request.chain_id, signed.tx_hash):
                await self.nonce_manager.release(request.from_address, request.chain_id, prepared.nonce)
            else:
                logger.warning(f"Keeping nonce {prepared.nonce} reserved; pool status of {signed.tx_hash} is uncertain")
            raise _Halt(await self._fail(record, ErrorCode.BROADCAST_FAILED, f"Broadcast failed: {e!r}", callbacks))

    @staticmethod
    def _node_rejected(error: Exception) -> bool:
        """
        True when the node answered the submission with an error object.

        Timeouts and transport failures leave the outcome unknown: the node may
        have accepted the transaction before the connection dropped. Nonce
        errors mean the nonce is already taken on-chain.
        """
        return isinstance(error, ChainRpcError) and error.category != ErrorCategory.NONCE

    async def _never_reached_pool(self, chain_id: int, tx_hash: str) -> bool:
        """True only when the node positively reports it has no such transaction."""
        try:
            return await self.chain_client.get_transaction_by_hash(chain_id, tx_hash) is None
        except Exception as e:
            logger.warning(f"Could not check pool for {tx_hash}: {e}")
            return False

    async def _wait_for_receipt(self, chain_id: int, tx_hash: str) -> Optional[TransactionReceipt]:
        delay = self.poll_initial_delay_s
        for attempt in range(self.poll_attempts):
            try:
                receipt = await self.chain_client.get_transaction_receipt(chain_id, tx_hash)
                if receipt is not None:
                    return receipt
            except Exception as e:
                logger.warning(f"Error checking transaction status (poll {attempt + 1}): {e}")

            if attempt < self.poll_attempts - 1:
                await self._sleep(delay)
                delay = min(delay * 1.5, self.poll_max_delay_s)
        return None

    async def _finalize(
        self,
        record: TransactionRecord,
        receipt: TransactionReceipt,
        callbacks: ExecutionCallbacks,
    ) -> ExecutionOutcome:
        if record.nonce is not None:
            await self.nonce_manager.confirm(record.from_address, record.chain_id, record.nonce)

        fields = {
            "gas_used": receipt.gas_used,
            "gas_price": receipt.effective_gas_price,
            "block_number": receipt.block_number,
        }

        if not receipt.success:
            logger.warning(f"Transaction reverted on-chain: {receipt.tx_hash}")
            return await self._fail(
                record,
                ErrorCode.TX_REVERTED,
                "Transaction reverted on-chain",
                callbacks,
                user_message=f"Transaction reverted on-chain: {receipt.tx_hash}",
                **fields,
            )

        record = await self._advance(record, TxStatus.CONFIRMED, **fields)
        logger.info(f"Transaction confirmed: {receipt.tx_hash} (block {receipt.block_number})")
        await self._notify(callbacks.on_confirmed, receipt.tx_hash, receipt.block_number)
        return ExecutionOutcome(
            status=TxStatus.CONFIRMED,
            message=f"Transaction confirmed in block {receipt.block_number}",
            tx_id=record.id,
            hash=receipt.tx_hash,
            record=record,
        )

    # ---- Record keeping ----

    async def _advance(self, record: TransactionRecord, status: TxStatus, detail: Optional[str] = None, **fields) -> TransactionRecord:
        previous = record.status
        updated = await self.tx_log.update_status(record.id, status, detail, **fields)
        self._emit(updated, previous, detail)
        return updated

    def _emit(self, record: TransactionRecord, previous: Optional[TxStatus], detail: Optional[str]) -> None:
        self.notifier.notify(
            TransitionEvent(
                tx_id=record.id,
                user_id=record.user_id,
                chain_id=record.chain_id,
                from_status=previous,
                to_status=record.status,
                detail=detail,
                record=record,
            )
        )

    async def _reject(
        self,
        record: TransactionRecord,
        code: ErrorCode,
        reason: str,
        callbacks: ExecutionCallbacks,
        checks: List[GuardrailCheck],
        verdicts: List[RiskVerdict],
        **fields,
    ) -> ExecutionOutcome:
        logger.info(f"Transaction rejected ({code.value}): {reason}")
        record = await self._advance(record, TxStatus.REJECTED, reason, error=reason, error_code=code.value, **fields)
        await self._notify(callbacks.on_failed, reason)
        return ExecutionOutcome(
            status=TxStatus.REJECTED,
            message=reason,
            tx_id=record.id,
            error_code=code,
            checks=checks,
            risk_verdicts=verdicts,
            record=record,
        )

    async def _fail(
        self,
        record: TransactionRecord,
        code: ErrorCode,
        error: str,
        callbacks: ExecutionCallbacks,
        user_message: Optional[str] = None,
        **fields,
    ) -> ExecutionOutcome:
        message = user_message or technical_failure_message(code)
        try:
            record = await self._advance(
                record, TxStatus.FAILED, error, error=error, error_code=code.value, **fields
            )
        except Exception as e:
            logger.exception(f"Could not record failure of {record.id}: {e}")

        await self._notify(callbacks.on_failed, message)
        return ExecutionOutcome(
            status=TxStatus.FAILED,
            message=message,
            tx_id=record.id,
            hash=record.hash,
            error_code=code,
            record=record,
        )

    def _outcome_for(self, record: TransactionRecord) -> ExecutionOutcome:
        code = ErrorCode(record.error_code) if record.error_code else None
        if record.status == TxStatus.CONFIRMED:
            message = f"Transaction confirmed in block {record.block_number}"
        elif record.status == TxStatus.REJECTED:
            message = record.error or "Transaction rejected"
        elif record.status == TxStatus.FAILED:
            message = technical_failure_message(code or ErrorCode.INTERNAL_ERROR)
        else:
            message = f"Transaction {record.status.value}"
        return ExecutionOutcome(
            status=record.status,
            message=message,
            tx_id=record.id,
            hash=record.hash,
            error_code=code,
            record=record,
        )

    # ---- Caller hooks ----

    async def _ask(self, hook: Callable[..., Awaitable[bool]], *args) -> bool:
        try:
            return bool(await asyncio.wait_for(hook(*args), timeout=self.approval_timeout_s))
        except asyncio.TimeoutError:
            logger.warning(f"Approval timed out after {self.approval_timeout_s}s")
            return False
        except Exception as e:
            logger.warning(f"Approval hook failed, treating as declined: {e}")
            return False

    async def _notify(self, hook: Optional[Callable[..., Awaitable[None]]], *args) -> None:
        if hook is None:
            return
        try:
            await asyncio.wait_for(hook(*args), timeout=self.approval_timeout_s)
        except Exception as e:
            logger.warning(f"Callback {getattr(hook, '__name__', hook)!r} failed: {e}")
