"""
Process-level wiring.

Builds one instance of every pipeline component from settings. Callers hold
the returned ``Pipeline`` for the lifetime of the process so the nonce
manager and risk cache are shared across requests.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional, Union

from .config import Settings, settings as default_settings
from .core.execution.events import Observer, TransitionNotifier
from .core.execution.executor import TransactionExecutor
from .core.execution.gas import GasOptimizer
from .core.execution.mev import MevProtection
from .core.execution.nonce_manager import NonceManager
from .core.execution.position_lock import PositionLock
from .core.execution.simulator import TransactionSimulator
from .core.policy import GuardrailConfig, Guardrails, LimitsStore, UserLimits
from .core.recovery import RetryConfig, RetryPolicy
from .core.risk import ContractAuditor, ContractListStore, RiskAction, RiskCache, RiskEngine, RiskSeverity
from .db.database import Database
from .db.txlog import TransactionLog
from .providers.flashbots import FlashbotsProtectRelay
from .providers.goplus import GoPlusProvider
from .providers.rpc import JsonRpcChainClient

logger = logging.getLogger(__name__)


@dataclass
class Pipeline:
    db: Database
    tx_log: TransactionLog
    chain_client: JsonRpcChainClient
    risk_provider: GoPlusProvider
    auditor: ContractAuditor
    relay: FlashbotsProtectRelay
    simulator: TransactionSimulator
    risk_engine: RiskEngine
    limits: LimitsStore
    notifier: TransitionNotifier
    position_lock: PositionLock
    executor: TransactionExecutor

    async def close(self) -> None:
        await self.notifier.drain()
        await self.simulator.close()
        await self.chain_client.close()
        await self.risk_provider.close()
        await self.auditor.close()
        await self.relay.close()
        await self.db.close()


async def build_pipeline(
    config: Optional[Settings] = None,
    db_path: Optional[Union[str, Path]] = None,
    observers: Optional[Iterable[Observer]] = None,
) -> Pipeline:
    config = config or default_settings

    db = Database(db_path or config.database_path)
    await db.connect()

    chain_client = JsonRpcChainClient(rpc_urls=config.rpc_urls, timeout_s=config.rpc_timeout_seconds)
    risk_provider = GoPlusProvider(base_url=config.goplus_base_url, timeout_s=config.risk_lookup_timeout_seconds)
    relay = FlashbotsProtectRelay(rpc_url=config.flashbots_rpc_url)
    auditor = ContractAuditor(api_keys=config.explorer_api_keys, timeout_s=config.explorer_timeout_seconds)

    simulator = TransactionSimulator(
        chain_client,
        tenderly_api_key=config.tenderly_api_key,
        tenderly_account=config.tenderly_account,
        tenderly_project=config.tenderly_project,
        timeout_s=config.simulation_timeout_seconds,
    )
    risk_engine = RiskEngine(
        risk_provider,
        cache=RiskCache(ttl_seconds=config.risk_cache_ttl_seconds, max_size=config.risk_cache_max_size),
        contract_lists=ContractListStore(db),
        retry_policy=RetryPolicy(
            RetryConfig(
                max_attempts=config.risk_retry_attempts,
                initial_delay_seconds=config.risk_retry_initial_delay_seconds,
                max_delay_seconds=config.risk_retry_max_delay_seconds,
            )
        ),
        severity_actions={RiskSeverity(k): RiskAction(v) for k, v in config.risk_severity_actions.items()},
        unknown_policy=config.risk_unknown_policy,
        lookup_timeout_s=config.risk_lookup_timeout_seconds,
        auditor=auditor,
    )
    limits = LimitsStore(
        db,
        defaults=UserLimits(
            max_per_tx=config.default_max_per_tx_usd,
            max_per_day=config.default_max_per_day_usd,
            cooldown_seconds=config.default_cooldown_seconds,
            slippage_bps=config.default_slippage_bps,
        ),
    )
    guardrails = Guardrails(
        GuardrailConfig(
            allowed_chains=list(config.allowed_chains),
            blocked_chains=list(config.blocked_chains),
            blocked_tokens=list(config.blocked_tokens),
            large_tx_ratio=config.large_tx_ratio,
        )
    )
    notifier = TransitionNotifier(list(observers or []))
    position_lock = PositionLock(ttl_seconds=config.position_lock_ttl_seconds)
    tx_log = TransactionLog(db)

    executor = TransactionExecutor(
        tx_log=tx_log,
        chain_client=chain_client,
        simulator=simulator,
        guardrails=guardrails,
        limits=limits,
        risk_engine=risk_engine,
        nonce_manager=NonceManager(chain_client),
        gas_optimizer=GasOptimizer(chain_client, config.fee_granularity_wei),
        mev=MevProtection(relay, attempts=config.mev_relay_attempts),
        notifier=notifier,
        position_lock=position_lock,
    )
    executor.position_lock_wait_s = config.position_lock_wait_seconds

    logger.info(
        f"Pipeline ready: db={db.db_path} tenderly={'on' if simulator.has_tenderly else 'off'} "
        f"unknown_risk={config.risk_unknown_policy}"
    )
    return Pipeline(
        db=db,
        tx_log=tx_log,
        chain_client=chain_client,
        risk_provider=risk_provider,
        auditor=auditor,
        relay=relay,
        simulator=simulator,
        risk_engine=risk_engine,
        limits=limits,
        notifier=notifier,
        position_lock=position_lock,
        executor=executor,
    )
