import os

from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def model_post_init(self, __context: Any) -> None:
        """Ensure we pick up legacy environment variable aliases."""

        super().model_post_init(__context)

        if not self.tenderly_api_key:
            fallback = os.getenv("TENDERLY_ACCESS_KEY")
            if fallback:
                object.__setattr__(self, "tenderly_api_key", fallback)

    # General
    log_level: str = Field(default="INFO", description="Logging level")
    database_path: Path = Field(
        default=BASE_DIR / "data" / "txpipeline.db",
        description="SQLite file backing the transaction log, user limits and contract lists",
    )

    # Chain access
    alchemy_api_key: str = Field(default="", description="Alchemy API key")
    rpc_urls: Dict[int, str] = Field(
        default_factory=dict,
        description="Per-chain JSON-RPC URL overrides (chain id -> url)",
    )
    rpc_timeout_seconds: float = Field(default=15.0, description="Timeout for a single JSON-RPC request")
    rpc_read_attempts: int = Field(default=3, ge=1, description="Attempts for idempotent RPC reads")

    # Simulation
    tenderly_api_key: str = Field(
        default="",
        description="Tenderly access key",
        validation_alias=AliasChoices("tenderly_api_key", "TENDERLY_API_KEY", "TENDERLY_KEY"),
    )
    tenderly_account: str = Field(default="", description="Tenderly account slug")
    tenderly_project: str = Field(default="", description="Tenderly project slug")
    simulation_timeout_seconds: float = Field(default=20.0, description="Upper bound for one simulation")
    default_simulation_gas: int = Field(default=8_000_000, description="Gas cap handed to the simulator")

    # Risk data
    goplus_base_url: str = Field(default="https://api.gopluslabs.io/api/v1", description="GoPlus API base URL")
    risk_cache_ttl_seconds: int = Field(default=24 * 60 * 60, description="Risk report cache TTL")
    risk_cache_max_size: int = Field(default=5000, description="Maximum cached risk reports")
    risk_lookup_timeout_seconds: float = Field(default=15.0, description="Upper bound for one risk lookup")
    risk_retry_attempts: int = Field(default=3, ge=1, description="Attempts against the risk provider")
    risk_retry_initial_delay_seconds: float = Field(default=0.3, description="First retry delay")
    risk_retry_max_delay_seconds: float = Field(default=30.0, description="Retry delay cap")
    risk_unknown_policy: Literal["block", "warn"] = Field(
        default="block",
        description="How an unavailable risk assessment is treated",
    )
    risk_severity_actions: Dict[str, str] = Field(
        default_factory=lambda: {
            "critical": "block",
            "high": "warn",
            "medium": "warn",
            "low": "allow",
        },
        description="Risk dimension severity -> pipeline action",
    )
    explorer_api_keys: Dict[int, str] = Field(
        default_factory=dict,
        description="Per-chain block explorer API keys for contract source audits",
    )
    explorer_timeout_seconds: float = Field(default=15.0, description="Timeout for one explorer request")

    # MEV protection
    flashbots_rpc_url: str = Field(default="https://rpc.flashbots.net", description="Flashbots Protect RPC")
    mev_protection_default: bool = Field(default=True, description="Use the private relay when supported")
    mev_relay_attempts: int = Field(default=2, ge=1, description="Attempts against the private relay")

    # Gas
    fee_granularity_wei: Dict[int, int] = Field(
        default_factory=dict,
        description="Per-chain fee rounding unit in wei (default 1)",
    )
    gas_limit_buffer_percent: int = Field(default=10, description="Headroom added to simulated gas")

    # Execution
    broadcast_timeout_seconds: float = Field(default=30.0, description="Upper bound for a broadcast")
    signer_timeout_seconds: float = Field(default=60.0, description="Upper bound for the signer")
    approval_timeout_seconds: float = Field(default=300.0, description="Upper bound for approval callbacks")
    confirmation_poll_attempts: int = Field(default=30, ge=1, description="Receipt polls before giving up")
    confirmation_poll_initial_delay_seconds: float = Field(default=2.0, description="First poll delay")
    confirmation_poll_max_delay_seconds: float = Field(default=15.0, description="Poll delay cap")
    fallback_native_price_usd: float = Field(
        default=2500.0,
        description="Native asset USD price used when the caller supplies none",
    )
    position_lock_ttl_seconds: float = Field(default=300.0, description="Age after which a held position lock is reclaimed")
    position_lock_wait_seconds: float = Field(default=120.0, description="Upper bound for waiting on a position lock")

    # Guardrail defaults
    default_max_per_tx_usd: float = Field(default=1000.0, description="Default per-transaction cap (USD)")
    default_max_per_day_usd: float = Field(default=5000.0, description="Default rolling 24h cap (USD)")
    default_cooldown_seconds: int = Field(default=30, description="Default cooldown between large transactions")
    default_slippage_bps: int = Field(default=100, description="Default slippage tolerance (bps)")
    large_tx_ratio: float = Field(
        default=0.5,
        description="Fraction of the per-tx cap above which a transaction counts as large",
    )
    allowed_chains: List[int] = Field(default_factory=list, description="If set, only these chains are allowed")
    blocked_chains: List[int] = Field(default_factory=list, description="Chains that are never allowed")
    blocked_tokens: List[str] = Field(default_factory=list, description="Token/contract addresses never allowed")

    @property
    def has_alchemy_key(self) -> bool:
        return bool(self.alchemy_api_key)

    @property
    def has_tenderly(self) -> bool:
        return bool(self.tenderly_api_key and self.tenderly_account and self.tenderly_project)

    def resolve_rpc_url(self, chain_id: int) -> Optional[str]:
        override = self.rpc_urls.get(chain_id)
        if override:
            return override
        slug = ALCHEMY_SLUGS.get(chain_id)
        if slug and self.alchemy_api_key:
            return f"https://{slug}.g.alchemy.com/v2/{self.alchemy_api_key}"
        return None


ALCHEMY_SLUGS: Dict[int, str] = {
    1: "eth-mainnet",
    10: "opt-mainnet",
    137: "polygon-mainnet",
    42161: "arb-mainnet",
    8453: "base-mainnet",
}


# Global settings instance
settings = Settings()
