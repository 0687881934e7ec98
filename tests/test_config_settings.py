from txpipeline.config import Settings


def test_tenderly_key_alias(monkeypatch):
    """Tenderly key should load from the short alias when present."""

    monkeypatch.delenv("TENDERLY_API_KEY", raising=False)
    monkeypatch.delenv("TENDERLY_ACCESS_KEY", raising=False)
    monkeypatch.setenv("TENDERLY_KEY", "alias-key")

    settings = Settings(_env_file=None)

    assert settings.tenderly_api_key == "alias-key"


def test_tenderly_access_key_fallback(monkeypatch):
    """Legacy TENDERLY_ACCESS_KEY is used when no other key is set."""

    monkeypatch.delenv("TENDERLY_API_KEY", raising=False)
    monkeypatch.delenv("TENDERLY_KEY", raising=False)
    monkeypatch.setenv("TENDERLY_ACCESS_KEY", "legacy-key")

    settings = Settings(_env_file=None)

    assert settings.tenderly_api_key == "legacy-key"


def test_rpc_override_wins(monkeypatch):
    """Per-chain RPC overrides take precedence over Alchemy."""

    monkeypatch.setenv("ALCHEMY_API_KEY", "alchemy")
    monkeypatch.setenv("RPC_URLS", '{"8453": "https://base.example/rpc"}')

    settings = Settings(_env_file=None)

    assert settings.resolve_rpc_url(8453) == "https://base.example/rpc"
    assert settings.resolve_rpc_url(1) == "https://eth-mainnet.g.alchemy.com/v2/alchemy"
    assert settings.resolve_rpc_url(999) is None


def test_pipeline_defaults(monkeypatch):
    """Safety-relevant defaults."""

    for name in ("RISK_UNKNOWN_POLICY", "MEV_PROTECTION_DEFAULT", "DEFAULT_MAX_PER_TX_USD"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings(_env_file=None)

    assert settings.risk_unknown_policy == "block"
    assert settings.mev_protection_default is True
    assert settings.default_max_per_tx_usd == 1000.0
    assert settings.risk_severity_actions["critical"] == "block"
