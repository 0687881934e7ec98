"""
Tests for the Risk Engine

Covers verdict resolution order (contract lists, cache, provider), the
unknown policy and multi-target assessment.
"""

import pytest

from conftest import TOKEN, FakeRiskClient, no_sleep
from txpipeline.core.recovery import NetworkError, RetryConfig, RetryPolicy
from txpipeline.core.risk import (
    ContractListStore,
    RiskAction,
    RiskCache,
    RiskClassification,
    RiskDimension,
    RiskEngine,
    RiskSeverity,
    RiskSource,
    TokenSafetyReport,
    worst_verdict,
)

OTHER_TOKEN = "0x5555555555555555555555555555555555555555"


def honeypot_report(address: str = TOKEN) -> TokenSafetyReport:
    return TokenSafetyReport(
        address=address.lower(),
        chain_id=1,
        symbol="SCAM",
        name="Scam Token",
        is_honeypot=True,
        dimensions=[
            RiskDimension("honeypot", RiskSeverity.CRITICAL, "Token is a honeypot", 100),
            RiskDimension("high_tax", RiskSeverity.HIGH, "Sell tax is 40%", 70),
        ],
    )


def taxed_report(address: str = TOKEN) -> TokenSafetyReport:
    return TokenSafetyReport(
        address=address.lower(),
        chain_id=1,
        sell_tax=12.0,
        dimensions=[RiskDimension("sell_tax", RiskSeverity.MEDIUM, "Sell tax is 12%", 40)],
    )


def clean_report(address: str = TOKEN) -> TokenSafetyReport:
    return TokenSafetyReport(address=address.lower(), chain_id=1, symbol="GOOD", holder_count=12_000)


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def build_engine(db, clock):
    def _build(client: FakeRiskClient, unknown_policy: str = "block", attempts: int = 1, **kwargs) -> RiskEngine:
        return RiskEngine(
            client,
            cache=RiskCache(ttl_seconds=60, clock=clock),
            contract_lists=ContractListStore(db),
            retry_policy=RetryPolicy(RetryConfig(max_attempts=attempts), sleep=no_sleep),
            unknown_policy=unknown_policy,
            lookup_timeout_s=5,
            **kwargs,
        )

    return _build


class TestProviderVerdicts:
    """Test verdicts derived from provider reports."""

    @pytest.mark.asyncio
    async def test_critical_dimension_blocks(self, build_engine):
        engine = build_engine(FakeRiskClient({TOKEN: honeypot_report()}))

        verdict = await engine.assess(1, TOKEN)

        assert verdict.action == RiskAction.BLOCK
        assert verdict.classification == RiskClassification.BLOCK
        assert verdict.source == RiskSource.PROVIDER
        assert verdict.reason == "Token is a honeypot"
        assert verdict.is_blocked

    @pytest.mark.asyncio
    async def test_medium_dimension_warns(self, build_engine):
        engine = build_engine(FakeRiskClient({TOKEN: taxed_report()}))

        verdict = await engine.assess(1, TOKEN)

        assert verdict.action == RiskAction.WARN
        assert verdict.reason == "Sell tax is 12%"

    @pytest.mark.asyncio
    async def test_no_dimensions_allows(self, build_engine):
        engine = build_engine(FakeRiskClient({TOKEN: clean_report()}))

        verdict = await engine.assess(1, TOKEN)

        assert verdict.action == RiskAction.ALLOW
        assert verdict.reason == "No blocking risks detected"

    @pytest.mark.asyncio
    async def test_severity_mapping_is_configurable(self, build_engine):
        """Test a custom severity map changes the resolved action."""
        engine = build_engine(
            FakeRiskClient({TOKEN: taxed_report()}),
            severity_actions={RiskSeverity.MEDIUM: RiskAction.BLOCK},
        )

        verdict = await engine.assess(1, TOKEN)

        assert verdict.action == RiskAction.BLOCK


class TestContractLists:
    """Test allow/block lists override provider data."""

    @pytest.mark.asyncio
    async def test_blocklist_wins_over_clean_report(self, build_engine):
        client = FakeRiskClient({TOKEN: clean_report()})
        engine = build_engine(client)
        await engine.block_contract(TOKEN, 1, reason="drainer")

        verdict = await engine.assess(1, TOKEN)

        assert verdict.action == RiskAction.BLOCK
        assert verdict.source == RiskSource.CONTRACT_LIST
        assert "drainer" in verdict.reason
        assert client.calls == 0

    @pytest.mark.asyncio
    async def test_allowlist_wins_over_honeypot_report(self, build_engine):
        engine = build_engine(FakeRiskClient({TOKEN: honeypot_report()}))
        await engine.allow_contract(TOKEN, 1)

        verdict = await engine.assess(1, TOKEN)

        assert verdict.action == RiskAction.ALLOW

    @pytest.mark.asyncio
    async def test_user_entry_takes_precedence_over_global(self, build_engine):
        engine = build_engine(FakeRiskClient())
        await engine.block_contract(TOKEN, 1, scope="*")
        await engine.allow_contract(TOKEN, 1, scope="user-1")

        mine = await engine.assess(1, TOKEN, user_id="user-1")
        theirs = await engine.assess(1, TOKEN, user_id="user-2")

        assert mine.action == RiskAction.ALLOW
        assert "your allowlist" in mine.reason
        assert theirs.action == RiskAction.BLOCK

    @pytest.mark.asyncio
    async def test_removed_entry_falls_through(self, build_engine):
        engine = build_engine(FakeRiskClient({TOKEN: taxed_report()}))
        await engine.block_contract(TOKEN, 1)

        assert await engine.remove_from_list(TOKEN, 1) is True
        verdict = await engine.assess(1, TOKEN)

        assert verdict.source == RiskSource.PROVIDER

    @pytest.mark.asyncio
    async def test_list_management_requires_store(self):
        engine = RiskEngine(FakeRiskClient(), unknown_policy="block")

        with pytest.raises(RuntimeError):
            await engine.block_contract(TOKEN, 1)


class TestCaching:
    """Test the provider report cache."""

    @pytest.mark.asyncio
    async def test_cache_hit_skips_provider(self, build_engine):
        client = FakeRiskClient({TOKEN: taxed_report()})
        engine = build_engine(client)

        await engine.assess(1, TOKEN)
        verdict = await engine.assess(1, TOKEN.upper().replace("0X", "0x"))

        assert client.calls == 1
        assert verdict.source == RiskSource.CACHE
        assert verdict.action == RiskAction.WARN

    @pytest.mark.asyncio
    async def test_expired_entry_is_a_miss(self, build_engine, clock):
        client = FakeRiskClient({TOKEN: taxed_report()})
        engine = build_engine(client)

        await engine.assess(1, TOKEN)
        clock.now += 61
        verdict = await engine.assess(1, TOKEN)

        assert client.calls == 2
        assert verdict.source == RiskSource.PROVIDER

    @pytest.mark.asyncio
    async def test_missing_report_not_cached(self, build_engine):
        client = FakeRiskClient()
        engine = build_engine(client)

        await engine.assess(1, TOKEN)
        await engine.assess(1, TOKEN)

        assert client.calls == 2
        assert engine.cache.size() == 0


class TestUnknownPolicy:
    """Test behaviour when no verdict can be obtained."""

    @pytest.mark.asyncio
    async def test_unknown_blocks_by_default(self, build_engine):
        verdict = await build_engine(FakeRiskClient()).assess(1, TOKEN)

        assert verdict.classification == RiskClassification.UNKNOWN
        assert verdict.action == RiskAction.BLOCK
        assert verdict.source == RiskSource.UNAVAILABLE

    @pytest.mark.asyncio
    async def test_unknown_warn_policy(self, build_engine):
        verdict = await build_engine(FakeRiskClient(), unknown_policy="warn").assess(1, TOKEN)

        assert verdict.classification == RiskClassification.UNKNOWN
        assert verdict.action == RiskAction.WARN

    @pytest.mark.asyncio
    async def test_provider_outage_is_unknown_after_retries(self, build_engine):
        client = FakeRiskClient()
        client.error = NetworkError("connection reset")
        engine = build_engine(client, attempts=3)

        verdict = await engine.assess(1, TOKEN)

        assert client.calls == 3
        assert verdict.classification == RiskClassification.UNKNOWN
        assert verdict.reason == "Risk assessment unavailable"


class TestAssessMany:
    """Test multi-target assessment."""

    @pytest.mark.asyncio
    async def test_deduplicates_addresses(self, build_engine):
        client = FakeRiskClient({TOKEN: clean_report()})
        engine = build_engine(client)

        verdicts = await engine.assess_many(1, [TOKEN, TOKEN.upper().replace("0X", "0x")])

        assert len(verdicts) == 1

    @pytest.mark.asyncio
    async def test_worst_verdict_selected(self, build_engine):
        engine = build_engine(
            FakeRiskClient({TOKEN: taxed_report(), OTHER_TOKEN: honeypot_report(OTHER_TOKEN)})
        )

        verdicts = await engine.assess_many(1, [TOKEN, OTHER_TOKEN])
        worst = worst_verdict(verdicts)

        assert worst.address == OTHER_TOKEN
        assert worst.action == RiskAction.BLOCK

    def test_worst_verdict_of_nothing(self):
        assert worst_verdict([]) is None


class TestFormatReport:
    """Test the human-readable risk report."""

    def test_token_report(self):
        text = RiskEngine.format_report(honeypot_report())

        assert text.startswith("*Risk Report: Scam Token (SCAM)*")
        assert "Honeypot: YES" in text
        assert "[!] Token is a honeypot" in text

    def test_clean_report(self):
        text = RiskEngine.format_report(clean_report())

        assert "[GREEN] SAFE (0/100)" in text
        assert "Holders: 12,000" in text
        assert "_No significant risks detected._" in text
