"""
Tests for user limits persistence and risk profile presets
"""

import pytest

from txpipeline.core.policy import LimitsStore, RiskProfileName, RiskProfiles, UserLimits


class TestLimitsStore:
    """Test reading and updating per-user limits."""

    @pytest.mark.asyncio
    async def test_defaults_for_unknown_user(self, db):
        limits = await LimitsStore(db).get("new-user")
        assert limits == UserLimits()

    @pytest.mark.asyncio
    async def test_partial_update_persists(self, db):
        await LimitsStore(db).set("user-1", max_per_tx=250, slippage_bps=50)

        limits = await LimitsStore(db).get("user-1")

        assert limits.max_per_tx == 250
        assert limits.slippage_bps == 50
        assert limits.max_per_day == UserLimits().max_per_day

    @pytest.mark.asyncio
    async def test_custom_defaults(self, db):
        store = LimitsStore(db, defaults=UserLimits(max_per_tx=50, max_per_day=100))
        assert (await store.get("someone")).max_per_tx == 50

    @pytest.mark.asyncio
    @pytest.mark.parametrize("changes", [
        {"max_per_tx": 0},
        {"max_per_day": -5},
        {"cooldown_seconds": -1},
        {"slippage_bps": -10},
    ])
    async def test_rejects_invalid_values(self, db, changes):
        with pytest.raises(ValueError):
            await LimitsStore(db).set("user-1", **changes)


class TestRiskProfiles:
    """Test the preset profiles."""

    def test_all_profiles_listed(self):
        names = [p.name for p in RiskProfiles.list()]
        assert names == [RiskProfileName.CONSERVATIVE, RiskProfileName.MODERATE, RiskProfileName.AGGRESSIVE]

    def test_compute_limits(self):
        limits = RiskProfiles.compute_limits("moderate", 10_000)

        assert limits.max_per_tx == 1500
        assert limits.max_per_day == 4000
        assert limits.cooldown_seconds == 30
        assert limits.slippage_bps == 100

    def test_small_portfolio_floors(self):
        limits = RiskProfiles.compute_limits("conservative", 20)

        assert limits.max_per_tx == 10
        assert limits.max_per_day == 50

    def test_unknown_profile(self):
        with pytest.raises(ValueError):
            RiskProfiles.get("yolo")

    def test_format_profile(self):
        text = RiskProfiles.format_profile("aggressive", 10_000)

        assert text.startswith("**Aggressive Risk Profile**")
        assert "Max per tx: $3,000" in text
