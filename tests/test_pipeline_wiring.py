"""
Tests for process wiring and the operator CLI
"""

import argparse

import pytest

import cli
from txpipeline.config import Settings
from txpipeline.core.execution.models import ExecutionMeta, TransactionRequest, TxStatus
from txpipeline.core.risk import RiskAction
from txpipeline.pipeline import build_pipeline

SENDER = "0x1111111111111111111111111111111111111111"
ROUTER = "0x7a250d5630b4cf539739df2c5dacb4c659f2488d"


@pytest.fixture
def config() -> Settings:
    return Settings(
        _env_file=None,
        tenderly_api_key="",
        risk_unknown_policy="warn",
        default_max_per_tx_usd=250,
        blocked_chains=[56],
    )


class TestBuildPipeline:
    """Test components are built from settings."""

    @pytest.mark.asyncio
    async def test_components_follow_settings(self, config):
        pipeline = await build_pipeline(config, db_path=":memory:")
        try:
            assert pipeline.db.is_connected
            assert pipeline.risk_engine.unknown_action == RiskAction.WARN
            assert pipeline.executor.mev is not None
            assert pipeline.executor.guardrails.config.blocked_chains == [56]
            assert not pipeline.simulator.has_tenderly
            assert (await pipeline.limits.get("anyone")).max_per_tx == 250
            assert pipeline.executor.position_lock is pipeline.position_lock
            assert pipeline.risk_engine.auditor is pipeline.auditor
        finally:
            await pipeline.close()

        assert not pipeline.db.is_connected

    @pytest.mark.asyncio
    async def test_observers_registered(self, config):
        seen = []
        pipeline = await build_pipeline(config, db_path=":memory:", observers=[seen.append])
        try:
            record = await pipeline.tx_log.create(
                TransactionRequest(chain_id=1, from_address=SENDER, to_address=ROUTER),
                ExecutionMeta(user_id="user-1"),
            )
            await pipeline.executor._advance(record, TxStatus.REJECTED, "test")
        finally:
            await pipeline.close()

        assert [e.to_status for e in seen] == [TxStatus.REJECTED]


class TestCli:
    """Test operator commands against an in-memory pipeline."""

    def test_parser(self):
        args = cli.build_parser().parse_args(["limits", "user-1", "--max-per-tx", "300", "--cooldown", "60"])

        assert args.command == "limits"
        assert args.max_per_tx == 300.0
        assert args.cooldown_seconds == 60

    @pytest.mark.asyncio
    async def test_limits_from_profile(self, config, capsys):
        pipeline = await build_pipeline(config, db_path=":memory:")
        try:
            args = argparse.Namespace(
                user_id="user-1",
                max_per_tx=None,
                max_per_day=None,
                cooldown_seconds=None,
                slippage_bps=45,
                profile="moderate",
                portfolio=10_000.0,
            )
            await cli.cli_limits(pipeline, args)
            limits = await pipeline.limits.get("user-1")
        finally:
            await pipeline.close()

        assert limits.max_per_tx == 1500
        assert limits.slippage_bps == 45
        assert "Limits updated for user-1" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_contract_list_commands(self, config, capsys):
        pipeline = await build_pipeline(config, db_path=":memory:")
        try:
            block = argparse.Namespace(action="block", address=ROUTER, chain_id=1, reason="exploit", scope="*")
            await cli.cli_contracts(pipeline, block)
            await cli.cli_contracts(pipeline, argparse.Namespace(action="list", scope="*"))
            await cli.cli_risk(pipeline, ROUTER, 1, None)
        finally:
            await pipeline.close()

        out = capsys.readouterr().out
        assert f"[BLOCK] {ROUTER} chain=1 - exploit" in out
        assert "Verdict: BLOCK (block, source=contract_list)" in out

    @pytest.mark.asyncio
    async def test_show_missing(self, config, capsys):
        pipeline = await build_pipeline(config, db_path=":memory:")
        try:
            await cli.cli_show(pipeline, "missing")
        finally:
            await pipeline.close()

        assert "Transaction not found: missing" in capsys.readouterr().out

    def test_audit_parser_defaults_to_mainnet(self):
        args = cli.build_parser().parse_args(["audit", ROUTER])

        assert args.command == "audit"
        assert args.chain_id == 1

    @pytest.mark.asyncio
    async def test_audit_unsupported_chain(self, config, capsys):
        pipeline = await build_pipeline(config, db_path=":memory:")
        try:
            await cli.cli_audit(pipeline, ROUTER, 999999)
        finally:
            await pipeline.close()

        out = capsys.readouterr().out
        assert "*Contract Source Audit*" in out
        assert "Source: NOT VERIFIED" in out
