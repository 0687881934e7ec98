#!/usr/bin/env python3
"""Operator CLI for the transaction pipeline (history, limits, contract lists, audits, reconciliation)"""

import argparse
import asyncio
from typing import Optional

from txpipeline.config import settings
from txpipeline.core.execution.models import TxStatus
from txpipeline.core.policy import RiskProfiles
from txpipeline.core.risk import GLOBAL_SCOPE, RiskEngine
from txpipeline.logging_config import setup_logging
from txpipeline.pipeline import Pipeline, build_pipeline


def print_record(record) -> None:
    print(f"\n📄 Transaction {record.id}")
    print("=" * 50)
    print(f"User:    {record.user_id}")
    print(f"Chain:   {record.chain_id}")
    print(f"From:    {record.from_address}")
    print(f"To:      {record.to_address}")
    print(f"Value:   {record.value} wei" + (f" (~${record.value_usd:,.2f})" if record.value_usd is not None else ""))
    print(f"Status:  {record.status.value}")
    if record.hash:
        print(f"Hash:    {record.hash}")
    if record.nonce is not None:
        print(f"Nonce:   {record.nonce}")
    if record.block_number is not None:
        print(f"Block:   {record.block_number}")
    if record.error:
        print(f"Error:   {record.error} ({record.error_code})")


async def cli_history(pipeline: Pipeline, user_id: str, limit: int, status: Optional[str]):
    if status:
        records = await pipeline.tx_log.get_by_status(TxStatus(status), user_id=user_id, limit=limit)
    else:
        records = await pipeline.tx_log.get_by_user(user_id, limit=limit)
    print(pipeline.tx_log.format_history(records))


async def cli_show(pipeline: Pipeline, tx_id: str):
    record = await pipeline.tx_log.get(tx_id)
    if record is None:
        print(f"❌ Transaction not found: {tx_id}")
        return
    print_record(record)

    print("\nHistory:")
    for change in await pipeline.tx_log.get_history(tx_id):
        source = change.from_status.value if change.from_status else "-"
        detail = f"  ({change.detail})" if change.detail else ""
        print(f" - {change.at.isoformat()}  {source} → {change.to_status.value}{detail}")


async def cli_limits(pipeline: Pipeline, args):
    changes = {
        name: getattr(args, name)
        for name in ("max_per_tx", "max_per_day", "cooldown_seconds", "slippage_bps")
        if getattr(args, name) is not None
    }

    if args.profile:
        if args.portfolio is None:
            raise ValueError("--portfolio is required with --profile")
        computed = RiskProfiles.compute_limits(args.profile, args.portfolio)
        changes = {
            "max_per_tx": computed.max_per_tx,
            "max_per_day": computed.max_per_day,
            "cooldown_seconds": computed.cooldown_seconds,
            "slippage_bps": computed.slippage_bps,
            **changes,
        }

    if changes:
        limits = await pipeline.limits.set(args.user_id, **changes)
        print(f"✅ Limits updated for {args.user_id}")
    else:
        limits = await pipeline.limits.get(args.user_id)

    print(f"Max per tx:  ${limits.max_per_tx:,.2f}")
    print(f"Max per day: ${limits.max_per_day:,.2f}")
    print(f"Cooldown:    {limits.cooldown_seconds}s")
    print(f"Slippage:    {limits.slippage_bps} bps")


async def cli_contracts(pipeline: Pipeline, args):
    engine = pipeline.risk_engine
    action = args.action

    if action == "list":
        entries = await engine.list_entries(args.scope)
        if not entries:
            print("No contract list entries.")
            return
        for entry in entries:
            reason = f" - {entry.reason}" if entry.reason else ""
            print(f" [{entry.action.value.upper():5}] {entry.address} chain={entry.chain_id}{reason}")
    elif action == "allow":
        await engine.allow_contract(args.address, args.chain_id, args.reason, args.scope)
        print(f"✅ Allowed {args.address} on chain {args.chain_id}")
    elif action == "block":
        await engine.block_contract(args.address, args.chain_id, args.reason, args.scope)
        print(f"⛔ Blocked {args.address} on chain {args.chain_id}")
    elif action == "remove":
        removed = await engine.remove_from_list(args.address, args.chain_id, args.scope)
        print("✅ Removed" if removed else "No matching entry")


async def cli_risk(pipeline: Pipeline, address: str, chain_id: int, user_id: Optional[str]):
    verdict = await pipeline.risk_engine.assess(chain_id, address, user_id)
    print(f"Verdict: {verdict.action.value.upper()} ({verdict.classification.value}, source={verdict.source.value})")
    print(f"Reason:  {verdict.reason}")
    if verdict.report is not None:
        print()
        print(RiskEngine.format_report(verdict.report))


async def cli_audit(pipeline: Pipeline, address: str, chain_id: int):
    report = await pipeline.risk_engine.audit_contract(chain_id, address)
    print(RiskEngine.format_contract_audit(report))


async def cli_reconcile(pipeline: Pipeline, tx_id: Optional[str], limit: int):
    if tx_id:
        outcomes = [await pipeline.executor.reconcile(tx_id)]
    else:
        outcomes = await pipeline.executor.reconcile_broadcast(limit=limit)

    if not outcomes:
        print("Nothing to reconcile.")
    for outcome in outcomes:
        print(f" - {outcome.tx_id}: {outcome.status.value}  {outcome.message}")


async def cli_gas(pipeline: Pipeline, user_id: str, days: int):
    summary = await pipeline.tx_log.get_gas_cost_summary(user_id, period_days=days)
    eth = summary["total_gas_cost_wei"] / 10 ** 18
    print(f"⛽ Gas spent by {user_id} over {days}d: {eth:.6f} (native) across {summary['tx_count']} transactions")
    for chain_id, wei in sorted(summary["per_chain"].items()):
        print(f"   chain {chain_id}: {wei / 10 ** 18:.6f}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Transaction pipeline operator CLI")
    parser.add_argument("--db", help=f"SQLite path (default: {settings.database_path})")
    subparsers = parser.add_subparsers(dest="command")

    history_parser = subparsers.add_parser("history", help="Recent transactions for a user")
    history_parser.add_argument("user_id", help="User id")
    history_parser.add_argument("--limit", type=int, default=10, help="Number of transactions (default: 10)")
    history_parser.add_argument("--status", choices=[s.value for s in TxStatus], help="Filter by status")

    show_parser = subparsers.add_parser("show", help="Show one transaction and its status history")
    show_parser.add_argument("tx_id", help="Transaction id")

    limits_parser = subparsers.add_parser("limits", help="Show or update a user's spending limits")
    limits_parser.add_argument("user_id", help="User id")
    limits_parser.add_argument("--max-per-tx", dest="max_per_tx", type=float)
    limits_parser.add_argument("--max-per-day", dest="max_per_day", type=float)
    limits_parser.add_argument("--cooldown", dest="cooldown_seconds", type=int)
    limits_parser.add_argument("--slippage-bps", dest="slippage_bps", type=int)
    limits_parser.add_argument("--profile", choices=["conservative", "moderate", "aggressive"],
                               help="Size limits from a risk profile")
    limits_parser.add_argument("--portfolio", type=float, help="Portfolio value in USD (with --profile)")

    contracts_parser = subparsers.add_parser("contracts", help="Manage contract allow/block lists")
    contracts_parser.add_argument("action", choices=["list", "allow", "block", "remove"])
    contracts_parser.add_argument("address", nargs="?", help="Contract address")
    contracts_parser.add_argument("chain_id", nargs="?", type=int, default=1, help="Chain id (default: 1)")
    contracts_parser.add_argument("--reason", default="", help="Why the entry exists")
    contracts_parser.add_argument("--scope", default=GLOBAL_SCOPE, help="User id, or * for the global list")

    risk_parser = subparsers.add_parser("risk", help="Assess a contract or token")
    risk_parser.add_argument("address", help="Contract address")
    risk_parser.add_argument("chain_id", nargs="?", type=int, default=1, help="Chain id (default: 1)")
    risk_parser.add_argument("--user", dest="user_id", help="Apply this user's contract list")

    audit_parser = subparsers.add_parser("audit", help="Scan a contract's verified source for dangerous patterns")
    audit_parser.add_argument("address", help="Contract address")
    audit_parser.add_argument("chain_id", nargs="?", type=int, default=1, help="Chain id (default: 1)")

    reconcile_parser = subparsers.add_parser("reconcile", help="Re-check transactions left in broadcast")
    reconcile_parser.add_argument("tx_id", nargs="?", help="Single transaction id (default: all broadcast)")
    reconcile_parser.add_argument("--limit", type=int, default=100)

    gas_parser = subparsers.add_parser("gas", help="Gas spent by a user")
    gas_parser.add_argument("user_id", help="User id")
    gas_parser.add_argument("--days", type=int, default=1)

    return parser


async def main():
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return

    setup_logging()
    command = args.command.lower()

    if command == "contracts" and args.action != "list" and not args.address:
        parser.error("contracts allow/block/remove need an address")

    pipeline = await build_pipeline(db_path=args.db)
    try:
        if command == "history":
            await cli_history(pipeline, args.user_id, args.limit, args.status)
        elif command == "show":
            await cli_show(pipeline, args.tx_id)
        elif command == "limits":
            await cli_limits(pipeline, args)
        elif command == "contracts":
            await cli_contracts(pipeline, args)
        elif command == "risk":
            await cli_risk(pipeline, args.address, args.chain_id, args.user_id)
        elif command == "audit":
            await cli_audit(pipeline, args.address, args.chain_id)
        elif command == "reconcile":
            await cli_reconcile(pipeline, args.tx_id, args.limit)
        elif command == "gas":
            await cli_gas(pipeline, args.user_id, args.days)
        else:
            print(f"❌ Unknown command: {command}")
            parser.print_help()
    finally:
        await pipeline.close()


if __name__ == "__main__":
    asyncio.run(main())
