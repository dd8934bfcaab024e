#!/usr/bin/env python3
"""Operator CLI for the DCA plan executor"""

import argparse
import asyncio
import json
import sys
from typing import List, Optional

from .config import ConfigurationError, settings
from .core.errors import PlanExecutionError
from .core.plans.models import Token
from .db.store import ActivePlanExistsError, PlanNotFoundError, PlanStore, TokenNotFoundError
from .logging_config import setup_logging
from .runtime import build_runtime


def _print_json(data) -> None:
    print(json.dumps(data, indent=2))


def _open_store() -> PlanStore:
    store = PlanStore.from_url(settings.database_url, timeout=settings.db_timeout_seconds)
    store.create_schema()
    return store


async def cli_execute(plan_hash: str) -> int:
    """Run a plan's initial swap"""
    runtime = build_runtime(settings)
    try:
        result = await runtime.executor.execute(plan_hash)
    except PlanExecutionError as e:
        _print_json(e.to_response())
        return 1
    finally:
        await runtime.close()

    _print_json(result.to_response())
    return 0


async def cli_reconcile(plan_hash: str, tx_hash: str) -> int:
    """Record a landed swap for a plan"""
    runtime = build_runtime(settings)
    try:
        result = await runtime.executor.reconcile(plan_hash, tx_hash)
    except PlanExecutionError as e:
        _print_json(e.to_response())
        return 1
    finally:
        await runtime.close()

    _print_json(result.to_response())
    return 0


async def cli_init_db() -> int:
    store = _open_store()
    store.dispose()
    print(f"Schema ready at {settings.database_url}")
    return 0


async def cli_add_token(address: str, symbol: str, decimals: int, wrapped: bool, fee_tier: Optional[int]) -> int:
    store = _open_store()
    try:
        token = await store.upsert_token(
            Token(address=address, symbol=symbol, decimals=decimals, is_wrapped=wrapped, fee_tier=fee_tier)
        )
    finally:
        store.dispose()
    _print_json(token.to_dict())
    return 0


async def cli_create_plan(args: argparse.Namespace) -> int:
    store = _open_store()
    try:
        plan = await store.create_or_reactivate_plan(
            user_wallet=args.user,
            token_out_address=args.token_out,
            recipient=args.recipient,
            amount_in=args.amount_in,
            frequency=args.frequency,
            approval_amount=args.approval_amount,
        )
    except (TokenNotFoundError, ActivePlanExistsError) as e:
        print(f"❌ {e}")
        return 1
    finally:
        store.dispose()
    _print_json(plan.to_dict())
    return 0


async def cli_deactivate_plan(plan_hash: str, purge: bool) -> int:
    store = _open_store()
    try:
        await store.deactivate_plan(plan_hash)
        if purge:
            removed = await store.purge_executions(plan_hash)
            print(f"Removed {removed} execution(s)")
    except PlanNotFoundError as e:
        print(f"❌ {e}")
        return 1
    finally:
        store.dispose()
    print(f"Plan {plan_hash} deactivated")
    return 0


async def cli_set_approval(plan_hash: str, amount: int) -> int:
    store = _open_store()
    try:
        await store.update_approval_amount(plan_hash, amount)
    except PlanNotFoundError as e:
        print(f"❌ {e}")
        return 1
    finally:
        store.dispose()
    print(f"Plan {plan_hash} approval amount set to {amount}")
    return 0


async def cli_executions(plan_hash: str) -> int:
    store = _open_store()
    try:
        records = await store.list_executions(plan_hash)
    finally:
        store.dispose()
    _print_json([r.to_dict() for r in records])
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dcaflow", description="DCA plan executor CLI")
    subparsers = parser.add_subparsers(dest="command")

    execute_parser = subparsers.add_parser("execute", help="Execute a plan's initial investment")
    execute_parser.add_argument("plan_hash", help="Plan hash (0x + 64 hex)")

    reconcile_parser = subparsers.add_parser("reconcile", help="Record a confirmed swap for a plan")
    reconcile_parser.add_argument("plan_hash", help="Plan hash (0x + 64 hex)")
    reconcile_parser.add_argument("tx_hash", help="Swap transaction hash")

    subparsers.add_parser("init-db", help="Create database tables")

    token_parser = subparsers.add_parser("add-token", help="Create or update a destination token")
    token_parser.add_argument("address", help="Token contract address")
    token_parser.add_argument("symbol", help="Token symbol")
    token_parser.add_argument("decimals", type=int, help="Token decimals")
    token_parser.add_argument("--wrapped", action="store_true", help="Swap through the native-asset path")
    token_parser.add_argument("--fee-tier", type=int, help="Pool fee tier")

    plan_parser = subparsers.add_parser("create-plan", help="Create or reactivate a plan")
    plan_parser.add_argument("user", help="User wallet address")
    plan_parser.add_argument("token_out", help="Destination token address")
    plan_parser.add_argument("recipient", help="Recipient address")
    plan_parser.add_argument("amount_in", type=int, help="USDC base units per execution")
    plan_parser.add_argument("frequency", type=int, help="Seconds between executions")
    plan_parser.add_argument("--approval-amount", type=int, help="USDC approval granted by the user")

    deactivate_parser = subparsers.add_parser("deactivate-plan", help="Deactivate a plan")
    deactivate_parser.add_argument("plan_hash", help="Plan hash")
    deactivate_parser.add_argument("--purge", action="store_true", help="Also delete its execution history")

    approval_parser = subparsers.add_parser("set-approval", help="Record the user's USDC approval amount")
    approval_parser.add_argument("plan_hash", help="Plan hash")
    approval_parser.add_argument("amount", type=int, help="Approved USDC base units")

    executions_parser = subparsers.add_parser("executions", help="List a plan's executions")
    executions_parser.add_argument("plan_hash", help="Plan hash")

    return parser


async def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    command = args.command.lower()

    try:
        if command == "execute":
            return await cli_execute(args.plan_hash)

        elif command == "reconcile":
            return await cli_reconcile(args.plan_hash, args.tx_hash)

        elif command == "init-db":
            return await cli_init_db()

        elif command == "add-token":
            return await cli_add_token(args.address, args.symbol, args.decimals, args.wrapped, args.fee_tier)

        elif command == "create-plan":
            return await cli_create_plan(args)

        elif command == "deactivate-plan":
            return await cli_deactivate_plan(args.plan_hash, args.purge)

        elif command == "set-approval":
            return await cli_set_approval(args.plan_hash, args.amount)

        elif command == "executions":
            return await cli_executions(args.plan_hash)

    except ConfigurationError as e:
        print("❌ Configuration error:")
        for problem in e.problems:
            print(f"  - {problem}")
        return 2
    except ValueError as e:
        print(f"❌ {e}")
        return 2

    print(f"❌ Unknown command: {command}")
    parser.print_help()
    return 2


def run() -> None:
    setup_logging()
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
