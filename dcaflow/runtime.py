"""
Executor runtime wiring.

Builds the long-lived components (RPC client, signer, store, swap client)
from ``Settings`` once at startup and hands them to ``PlanExecutor``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from eth_account import Account

from .config import Settings, settings as default_settings
from .core.chain.allowance import AllowanceVerifier
from .core.chain.rpc import JsonRpcClient
from .core.chain.submitter import ChainSubmitter
from .core.plans.executor import PlanExecutor
from .db.store import PlanStore
from .providers.oneinch import OneInchSwapClient


logger = logging.getLogger(__name__)


@dataclass
class ExecutorRuntime:
    """Components shared by every request."""
    settings: Settings
    rpc: JsonRpcClient
    store: PlanStore
    executor: PlanExecutor

    async def close(self) -> None:
        await self.rpc.close()
        self.store.dispose()


def build_runtime(
    config: Optional[Settings] = None,
    store: Optional[PlanStore] = None,
    create_schema: bool = True,
) -> ExecutorRuntime:
    """
    Construct the executor from configuration.

    Args:
        config: Settings to use (default: the module-level ``settings``)
        store: Pre-built store (default: one opened on ``database_url``)
        create_schema: Create missing tables before returning

    Raises:
        ConfigurationError: Required settings are missing or malformed
    """
    config = config or default_settings
    config.require_executor_config()

    account = Account.from_key(config.signer_private_key.get_secret_value())
    rpc = JsonRpcClient(config.rpc_url, timeout=config.rpc_timeout_seconds)

    if store is None:
        store = PlanStore.from_url(config.database_url, timeout=config.db_timeout_seconds)
    if create_schema:
        store.create_schema()

    submitter = ChainSubmitter(
        rpc=rpc,
        account=account,
        forwarding_contract=config.forwarding_contract_address,
        chain_id=config.chain_id,
        gas_limit_multiplier=config.gas_limit_multiplier,
        confirmation_timeout=config.confirmation_timeout_seconds,
        poll_interval=config.confirmation_poll_interval_seconds,
    )
    quotes = OneInchSwapClient(
        config.oneinch_swap_url(),
        config.oneinch_api_key.get_secret_value(),
        referrer=config.oneinch_referrer,
        slippage_percent=config.swap_slippage_percent,
        fee_percent=config.swap_fee_percent,
        timeout_s=config.request_timeout_seconds,
    )
    executor = PlanExecutor(
        store=store,
        allowance=AllowanceVerifier(rpc, config.usdc_address),
        quotes=quotes,
        submitter=submitter,
        forwarding_contract=config.forwarding_contract_address,
        usdc_address=config.usdc_address,
    )

    logger.info(
        "Executor runtime ready: chain=%s signer=%s forwarding_contract=%s",
        config.chain_id, account.address, config.forwarding_contract_address,
    )
    return ExecutorRuntime(settings=config, rpc=rpc, store=store, executor=executor)
