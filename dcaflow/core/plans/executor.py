"""
Plan Executor

Runs the first execution of a DCA plan end to end:

1. Load the plan and check it is eligible
2. Verify the user's USDC allowance to the forwarding contract
3. Fetch swap calldata from the aggregator
4. Submit the swap through the forwarding contract and wait for it
5. Recover the settled amounts from the receipt
6. Record the execution and mark the plan executed in one transaction

Every failure leaves as a ``PlanExecutionError``; this is the only module that
classifies component exceptions.
"""

from __future__ import annotations

import asyncio
import logging
import time
import weakref
from typing import Any, Callable, Dict, Optional

import structlog

from dcaflow.core.chain.allowance import AllowanceVerifier, ChainReadError
from dcaflow.core.chain.models import SwapCall, SwapKind, TransactionReceipt
from dcaflow.core.chain.submitter import (
    ChainSubmitter,
    TransactionBroadcastError,
    TransactionRevertError,
    TransactionTimeoutError,
)
from dcaflow.core.errors import ExecutionErrorKind, PlanExecutionError
from dcaflow.db.store import ExecutionConflictError, PlanNotFoundError, PlanStore
from dcaflow.providers.oneinch import OneInchSwapClient, QuoteUnavailableError

from .models import ExecutionRecord, Plan, PlanExecutionResult, is_plan_hash, is_tx_hash
from .settlement import SettlementAmounts, parse_settlement

_slog = structlog.stdlib.get_logger("plans.executor")

logger = logging.getLogger(__name__)


class PlanExecutor:
    """
    Executes plans against the chain and records them in the ledger.

    Executions of the same plan are serialised in-process by a per-plan
    lock; across processes the compare-and-swap on ``last_executed_at`` in
    ``PlanStore.record_execution`` decides the winner.

    A swap whose outcome is unknown (lost broadcast response or confirmation
    timeout) is remembered per plan. Later ``execute`` calls settle that
    transaction instead of sending another one.
    """

    def __init__(
        self,
        store: PlanStore,
        allowance: AllowanceVerifier,
        quotes: OneInchSwapClient,
        submitter: ChainSubmitter,
        forwarding_contract: str,
        usdc_address: str,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            store: Plan / execution ledger
            allowance: USDC allowance reader
            quotes: Swap calldata source
            submitter: Forwarding-contract transaction submitter
            forwarding_contract: Address that executes swaps and emits SwapExecuted
            usdc_address: Source token for every plan
            clock: Returns unix seconds; injectable for tests
        """
        self._store = store
        self._allowance = allowance
        self._quotes = quotes
        self._submitter = submitter
        self.forwarding_contract = forwarding_contract.lower()
        self.usdc_address = usdc_address.lower()
        self._clock = clock
        # Entries vanish once no coroutine holds or waits on the lock
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()
        self._unconfirmed: Dict[str, str] = {}

    def _lock_for(self, plan_hash: str) -> asyncio.Lock:
        lock = self._locks.get(plan_hash)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[plan_hash] = lock
        return lock

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def execute(self, plan_hash: str) -> PlanExecutionResult:
        """Perform the initial swap of a plan and record it."""
        plan_hash = _validated_plan_hash(plan_hash)
        async with self._lock_for(plan_hash):
            return await self._execute(plan_hash)

    async def reconcile(self, plan_hash: str, tx_hash: str) -> PlanExecutionResult:
        """
        Record a swap that was broadcast but never recorded.

        Used after ``SWAP_UNCONFIRMED`` or ``RECORDING_FAILED`` once the
        transaction is known to have landed. The plan does not need to be
        active; it must not already be marked executed.
        """
        plan_hash = _validated_plan_hash(plan_hash)
        if not is_tx_hash(tx_hash):
            raise PlanExecutionError(ExecutionErrorKind.INVALID_TX_HASH)
        tx_hash = tx_hash.lower()

        async with self._lock_for(plan_hash):
            log = _slog.bind(plan_hash=plan_hash, tx_hash=tx_hash)
            log.info("plan_reconcile_started")

            plan = await self._load_plan(plan_hash)
            if plan.has_executed:
                raise PlanExecutionError(
                    ExecutionErrorKind.ALREADY_EXECUTED,
                    details={"planHash": plan_hash, "lastExecutedAt": plan.last_executed_at},
                )

            try:
                receipt = await self._submitter.get_receipt(tx_hash)
            except Exception as e:
                log.warning("receipt_fetch_failed", error=str(e))
                raise PlanExecutionError(
                    ExecutionErrorKind.CHAIN_READ_FAILED, details={"txHash": tx_hash}
                ) from e

            if receipt is None:
                raise PlanExecutionError(
                    ExecutionErrorKind.SWAP_UNCONFIRMED, details={"txHash": tx_hash, "planHash": plan_hash}
                )
            if receipt.to_address and receipt.to_address.lower() != self.forwarding_contract:
                raise PlanExecutionError(
                    ExecutionErrorKind.INVALID_TX_HASH,
                    "Transaction was not sent to the forwarding contract",
                    details={"txHash": tx_hash},
                )
            if not receipt.succeeded:
                raise PlanExecutionError(
                    ExecutionErrorKind.SWAP_EXECUTION_FAILED,
                    details={"txHash": tx_hash, "reason": "reverted"},
                )

            amounts = parse_settlement(receipt, self.forwarding_contract)
            if amounts.found and not amounts.settles_for(
                plan.user_wallet, plan.recipient, plan.token_out.address
            ):
                log.warning(
                    "reconcile_settlement_mismatch",
                    event_user=amounts.user,
                    event_recipient=amounts.recipient,
                    event_token_out=amounts.token_out,
                )
                raise PlanExecutionError(
                    ExecutionErrorKind.INVALID_TX_HASH,
                    "Transaction settled a different plan",
                    details={"txHash": tx_hash},
                )

            return await self._record(plan, receipt, amounts, log, time.perf_counter())

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _execute(self, plan_hash: str) -> PlanExecutionResult:
        _start = time.perf_counter()
        log = _slog.bind(plan_hash=plan_hash)

        plan = await self._load_plan(plan_hash)
        if plan.has_executed:
            raise PlanExecutionError(
                ExecutionErrorKind.ALREADY_EXECUTED,
                details={"planHash": plan_hash, "lastExecutedAt": plan.last_executed_at},
            )
        outstanding = self._unconfirmed.get(plan_hash)
        if outstanding:
            result = await self._settle_outstanding(plan, outstanding, log, _start)
            if result is not None:
                return result

        if not plan.active:
            raise PlanExecutionError(ExecutionErrorKind.INACTIVE_PLAN, details={"planHash": plan_hash})

        native = plan.token_out.is_wrapped
        log.info(
            "plan_execution_started",
            user=plan.user_wallet,
            token_out=plan.token_out.address,
            symbol=plan.token_out.symbol,
            amount_in=str(plan.amount_in),
            native=native,
        )

        # No allowance check on the native path
        if not native:
            await self._check_allowance(plan, log)

        swap_data = await self._fetch_calldata(plan, log)

        call = SwapCall(
            user=plan.user_wallet,
            token_out=plan.token_out.address,
            recipient=plan.recipient,
            amount_in=plan.amount_in,
            swap_data=swap_data,
        )
        receipt = await self._submit(plan_hash, SwapKind.NATIVE if native else SwapKind.STANDARD, call, log)

        amounts = parse_settlement(receipt, self.forwarding_contract)
        return await self._record(plan, receipt, amounts, log.bind(tx_hash=receipt.tx_hash), _start)

    async def _settle_outstanding(
        self, plan: Plan, tx_hash: str, log: Any, started: float
    ) -> Optional[PlanExecutionResult]:
        """
        Resolve the swap left unconfirmed by an earlier attempt.

        Returns the recorded result once it has landed, or None when it
        reverted and a fresh swap may be sent. While it is still unknown the
        attempt fails with ``SWAP_UNCONFIRMED`` again.
        """
        log = log.bind(tx_hash=tx_hash)
        try:
            receipt = await self._submitter.get_receipt(tx_hash)
        except Exception as e:
            log.warning("outstanding_receipt_fetch_failed", error=str(e))
            receipt = None

        if receipt is None:
            log.warning("outstanding_swap_unconfirmed")
            raise PlanExecutionError(
                ExecutionErrorKind.SWAP_UNCONFIRMED,
                details={"txHash": tx_hash, "planHash": plan.plan_hash},
            )
        if not receipt.succeeded:
            log.info("outstanding_swap_reverted", block=receipt.block_number)
            self._unconfirmed.pop(plan.plan_hash, None)
            return None

        log.info("outstanding_swap_confirmed", block=receipt.block_number)
        amounts = parse_settlement(receipt, self.forwarding_contract)
        return await self._record(plan, receipt, amounts, log, started)

    async def _load_plan(self, plan_hash: str) -> Plan:
        try:
            return await self._store.get_plan(plan_hash)
        except PlanNotFoundError:
            raise PlanExecutionError(ExecutionErrorKind.PLAN_NOT_FOUND, details={"planHash": plan_hash})
        except Exception as e:
            logger.exception(f"Plan lookup failed for {plan_hash}: {e}")
            raise PlanExecutionError(ExecutionErrorKind.STORE_UNAVAILABLE) from e

    async def _check_allowance(self, plan: Plan, log: Any) -> None:
        try:
            current = await self._allowance.get_allowance(plan.user_wallet, self.forwarding_contract)
        except ChainReadError as e:
            log.warning("allowance_read_failed", error=str(e))
            raise PlanExecutionError(ExecutionErrorKind.CHAIN_READ_FAILED) from e

        log.info("allowance_checked", allowance=str(current), required=str(plan.amount_in))
        if current < plan.amount_in:
            raise PlanExecutionError(
                ExecutionErrorKind.INSUFFICIENT_ALLOWANCE,
                details={"required": str(plan.amount_in), "current": str(current)},
            )

    async def _fetch_calldata(self, plan: Plan, log: Any) -> str:
        try:
            swap_data = await self._quotes.get_swap_calldata(
                src=self.usdc_address,
                dst=plan.token_out.address,
                amount=plan.amount_in,
                trader=self.forwarding_contract,
                recipient=plan.recipient,
            )
        except QuoteUnavailableError as e:
            log.warning("swap_calldata_unavailable", error=str(e), upstream_status=e.status_code)
            details = {"upstreamStatus": e.status_code} if e.status_code else None
            raise PlanExecutionError(ExecutionErrorKind.QUOTE_UNAVAILABLE, details=details) from e

        log.info("swap_calldata_received", calldata_bytes=(len(swap_data) - 2) // 2)
        return swap_data

    async def _submit(self, plan_hash: str, kind: SwapKind, call: SwapCall, log: Any) -> TransactionReceipt:
        try:
            receipt = await self._submitter.submit(kind, call)
        except (TransactionTimeoutError, TransactionBroadcastError) as e:
            log.error("swap_unconfirmed", tx_hash=e.tx_hash, error=str(e))
            self._unconfirmed[plan_hash] = e.tx_hash
            raise PlanExecutionError(
                ExecutionErrorKind.SWAP_UNCONFIRMED,
                details={"txHash": e.tx_hash, "planHash": plan_hash},
            ) from e
        except TransactionRevertError as e:
            log.warning("swap_reverted", tx_hash=e.tx_hash)
            raise PlanExecutionError(
                ExecutionErrorKind.SWAP_EXECUTION_FAILED,
                details={"txHash": e.tx_hash, "reason": "reverted"},
            ) from e
        except Exception as e:
            # Nothing was broadcast
            log.error("swap_submission_failed", kind=kind.value, error=str(e))
            logger.exception(f"Swap submission failed: {e}")
            raise PlanExecutionError(
                ExecutionErrorKind.SWAP_EXECUTION_FAILED,
                details={"reason": e.__class__.__name__},
            ) from e

        log.info("swap_confirmed", tx_hash=receipt.tx_hash, block=receipt.block_number, kind=kind.value)
        return receipt

    async def _record(
        self,
        plan: Plan,
        receipt: TransactionReceipt,
        amounts: SettlementAmounts,
        log: Any,
        started: float,
    ) -> PlanExecutionResult:
        if amounts.found:
            amount_in, amount_out, fee_amount = amounts.amount_in, amounts.amount_out, amounts.fee_amount
        else:
            log.warning("settlement_event_missing", logs=len(receipt.logs))
            amount_in, amount_out, fee_amount = plan.amount_in, 0, 0

        executed_at = int(self._clock())
        record = ExecutionRecord(
            plan_hash=plan.plan_hash,
            tx_hash=receipt.tx_hash,
            amount_in=amount_in,
            amount_out=amount_out,
            fee_amount=fee_amount,
            token_out_address=plan.token_out.address,
            executed_at=executed_at,
        )
        swap_details = {
            "txHash": receipt.tx_hash,
            "planHash": plan.plan_hash,
            "amountIn": str(amount_in),
            "amountOut": str(amount_out),
            "feeAmount": str(fee_amount),
        }

        try:
            await self._store.record_execution(record)
        except ExecutionConflictError as e:
            self._unconfirmed.pop(plan.plan_hash, None)
            log.warning("plan_execution_conflict", **swap_details)
            raise PlanExecutionError(ExecutionErrorKind.CONCURRENT_EXECUTION, details=swap_details) from e
        except Exception as e:
            log.error("plan_execution_recording_failed", error=str(e), **swap_details)
            raise PlanExecutionError(
                ExecutionErrorKind.RECORDING_FAILED,
                details={**swap_details, "reason": e.__class__.__name__},
            ) from e

        self._unconfirmed.pop(plan.plan_hash, None)
        log.info(
            "plan_execution_recorded",
            amount_in=str(amount_in),
            amount_out=str(amount_out),
            fee_amount=str(fee_amount),
            settlement_found=amounts.found,
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )
        return PlanExecutionResult(
            plan_hash=plan.plan_hash,
            tx_hash=receipt.tx_hash,
            amount_in=amount_in,
            amount_out=amount_out,
            fee_amount=fee_amount,
            executed_at=executed_at,
            settlement_found=amounts.found,
        )


def _validated_plan_hash(plan_hash: Optional[str]) -> str:
    if not is_plan_hash(plan_hash):
        raise PlanExecutionError(ExecutionErrorKind.INVALID_PLAN_HASH)
    return plan_hash.lower()
