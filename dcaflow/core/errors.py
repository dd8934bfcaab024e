"""
Error Classification

Closed set of plan-execution failure kinds. Leaf components raise their own
narrow exceptions; the plan executor is the only place that maps them onto an
``ExecutionErrorKind``. The HTTP status for each kind is decided here, once.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCategory(str, Enum):
    """Broad classes of failure used to decide who acts next."""

    CLIENT = "client"             # Bad request or plan state; never retried automatically
    UPSTREAM = "upstream"         # Quote API / chain read; retry is safe
    EXECUTION = "execution"       # Swap submission; no ledger row exists yet
    RECORDING = "recording"       # Swap landed, bookkeeping did not


class ExecutionErrorKind(str, Enum):
    """Every way a plan execution can terminate without success."""

    INVALID_PLAN_HASH = "invalid_plan_hash"
    INVALID_TX_HASH = "invalid_tx_hash"
    PLAN_NOT_FOUND = "plan_not_found"
    ALREADY_EXECUTED = "already_executed"
    INACTIVE_PLAN = "inactive_plan"
    CONCURRENT_EXECUTION = "concurrent_execution"
    INSUFFICIENT_ALLOWANCE = "insufficient_allowance"
    CHAIN_READ_FAILED = "chain_read_failed"
    QUOTE_UNAVAILABLE = "quote_unavailable"
    STORE_UNAVAILABLE = "store_unavailable"
    SWAP_EXECUTION_FAILED = "swap_execution_failed"
    SWAP_UNCONFIRMED = "swap_unconfirmed"
    RECORDING_FAILED = "recording_failed"


@dataclass(frozen=True)
class ErrorPolicy:
    """How a failure kind surfaces to callers."""

    http_status: int
    category: ErrorCategory
    retry_safe: bool
    message: str


ERROR_POLICIES: Dict[ExecutionErrorKind, ErrorPolicy] = {
    ExecutionErrorKind.INVALID_PLAN_HASH: ErrorPolicy(400, ErrorCategory.CLIENT, False, "Malformed plan hash"),
    ExecutionErrorKind.INVALID_TX_HASH: ErrorPolicy(400, ErrorCategory.CLIENT, False, "Malformed transaction hash"),
    ExecutionErrorKind.PLAN_NOT_FOUND: ErrorPolicy(404, ErrorCategory.CLIENT, False, "Plan not found"),
    ExecutionErrorKind.ALREADY_EXECUTED: ErrorPolicy(
        409, ErrorCategory.CLIENT, False, "Initial investment already executed"
    ),
    ExecutionErrorKind.INACTIVE_PLAN: ErrorPolicy(409, ErrorCategory.CLIENT, False, "Plan is not active"),
    ExecutionErrorKind.CONCURRENT_EXECUTION: ErrorPolicy(
        409, ErrorCategory.RECORDING, False, "Plan was recorded by a concurrent execution"
    ),
    ExecutionErrorKind.INSUFFICIENT_ALLOWANCE: ErrorPolicy(
        402, ErrorCategory.UPSTREAM, True, "Insufficient allowance"
    ),
    ExecutionErrorKind.CHAIN_READ_FAILED: ErrorPolicy(500, ErrorCategory.UPSTREAM, True, "Failed to read chain state"),
    ExecutionErrorKind.QUOTE_UNAVAILABLE: ErrorPolicy(500, ErrorCategory.UPSTREAM, True, "Failed to get swap data"),
    ExecutionErrorKind.STORE_UNAVAILABLE: ErrorPolicy(500, ErrorCategory.UPSTREAM, True, "Plan store unavailable"),
    ExecutionErrorKind.SWAP_EXECUTION_FAILED: ErrorPolicy(500, ErrorCategory.EXECUTION, True, "Swap execution failed"),
    ExecutionErrorKind.SWAP_UNCONFIRMED: ErrorPolicy(
        500, ErrorCategory.EXECUTION, False, "Swap submitted but not confirmed"
    ),
    ExecutionErrorKind.RECORDING_FAILED: ErrorPolicy(500, ErrorCategory.RECORDING, False, "Database update failed"),
}


class PlanExecutionError(Exception):
    """
    Terminal failure of ``PlanExecutor.execute`` / ``reconcile``.

    ``details`` is curated, caller-safe data (hashes, amounts, the failing
    step). Raw exception text stays in the server logs.
    """

    def __init__(
        self,
        kind: ExecutionErrorKind,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.kind = kind
        self.policy = ERROR_POLICIES[kind]
        self.message = message or self.policy.message
        self.details = details or {}
        super().__init__(f"{kind.value}: {self.message}")

    @property
    def http_status(self) -> int:
        return self.policy.http_status

    @property
    def category(self) -> ErrorCategory:
        return self.policy.category

    @property
    def retry_safe(self) -> bool:
        return self.policy.retry_safe

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "success": False,
            "error": self.message,
            "code": self.kind.value,
        }
        if self.details:
            body["details"] = self.details
        return body
