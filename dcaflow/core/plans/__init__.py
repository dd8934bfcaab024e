"""
DCA Plan Module

Plan data model and settlement decoding. The executor lives in
``dcaflow.core.plans.executor``.
"""

from .models import (
    ExecutionRecord,
    Plan,
    PlanExecutionResult,
    Token,
    compute_plan_hash,
    is_plan_hash,
    is_tx_hash,
)
from .settlement import SWAP_EXECUTED_TOPIC, SettlementAmounts, parse_settlement

__all__ = [
    # Models
    "ExecutionRecord",
    "Plan",
    "PlanExecutionResult",
    "Token",
    "compute_plan_hash",
    "is_plan_hash",
    "is_tx_hash",
    # Settlement
    "SWAP_EXECUTED_TOPIC",
    "SettlementAmounts",
    "parse_settlement",
]
