"""
Persistence for plans, tokens and the execution ledger.
"""

from .database import create_db_engine, create_schema, metadata
from .store import (
    ActivePlanExistsError,
    ExecutionConflictError,
    LedgerTransaction,
    PlanNotFoundError,
    PlanStore,
    TokenNotFoundError,
)

__all__ = [
    "ActivePlanExistsError",
    "ExecutionConflictError",
    "LedgerTransaction",
    "PlanNotFoundError",
    "PlanStore",
    "TokenNotFoundError",
    "create_db_engine",
    "create_schema",
    "metadata",
]
