"""
Plan and execution ledger persistence.

The engine is synchronous; every public coroutine runs its query in a worker
thread via ``asyncio.to_thread``. Amounts are stored as decimal strings.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, List, Optional, TypeVar

from sqlalchemy import and_, delete, func, insert, select, text, true, update
from sqlalchemy.engine import Connection, Engine, Row
from sqlalchemy.exc import IntegrityError

from dcaflow.core.plans.models import (
    NEVER_EXECUTED,
    ExecutionRecord,
    Plan,
    Token,
    compute_plan_hash,
    normalize_address,
)

from .database import create_db_engine, create_schema, executions, plans, tokens


logger = logging.getLogger(__name__)

T = TypeVar("T")


class PlanNotFoundError(Exception):
    def __init__(self, plan_hash: str):
        super().__init__(f"Plan not found: {plan_hash}")
        self.plan_hash = plan_hash


class TokenNotFoundError(Exception):
    def __init__(self, address: str):
        super().__init__(f"Token not found: {address}")
        self.address = address


class ExecutionConflictError(Exception):
    """The first-execution compare-and-swap matched no row."""

    def __init__(self, plan_hash: str):
        super().__init__(f"Plan already recorded as executed: {plan_hash}")
        self.plan_hash = plan_hash


class ActivePlanExistsError(Exception):
    """The user already has an active plan for this token."""

    def __init__(self, user_wallet: str, token_out_address: str):
        super().__init__(f"Active plan already exists for {user_wallet} / {token_out_address}")
        self.user_wallet = user_wallet
        self.token_out_address = token_out_address


def _token_from_row(row: Row) -> Token:
    return Token(
        address=row.address,
        symbol=row.symbol,
        decimals=row.decimals,
        is_wrapped=bool(row.is_wrapped),
        fee_tier=row.fee_tier,
    )


def _execution_from_row(row: Row) -> ExecutionRecord:
    return ExecutionRecord(
        id=row.id,
        plan_hash=row.plan_hash,
        tx_hash=row.tx_hash,
        amount_in=int(row.amount_in),
        amount_out=int(row.amount_out),
        fee_amount=int(row.fee_amount),
        token_out_address=row.token_out_address,
        executed_at=row.executed_at,
    )


_PLAN_COLUMNS = [
    plans,
    tokens.c.symbol,
    tokens.c.decimals,
    tokens.c.is_wrapped,
    tokens.c.fee_tier,
]


def _plan_from_row(row: Row) -> Plan:
    return Plan(
        plan_hash=row.plan_hash,
        user_wallet=row.user_wallet,
        token_out=Token(
            address=row.token_out_address,
            symbol=row.symbol,
            decimals=row.decimals,
            is_wrapped=bool(row.is_wrapped),
            fee_tier=row.fee_tier,
        ),
        recipient=row.recipient,
        amount_in=int(row.amount_in),
        frequency=row.frequency,
        last_executed_at=row.last_executed_at,
        active=bool(row.active),
        created_at=row.created_at,
        approval_amount=int(row.approval_amount) if row.approval_amount is not None else None,
    )


class LedgerTransaction:
    """Writes bound to one open database transaction."""

    def __init__(self, conn: Connection):
        self._conn = conn

    def set_last_executed(self, plan_hash: str, executed_at: int) -> None:
        result = self._conn.execute(
            update(plans)
            .where(and_(plans.c.plan_hash == plan_hash, plans.c.last_executed_at == NEVER_EXECUTED))
            .values(last_executed_at=executed_at)
        )
        if result.rowcount == 0:
            raise ExecutionConflictError(plan_hash)

    def append_execution(self, record: ExecutionRecord) -> ExecutionRecord:
        result = self._conn.execute(
            insert(executions).values(
                plan_hash=record.plan_hash,
                tx_hash=record.tx_hash.lower(),
                amount_in=str(record.amount_in),
                amount_out=str(record.amount_out),
                fee_amount=str(record.fee_amount),
                token_out_address=record.token_out_address.lower(),
                executed_at=record.executed_at,
            )
        )
        return ExecutionRecord(
            id=result.inserted_primary_key[0],
            plan_hash=record.plan_hash,
            tx_hash=record.tx_hash.lower(),
            amount_in=record.amount_in,
            amount_out=record.amount_out,
            fee_amount=record.fee_amount,
            token_out_address=record.token_out_address.lower(),
            executed_at=record.executed_at,
        )


class PlanStore:
    """
    Async facade over the plans / tokens / executions tables.

    Only ``record_execution`` and ``run_in_transaction`` give atomicity across
    more than one write; the single-write helpers each run in their own
    transaction.
    """

    def __init__(self, engine: Engine):
        self.engine = engine

    @classmethod
    def from_url(cls, database_url: str, timeout: float = 10.0) -> "PlanStore":
        return cls(create_db_engine(database_url, timeout=timeout))

    def create_schema(self) -> None:
        create_schema(self.engine)

    def dispose(self) -> None:
        self.engine.dispose()

    # -- generic -----------------------------------------------------------

    def _transaction(self, fn: Callable[[LedgerTransaction], T]) -> T:
        with self.engine.begin() as conn:
            return fn(LedgerTransaction(conn))

    async def run_in_transaction(self, fn: Callable[[LedgerTransaction], T]) -> T:
        """Run ``fn`` inside one transaction; an exception rolls back every write."""
        return await asyncio.to_thread(self._transaction, fn)

    async def ping(self) -> bool:
        def _ping() -> bool:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True

        return await asyncio.to_thread(_ping)

    # -- plans -------------------------------------------------------------

    def _get_plan(self, plan_hash: str) -> Plan:
        query = (
            select(*_PLAN_COLUMNS)
            .select_from(plans.join(tokens, plans.c.token_out_address == tokens.c.address))
            .where(plans.c.plan_hash == plan_hash.lower())
        )
        with self.engine.connect() as conn:
            row = conn.execute(query).first()
        if row is None:
            raise PlanNotFoundError(plan_hash)
        return _plan_from_row(row)

    async def get_plan(self, plan_hash: str) -> Plan:
        return await asyncio.to_thread(self._get_plan, plan_hash)

    def _create_or_reactivate_plan(
        self,
        user_wallet: str,
        token_out_address: str,
        recipient: str,
        amount_in: int,
        frequency: int,
        approval_amount: Optional[int],
        now: int,
    ) -> str:
        user_wallet = normalize_address(user_wallet)
        token_out_address = normalize_address(token_out_address)
        recipient = normalize_address(recipient)
        plan_hash = compute_plan_hash(token_out_address, recipient)
        values = dict(
            user_wallet=user_wallet,
            token_out_address=token_out_address,
            recipient=recipient,
            amount_in=str(amount_in),
            approval_amount=str(approval_amount) if approval_amount is not None else None,
            frequency=frequency,
            last_executed_at=NEVER_EXECUTED,
            active=True,
            created_at=now,
        )

        try:
            with self.engine.begin() as conn:
                if conn.execute(select(tokens.c.address).where(tokens.c.address == token_out_address)).first() is None:
                    raise TokenNotFoundError(token_out_address)

                other_active = conn.execute(
                    select(plans.c.plan_hash).where(
                        and_(
                            plans.c.user_wallet == user_wallet,
                            plans.c.token_out_address == token_out_address,
                            plans.c.active == true(),
                        )
                    )
                ).first()
                if other_active is not None:
                    raise ActivePlanExistsError(user_wallet, token_out_address)

                existing = conn.execute(
                    select(plans.c.active, plans.c.user_wallet).where(plans.c.plan_hash == plan_hash)
                ).first()
                if existing is not None and existing.active:
                    raise ActivePlanExistsError(existing.user_wallet, token_out_address)
                if existing is None:
                    conn.execute(insert(plans).values(plan_hash=plan_hash, **values))
                    logger.info("Plan created: %s", plan_hash)
                else:
                    conn.execute(update(plans).where(plans.c.plan_hash == plan_hash).values(**values))
                    logger.info("Plan reactivated: %s", plan_hash)
        except IntegrityError as e:
            # Lost a race against a concurrent create for the same user/token
            raise ActivePlanExistsError(user_wallet, token_out_address) from e

        return plan_hash

    async def create_or_reactivate_plan(
        self,
        user_wallet: str,
        token_out_address: str,
        recipient: str,
        amount_in: int,
        frequency: int,
        approval_amount: Optional[int] = None,
        now: Optional[int] = None,
    ) -> Plan:
        """Create a plan, or reactivate a cancelled one with the same hash.

        Reactivation resets ``last_executed_at`` to 0 and ``created_at`` to
        ``now``; its previous execution rows are left in place.
        """
        plan_hash = await asyncio.to_thread(
            self._create_or_reactivate_plan,
            user_wallet,
            token_out_address,
            recipient,
            amount_in,
            frequency,
            approval_amount,
            int(time.time()) if now is None else now,
        )
        return await self.get_plan(plan_hash)

    def _update_plan(self, plan_hash: str, **values) -> None:
        with self.engine.begin() as conn:
            result = conn.execute(
                update(plans).where(plans.c.plan_hash == plan_hash.lower()).values(**values)
            )
        if result.rowcount == 0:
            raise PlanNotFoundError(plan_hash)

    async def deactivate_plan(self, plan_hash: str) -> None:
        await asyncio.to_thread(self._update_plan, plan_hash, active=False)

    async def update_approval_amount(self, plan_hash: str, approval_amount: int) -> None:
        await asyncio.to_thread(self._update_plan, plan_hash, approval_amount=str(approval_amount))

    async def set_last_executed(self, plan_hash: str, executed_at: int) -> None:
        await self.run_in_transaction(lambda tx: tx.set_last_executed(plan_hash.lower(), executed_at))

    # -- executions --------------------------------------------------------

    async def append_execution(self, record: ExecutionRecord) -> ExecutionRecord:
        return await self.run_in_transaction(lambda tx: tx.append_execution(record))

    async def record_execution(self, record: ExecutionRecord) -> ExecutionRecord:
        """Mark the plan executed and append ``record``, both or neither."""

        def _record(tx: LedgerTransaction) -> ExecutionRecord:
            tx.set_last_executed(record.plan_hash, record.executed_at)
            return tx.append_execution(record)

        return await self.run_in_transaction(_record)

    def _list_executions(self, plan_hash: str) -> List[ExecutionRecord]:
        query = (
            select(executions)
            .where(executions.c.plan_hash == plan_hash.lower())
            .order_by(executions.c.executed_at, executions.c.id)
        )
        with self.engine.connect() as conn:
            return [_execution_from_row(row) for row in conn.execute(query)]

    async def list_executions(self, plan_hash: str) -> List[ExecutionRecord]:
        return await asyncio.to_thread(self._list_executions, plan_hash)

    def _purge_executions(self, plan_hash: str) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(delete(executions).where(executions.c.plan_hash == plan_hash.lower()))
        return result.rowcount

    async def purge_executions(self, plan_hash: str) -> int:
        """Delete every ledger row of a plan. Returns the number removed."""
        return await asyncio.to_thread(self._purge_executions, plan_hash)

    def _count_executions(self, plan_hash: str) -> int:
        with self.engine.connect() as conn:
            return conn.execute(
                select(func.count()).select_from(executions).where(executions.c.plan_hash == plan_hash.lower())
            ).scalar_one()

    async def count_executions(self, plan_hash: str) -> int:
        return await asyncio.to_thread(self._count_executions, plan_hash)

    # -- tokens ------------------------------------------------------------

    def _upsert_token(self, token: Token) -> Token:
        address = normalize_address(token.address)
        values = dict(
            symbol=token.symbol,
            decimals=token.decimals,
            is_wrapped=token.is_wrapped,
            fee_tier=token.fee_tier,
        )
        with self.engine.begin() as conn:
            result = conn.execute(update(tokens).where(tokens.c.address == address).values(**values))
            if result.rowcount == 0:
                conn.execute(insert(tokens).values(address=address, **values))
        return Token(address=address, **values)

    async def upsert_token(self, token: Token) -> Token:
        return await asyncio.to_thread(self._upsert_token, token)

    def _get_token(self, address: str) -> Token:
        with self.engine.connect() as conn:
            row = conn.execute(select(tokens).where(tokens.c.address == address.lower())).first()
        if row is None:
            raise TokenNotFoundError(address)
        return _token_from_row(row)

    async def get_token(self, address: str) -> Token:
        return await asyncio.to_thread(self._get_token, address)
