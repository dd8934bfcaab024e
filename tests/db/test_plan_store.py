"""
Tests for the SQLAlchemy plan / execution store.
"""

import pytest
from sqlalchemy.exc import IntegrityError

from dcaflow.core.plans.models import ExecutionRecord, Token, compute_plan_hash
from dcaflow.db.store import (
    ActivePlanExistsError,
    ExecutionConflictError,
    PlanNotFoundError,
    PlanStore,
    TokenNotFoundError,
)


USER = "0x1111111111111111111111111111111111111111"
TOKEN_OUT = "0x2222222222222222222222222222222222222222"
RECIPIENT = "0x3333333333333333333333333333333333333333"
OTHER_RECIPIENT = "0x4444444444444444444444444444444444444444"
TX_A = "0x" + "a" * 64
TX_B = "0x" + "b" * 64


@pytest.fixture
def store(tmp_path):
    store = PlanStore.from_url(f"sqlite:///{tmp_path / 'plans.db'}")
    store.create_schema()
    yield store
    store.dispose()


async def seed_plan(store: PlanStore, recipient: str = RECIPIENT, now: int = 1_000, amount_in: int = 10_000_000):
    await store.upsert_token(Token(address=TOKEN_OUT, symbol="TKN", decimals=18))
    return await store.create_or_reactivate_plan(
        user_wallet=USER,
        token_out_address=TOKEN_OUT,
        recipient=recipient,
        amount_in=amount_in,
        frequency=86_400,
        now=now,
    )


def record_for(plan_hash: str, tx_hash: str = TX_A, executed_at: int = 2_000) -> ExecutionRecord:
    return ExecutionRecord(
        plan_hash=plan_hash,
        tx_hash=tx_hash,
        amount_in=10_000_000,
        amount_out=500_000_000_000_000_000,
        fee_amount=300_000,
        token_out_address=TOKEN_OUT,
        executed_at=executed_at,
    )


# =============================================================================
# Plans
# =============================================================================


class TestPlans:

    @pytest.mark.asyncio
    async def test_create_and_get_plan(self, store):
        created = await seed_plan(store)

        plan = await store.get_plan(created.plan_hash)
        assert plan.plan_hash == compute_plan_hash(TOKEN_OUT, RECIPIENT)
        assert plan.user_wallet == USER
        assert plan.token_out.symbol == "TKN"
        assert plan.token_out.is_wrapped is False
        assert plan.amount_in == 10_000_000
        assert plan.last_executed_at == 0
        assert plan.active is True
        assert plan.created_at == 1_000

    @pytest.mark.asyncio
    async def test_get_plan_accepts_uppercase_hash(self, store):
        created = await seed_plan(store)

        plan = await store.get_plan(created.plan_hash.upper().replace("0X", "0x"))
        assert plan.plan_hash == created.plan_hash

    @pytest.mark.asyncio
    async def test_large_amounts_survive_storage(self, store):
        created = await seed_plan(store, amount_in=2**255)

        assert (await store.get_plan(created.plan_hash)).amount_in == 2**255

    @pytest.mark.asyncio
    async def test_missing_plan_raises(self, store):
        with pytest.raises(PlanNotFoundError):
            await store.get_plan("0x" + "0" * 64)

    @pytest.mark.asyncio
    async def test_plan_requires_known_token(self, store):
        with pytest.raises(TokenNotFoundError):
            await store.create_or_reactivate_plan(USER, TOKEN_OUT, RECIPIENT, 1, 60)

    @pytest.mark.asyncio
    async def test_second_active_plan_for_same_token_rejected(self, store):
        await seed_plan(store)

        with pytest.raises(ActivePlanExistsError):
            await seed_plan(store, recipient=OTHER_RECIPIENT)

    @pytest.mark.asyncio
    async def test_recreating_active_plan_rejected(self, store):
        await seed_plan(store)

        with pytest.raises(ActivePlanExistsError):
            await seed_plan(store)

    @pytest.mark.asyncio
    async def test_reactivation_resets_execution_state(self, store):
        created = await seed_plan(store, now=1_000)
        await store.record_execution(record_for(created.plan_hash, executed_at=2_000))
        await store.deactivate_plan(created.plan_hash)

        reactivated = await seed_plan(store, now=5_000)

        assert reactivated.plan_hash == created.plan_hash
        assert reactivated.active is True
        assert reactivated.last_executed_at == 0
        assert reactivated.created_at == 5_000
        # History is kept unless purged
        assert len(await store.list_executions(created.plan_hash)) == 1

    @pytest.mark.asyncio
    async def test_deactivated_plan_frees_user_token_slot(self, store):
        created = await seed_plan(store)
        await store.deactivate_plan(created.plan_hash)

        other = await seed_plan(store, recipient=OTHER_RECIPIENT)
        assert other.active is True
        assert (await store.get_plan(created.plan_hash)).active is False

    @pytest.mark.asyncio
    async def test_deactivate_missing_plan_raises(self, store):
        with pytest.raises(PlanNotFoundError):
            await store.deactivate_plan("0x" + "0" * 64)

    @pytest.mark.asyncio
    async def test_update_approval_amount(self, store):
        created = await seed_plan(store)

        await store.update_approval_amount(created.plan_hash, 50_000_000)

        assert (await store.get_plan(created.plan_hash)).approval_amount == 50_000_000


# =============================================================================
# Execution ledger
# =============================================================================


class TestExecutionLedger:

    @pytest.mark.asyncio
    async def test_record_execution_marks_plan_and_appends(self, store):
        created = await seed_plan(store)

        saved = await store.record_execution(record_for(created.plan_hash))

        assert saved.id is not None
        plan = await store.get_plan(created.plan_hash)
        assert plan.last_executed_at == 2_000
        [row] = await store.list_executions(created.plan_hash)
        assert row.tx_hash == TX_A
        assert row.amount_out == 500_000_000_000_000_000
        assert row.fee_amount == 300_000

    @pytest.mark.asyncio
    async def test_second_record_conflicts_and_writes_nothing(self, store):
        created = await seed_plan(store)
        await store.record_execution(record_for(created.plan_hash, TX_A))

        with pytest.raises(ExecutionConflictError):
            await store.record_execution(record_for(created.plan_hash, TX_B, executed_at=3_000))

        assert (await store.get_plan(created.plan_hash)).last_executed_at == 2_000
        assert await store.count_executions(created.plan_hash) == 1

    @pytest.mark.asyncio
    async def test_failed_append_rolls_back_last_executed(self, store):
        first = await seed_plan(store)
        await store.record_execution(record_for(first.plan_hash, TX_A))
        await store.deactivate_plan(first.plan_hash)
        second = await seed_plan(store, recipient=OTHER_RECIPIENT)

        # Duplicate tx hash violates the unique constraint after the CAS succeeded
        with pytest.raises(IntegrityError):
            await store.record_execution(record_for(second.plan_hash, TX_A))

        assert (await store.get_plan(second.plan_hash)).last_executed_at == 0
        assert await store.count_executions(second.plan_hash) == 0

    @pytest.mark.asyncio
    async def test_run_in_transaction_rolls_back_on_error(self, store):
        created = await seed_plan(store)

        def _write_then_fail(tx):
            tx.set_last_executed(created.plan_hash, 9_999)
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await store.run_in_transaction(_write_then_fail)

        assert (await store.get_plan(created.plan_hash)).last_executed_at == 0

    @pytest.mark.asyncio
    async def test_set_last_executed_is_compare_and_swap(self, store):
        created = await seed_plan(store)

        await store.set_last_executed(created.plan_hash, 2_000)
        with pytest.raises(ExecutionConflictError):
            await store.set_last_executed(created.plan_hash, 3_000)

    @pytest.mark.asyncio
    async def test_append_execution_standalone(self, store):
        created = await seed_plan(store)

        await store.append_execution(record_for(created.plan_hash))

        assert await store.count_executions(created.plan_hash) == 1
        assert (await store.get_plan(created.plan_hash)).last_executed_at == 0

    @pytest.mark.asyncio
    async def test_purge_executions(self, store):
        created = await seed_plan(store)
        await store.record_execution(record_for(created.plan_hash))

        assert await store.purge_executions(created.plan_hash) == 1
        assert await store.list_executions(created.plan_hash) == []


# =============================================================================
# Tokens / health
# =============================================================================


class TestTokensAndHealth:

    @pytest.mark.asyncio
    async def test_upsert_token_updates_in_place(self, store):
        await store.upsert_token(Token(address=TOKEN_OUT, symbol="OLD", decimals=18))
        await store.upsert_token(Token(address=TOKEN_OUT, symbol="NEW", decimals=8, is_wrapped=True, fee_tier=500))

        token = await store.get_token(TOKEN_OUT)
        assert token.symbol == "NEW"
        assert token.decimals == 8
        assert token.is_wrapped is True
        assert token.fee_tier == 500

    @pytest.mark.asyncio
    async def test_get_missing_token_raises(self, store):
        with pytest.raises(TokenNotFoundError):
            await store.get_token(TOKEN_OUT)

    @pytest.mark.asyncio
    async def test_ping(self, store):
        assert await store.ping() is True
