"""
Tests for plan identity and model serialisation.
"""

import pytest
from eth_utils import keccak

from dcaflow.core.plans.models import (
    ExecutionRecord,
    Plan,
    PlanExecutionResult,
    Token,
    compute_plan_hash,
    is_plan_hash,
    is_tx_hash,
    normalize_address,
)


TOKEN_OUT = "0x4200000000000000000000000000000000000006"
RECIPIENT = "0x3333333333333333333333333333333333333333"


class TestPlanHash:

    def test_matches_packed_keccak(self):
        expected = "0x" + keccak(bytes.fromhex(TOKEN_OUT[2:]) + bytes.fromhex(RECIPIENT[2:])).hex()

        assert compute_plan_hash(TOKEN_OUT, RECIPIENT) == expected

    def test_is_case_insensitive_in_inputs(self):
        token = "0xabcdefabcdefabcdefabcdefabcdefabcdefabcd"
        checksummed = "0xABCDEFABCDEFABCDEFABCDEFABCDEFABCDEFABCD"

        assert compute_plan_hash(checksummed, RECIPIENT) == compute_plan_hash(token, RECIPIENT)

    def test_argument_order_matters(self):
        assert compute_plan_hash(TOKEN_OUT, RECIPIENT) != compute_plan_hash(RECIPIENT, TOKEN_OUT)

    def test_result_is_well_formed(self):
        assert is_plan_hash(compute_plan_hash(TOKEN_OUT, RECIPIENT))

    @pytest.mark.parametrize(
        "value",
        [None, "", "0x", "0x" + "a" * 63, "0x" + "a" * 65, "a" * 64, "0x" + "g" * 64],
    )
    def test_rejects_malformed(self, value):
        assert not is_plan_hash(value)
        assert not is_tx_hash(value)


class TestNormalizeAddress:

    def test_lowercases(self):
        assert normalize_address("0xABCDEFabcdef0000000000000000000000000000") == (
            "0xabcdefabcdef0000000000000000000000000000"
        )

    def test_rejects_invalid(self):
        with pytest.raises(ValueError):
            normalize_address("0x1234")


class TestSerialisation:

    def test_plan_amounts_are_strings(self):
        plan = Plan(
            plan_hash="0x" + "1" * 64,
            user_wallet="0x1111111111111111111111111111111111111111",
            token_out=Token(address=TOKEN_OUT, symbol="WETH", decimals=18, is_wrapped=True),
            recipient=RECIPIENT,
            amount_in=2**200,
            frequency=86400,
        )

        data = plan.to_dict()
        assert data["amountIn"] == str(2**200)
        assert data["approvalAmount"] is None
        assert data["tokenOut"]["isWrapped"] is True
        assert plan.has_executed is False

    def test_execution_record_to_dict(self):
        record = ExecutionRecord(
            plan_hash="0x" + "1" * 64,
            tx_hash="0x" + "2" * 64,
            amount_in=10_000_000,
            amount_out=500_000_000_000_000_000,
            fee_amount=300_000,
            token_out_address=TOKEN_OUT,
            executed_at=1_700_000_000,
            id=3,
        )

        assert record.to_dict()["amountOut"] == "500000000000000000"
        assert record.to_dict()["id"] == 3

    def test_result_response_shape(self):
        result = PlanExecutionResult(
            plan_hash="0x" + "1" * 64,
            tx_hash="0x" + "2" * 64,
            amount_in=10_000_000,
            amount_out=500_000_000_000_000_000,
            fee_amount=300_000,
            executed_at=1_700_000_000,
        )

        assert result.to_response() == {
            "success": True,
            "txHash": "0x" + "2" * 64,
            "amountOut": "500000000000000000",
            "feeAmount": "300000",
        }
