"""
Settlement event decoding.

The forwarding contract emits, per swap:

    event SwapExecuted(
        address indexed user,        // topics[1]
        address recipient,           // data slot 0
        address toToken,             // data slot 1
        uint256 amountIn,            // data slot 2
        uint256 indexed amountOut    // topics[2]
    );

The fee is not part of the event. It is derived here as a flat 3% of
``amountIn`` (floor). If the contract's fee schedule ever stops being a flat
3% of input, ``fee_amount`` silently diverges from what was actually charged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from dcaflow.core.chain.models import ReceiptLog, TransactionReceipt


logger = logging.getLogger(__name__)

SWAP_EXECUTED_TOPIC = "0xad671c9d50262b75ba17bdf7e330ae0d7da971800b2526584a85f83d23296b15"

FEE_NUMERATOR = 3
FEE_DENOMINATOR = 100

_SLOT_HEX = 64
_DATA_SLOTS = 3


@dataclass(frozen=True)
class SettlementAmounts:
    """Amounts recovered from the settlement event (zeros when absent)."""
    amount_in: int = 0
    amount_out: int = 0
    fee_amount: int = 0
    found: bool = False
    user: Optional[str] = None
    recipient: Optional[str] = None
    token_out: Optional[str] = None

    def settles_for(self, user: str, recipient: str, token_out: str) -> bool:
        """True when the decoded event names exactly these parties."""
        if not self.found:
            return False
        return (
            (self.user or "").lower() == user.lower()
            and (self.recipient or "").lower() == recipient.lower()
            and (self.token_out or "").lower() == token_out.lower()
        )


def derive_fee(amount_in: int) -> int:
    return amount_in * FEE_NUMERATOR // FEE_DENOMINATOR


def _slot_address(slot: str) -> str:
    return "0x" + slot[-40:]


def _is_settlement_log(log: ReceiptLog, forwarding_contract: str) -> bool:
    return (
        log.address.lower() == forwarding_contract.lower()
        and bool(log.topics)
        and log.topics[0].lower() == SWAP_EXECUTED_TOPIC
    )


def _decode(log: ReceiptLog) -> Optional[SettlementAmounts]:
    if len(log.topics) < 3:
        return None

    data = log.data[2:] if log.data.startswith("0x") else log.data
    if len(data) < _SLOT_HEX * _DATA_SLOTS:
        return None

    try:
        user_slot = log.topics[1][2:] if log.topics[1].startswith("0x") else log.topics[1]
        amount_out = int(log.topics[2], 16)
        recipient_slot = data[0:_SLOT_HEX]
        token_slot = data[_SLOT_HEX:2 * _SLOT_HEX]
        amount_in = int(data[2 * _SLOT_HEX:3 * _SLOT_HEX], 16)
    except ValueError:
        return None

    return SettlementAmounts(
        amount_in=amount_in,
        amount_out=amount_out,
        fee_amount=derive_fee(amount_in),
        found=True,
        user=_slot_address(user_slot),
        recipient=_slot_address(recipient_slot),
        token_out=_slot_address(token_slot),
    )


def parse_settlement(receipt: TransactionReceipt, forwarding_contract: str) -> SettlementAmounts:
    """Recover authoritative swap amounts from a receipt. Never raises.

    Returns all-zero amounts with ``found=False`` when no well-formed
    ``SwapExecuted`` log from ``forwarding_contract`` is present.
    """
    for log in receipt.logs:
        if not _is_settlement_log(log, forwarding_contract):
            continue
        decoded = _decode(log)
        if decoded is not None:
            return decoded
        logger.warning(
            "Malformed SwapExecuted log in %s: topics=%d data_len=%d",
            receipt.tx_hash, len(log.topics), len(log.data),
        )

    return SettlementAmounts()
