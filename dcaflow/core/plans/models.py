"""
DCA Plan Models

Data models for plans, tokens and the execution ledger. All token amounts are
integer base units; they are carried as Python ints and serialised as decimal
strings so 256-bit values survive JSON and the database unchanged.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

from eth_utils import keccak, to_canonical_address

PLAN_HASH_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")
TX_HASH_RE = PLAN_HASH_RE
ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")

NEVER_EXECUTED = 0


def compute_plan_hash(token_out: str, recipient: str) -> str:
    """Derive a plan's identity: keccak256(abi.encodePacked(tokenOut, recipient)).

    Clients compute the same value before any transaction exists, so it is
    the primary key rather than a random ID.
    """
    packed = to_canonical_address(token_out) + to_canonical_address(recipient)
    return "0x" + keccak(packed).hex()


def is_plan_hash(value: Optional[str]) -> bool:
    return bool(value) and bool(PLAN_HASH_RE.match(value))


def is_tx_hash(value: Optional[str]) -> bool:
    return bool(value) and bool(TX_HASH_RE.match(value))


def normalize_address(address: str) -> str:
    """Lower-case hex form used for storage and comparisons."""
    if not ADDRESS_RE.match(address or ""):
        raise ValueError(f"Invalid address: {address!r}")
    return address.lower()


@dataclass
class Token:
    """Reference data for a token plans can buy."""
    address: str
    symbol: str
    decimals: int
    is_wrapped: bool = False  # destination requires the native-asset path
    fee_tier: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "symbol": self.symbol,
            "decimals": self.decimals,
            "isWrapped": self.is_wrapped,
            "feeTier": self.fee_tier,
        }


@dataclass
class Plan:
    """A user's recurring purchase instruction."""
    plan_hash: str
    user_wallet: str
    token_out: Token
    recipient: str
    amount_in: int  # USDC base units (6 decimals)
    frequency: int  # seconds between executions
    last_executed_at: int = NEVER_EXECUTED
    active: bool = True
    created_at: int = 0
    approval_amount: Optional[int] = None

    @property
    def has_executed(self) -> bool:
        return self.last_executed_at != NEVER_EXECUTED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "planHash": self.plan_hash,
            "userWallet": self.user_wallet,
            "tokenOut": self.token_out.to_dict(),
            "recipient": self.recipient,
            "amountIn": str(self.amount_in),
            "frequency": self.frequency,
            "lastExecutedAt": self.last_executed_at,
            "active": self.active,
            "createdAt": self.created_at,
            "approvalAmount": str(self.approval_amount) if self.approval_amount is not None else None,
        }


@dataclass(frozen=True)
class ExecutionRecord:
    """Immutable ledger entry written once per successful on-chain swap."""
    plan_hash: str
    tx_hash: str
    amount_in: int
    amount_out: int
    fee_amount: int
    token_out_address: str
    executed_at: int
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "planHash": self.plan_hash,
            "txHash": self.tx_hash,
            "amountIn": str(self.amount_in),
            "amountOut": str(self.amount_out),
            "feeAmount": str(self.fee_amount),
            "tokenOutAddress": self.token_out_address,
            "executedAt": self.executed_at,
        }


@dataclass(frozen=True)
class PlanExecutionResult:
    """Outcome of a successful execute/reconcile call."""
    plan_hash: str
    tx_hash: str
    amount_in: int
    amount_out: int
    fee_amount: int
    executed_at: int
    settlement_found: bool = True

    def to_response(self) -> Dict[str, Any]:
        return {
            "success": True,
            "txHash": self.tx_hash,
            "amountOut": str(self.amount_out),
            "feeAmount": str(self.fee_amount),
        }
