"""
On-chain transaction models: swap calls, gas estimates and receipts.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class SwapKind(str, Enum):
    """Forwarding contract entry point to invoke."""
    STANDARD = "standard"   # executeSwap: ERC-20 destination
    NATIVE = "native"       # executeNativeSwap: destination needs the native-asset path


@dataclass(frozen=True)
class SwapCall:
    """Arguments shared by both forwarding contract swap entry points."""
    user: str
    token_out: str
    recipient: str
    amount_in: int
    swap_data: str  # aggregator calldata (hex)


@dataclass
class GasEstimate:
    """EIP-1559 gas parameters for a transaction."""
    gas_limit: int
    max_fee_per_gas: int
    max_priority_fee_per_gas: int


@dataclass(frozen=True)
class ReceiptLog:
    """A single event log entry from a transaction receipt."""
    address: str
    topics: List[str]
    data: str

    @classmethod
    def from_rpc(cls, raw: Dict[str, Any]) -> "ReceiptLog":
        return cls(
            address=str(raw.get("address") or ""),
            topics=[str(t) for t in raw.get("topics") or []],
            data=str(raw.get("data") or "0x"),
        )


@dataclass
class TransactionReceipt:
    """Mined transaction receipt, including logs."""
    tx_hash: str
    block_number: int
    status: int  # 1 = success, 0 = reverted
    gas_used: int = 0
    effective_gas_price: int = 0
    to_address: Optional[str] = None
    logs: List[ReceiptLog] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == 1

    @classmethod
    def from_rpc(cls, raw: Dict[str, Any]) -> "TransactionReceipt":
        """Build from an ``eth_getTransactionReceipt`` result (hex quantities)."""
        return cls(
            tx_hash=raw["transactionHash"],
            block_number=int(raw["blockNumber"], 16),
            # Pre-Byzantium receipts carry no status; treat as success
            status=int(raw.get("status") or "0x1", 16),
            gas_used=int(raw.get("gasUsed") or "0x0", 16),
            effective_gas_price=int(raw.get("effectiveGasPrice") or "0x0", 16),
            to_address=raw.get("to"),
            logs=[ReceiptLog.from_rpc(log) for log in raw.get("logs") or []],
        )
