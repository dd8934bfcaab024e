"""
Chain Layer

Everything that talks to the EVM node:
- JsonRpcClient: minimal async JSON-RPC transport
- AllowanceVerifier: ERC-20 allowance reads
- ChainSubmitter: encodes, signs, broadcasts and confirms forwarding-contract swaps
- NonceManager: serialises nonce assignment for the shared signer
"""

from .allowance import AllowanceVerifier, ChainReadError
from .models import GasEstimate, ReceiptLog, SwapCall, SwapKind, TransactionReceipt
from .nonce_manager import NonceManager
from .rpc import JsonRpcClient, RpcError
from .submitter import (
    ChainSubmitter,
    ExecutionError,
    TransactionBroadcastError,
    TransactionRevertError,
    TransactionTimeoutError,
)

__all__ = [
    "AllowanceVerifier",
    "ChainReadError",
    "ChainSubmitter",
    "ExecutionError",
    "GasEstimate",
    "JsonRpcClient",
    "NonceManager",
    "ReceiptLog",
    "RpcError",
    "SwapCall",
    "SwapKind",
    "TransactionBroadcastError",
    "TransactionReceipt",
    "TransactionRevertError",
    "TransactionTimeoutError",
]
