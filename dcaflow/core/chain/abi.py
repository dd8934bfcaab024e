"""
Calldata encoding for the handful of contract calls the executor makes.
"""

from eth_abi import encode as abi_encode
from eth_utils import function_signature_to_4byte_selector, to_bytes, to_checksum_address

from .models import SwapCall, SwapKind


# Common contract ABIs (minimal for encoding)
ERC20_ALLOWANCE_SELECTOR = "0xdd62ed3e"  # allowance(address,address)

SWAP_ENTRY_POINTS = {
    SwapKind.STANDARD: "executeSwap(address,address,address,uint256,bytes)",
    SwapKind.NATIVE: "executeNativeSwap(address,address,address,uint256,bytes)",
}
SWAP_ARG_TYPES = ["address", "address", "address", "uint256", "bytes"]


def _encode_address(address: str) -> str:
    """Encode an address as a 32-byte hex string (without 0x prefix)."""
    addr = address.lower().replace("0x", "")
    return addr.zfill(64)


def encode_allowance_call(owner: str, spender: str) -> str:
    """Calldata for ERC20 ``allowance(owner, spender)``."""
    return ERC20_ALLOWANCE_SELECTOR + _encode_address(owner) + _encode_address(spender)


def swap_selector(kind: SwapKind) -> bytes:
    return function_signature_to_4byte_selector(SWAP_ENTRY_POINTS[kind])


def encode_swap_call(kind: SwapKind, call: SwapCall) -> str:
    """Calldata for ``executeSwap`` / ``executeNativeSwap`` on the forwarding contract."""
    args = abi_encode(
        SWAP_ARG_TYPES,
        [
            to_checksum_address(call.user),
            to_checksum_address(call.token_out),
            to_checksum_address(call.recipient),
            call.amount_in,
            to_bytes(hexstr=call.swap_data),
        ],
    )
    return "0x" + (swap_selector(kind) + args).hex()


def decode_uint256(result: str) -> int:
    """Decode a single uint256 ``eth_call`` return value.

    Raises ValueError for an empty return (e.g. the target is not a contract).
    """
    body = (result or "").lower().replace("0x", "", 1)
    if not body:
        raise ValueError("empty eth_call result")
    return int(body[:64], 16)
