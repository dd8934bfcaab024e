"""
ERC-20 allowance reads against the plan source token.
"""

import logging

import httpx

from .abi import decode_uint256, encode_allowance_call
from .rpc import JsonRpcClient, RpcError


logger = logging.getLogger(__name__)


class ChainReadError(Exception):
    """A read-only chain call could not be completed."""


class AllowanceVerifier:
    """Reads ``allowance(owner, spender)`` on a fixed ERC-20 token."""

    def __init__(self, rpc: JsonRpcClient, token_address: str):
        self._rpc = rpc
        self.token_address = token_address.lower()

    async def get_allowance(self, owner: str, spender: str) -> int:
        call = {
            "to": self.token_address,
            "data": encode_allowance_call(owner, spender),
        }
        try:
            result = await self._rpc.call("eth_call", [call, "latest"])
            return decode_uint256(result)
        except (httpx.HTTPError, RpcError, ValueError, TypeError) as e:
            logger.warning(
                "Allowance read failed for owner=%s spender=%s token=%s: %s",
                owner, spender, self.token_address, e,
            )
            raise ChainReadError(f"allowance read failed: {e}") from e
