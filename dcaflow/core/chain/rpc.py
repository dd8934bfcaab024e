"""
Minimal async EVM JSON-RPC client.
"""

import itertools
import logging
from typing import Any, List, Optional

import httpx


logger = logging.getLogger(__name__)


class RpcError(Exception):
    """The node answered with a JSON-RPC error object."""

    def __init__(self, method: str, error: Any):
        self.method = method
        self.error = error
        if isinstance(error, dict):
            self.code = error.get("code")
            message = error.get("message") or str(error)
        else:
            self.code = None
            message = str(error)
        super().__init__(f"RPC error in {method}: {message}")


class JsonRpcClient:
    """
    Thin JSON-RPC 2.0 client over a single provider endpoint.

    Transport failures surface as ``httpx.HTTPError``; node-level errors as
    ``RpcError``. Nothing is retried here.
    """

    def __init__(
        self,
        rpc_url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not rpc_url:
            raise ValueError("rpc_url is required")
        self.rpc_url = rpc_url
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._ids = itertools.count(1)

    async def call(self, method: str, params: List[Any]) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": next(self._ids),
        }

        response = await self._client.post(self.rpc_url, json=payload)
        response.raise_for_status()
        result = response.json()

        if result.get("error") is not None:
            raise RpcError(method, result["error"])

        return result.get("result")

    async def chain_id(self) -> int:
        return int(await self.call("eth_chainId", []), 16)

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()
