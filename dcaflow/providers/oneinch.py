"""Async client for the 1inch swap API (calldata only)."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx


logger = logging.getLogger(__name__)


class QuoteUnavailableError(Exception):
    """The aggregator did not return usable swap calldata."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class OneInchSwapClient:
    """
    Thin wrapper around ``GET /swap/v6.0/{chainId}/swap``.

    Slippage and integrator fee are fixed per client. Any non-2xx response,
    transport failure or body without ``tx.data`` is a ``QuoteUnavailableError``.
    Nothing is retried here.
    """

    def __init__(
        self,
        swap_url: str,
        api_key: str,
        *,
        referrer: str,
        slippage_percent: int = 5,
        fee_percent: int = 3,
        timeout_s: float = 20,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.swap_url = swap_url
        self._api_key = api_key
        self.referrer = referrer
        self.slippage_percent = slippage_percent
        self.fee_percent = fee_percent
        self.timeout_s = timeout_s
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "accept": "application/json",
            "content-type": "application/json",
        }

    def _params(self, src: str, dst: str, amount: int, trader: str, recipient: str) -> Dict[str, str]:
        return {
            "src": src,
            "dst": dst,
            "amount": str(amount),
            "from": trader,
            "origin": recipient,
            "slippage": str(self.slippage_percent),
            "disableEstimate": "true",
            "referrer": self.referrer,
            "fee": str(self.fee_percent),
        }

    async def get_swap_calldata(
        self,
        src: str,
        dst: str,
        amount: int,
        trader: str,
        recipient: str,
    ) -> str:
        """Return hex calldata routing ``amount`` of ``src`` into ``dst``.

        ``trader`` is the address that will execute the swap (the forwarding
        contract); ``recipient`` is reported to 1inch as the origin.
        """
        params = self._params(src, dst, amount, trader, recipient)

        try:
            async with httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport) as client:
                response = await client.get(self.swap_url, params=params, headers=self._headers())
        except httpx.HTTPError as exc:
            raise QuoteUnavailableError(f"1inch request failed: {exc.__class__.__name__}") from exc

        if not response.is_success:
            logger.warning(
                "1inch swap API error %s for %s -> %s amount=%s: %s",
                response.status_code, src, dst, amount, response.text[:500],
            )
            raise QuoteUnavailableError(
                f"1inch API error: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )

        try:
            body: Any = response.json()
        except ValueError as exc:
            raise QuoteUnavailableError("1inch API returned a non-JSON body", response.status_code) from exc

        tx = body.get("tx") if isinstance(body, dict) else None
        data = tx.get("data") if isinstance(tx, dict) else None
        if not data:
            raise QuoteUnavailableError("No swap data found in 1inch API response", response.status_code)

        return data
