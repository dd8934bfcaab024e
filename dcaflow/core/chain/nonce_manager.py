"""
Nonce management for the shared executor signer.

All plan executions sign with one key, so concurrent submissions must never
be handed the same nonce.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Set

from .rpc import JsonRpcClient


logger = logging.getLogger(__name__)


@dataclass
class NonceState:
    """Tracks nonce state for the signer address."""
    address: str
    confirmed_nonce: int                        # Last known on-chain count
    pending_nonce: int                          # Next available for use
    reserved_nonces: Set[int] = field(default_factory=set)
    last_updated: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class NonceManager:
    """
    Hands out nonces for one signer address.

    - Syncs with ``eth_getTransactionCount(address, "pending")`` on every
      reservation so externally sent transactions are accounted for
    - Never hands out a nonce that is still reserved
    - Releases nonces whose transaction was never broadcast
    """

    def __init__(self, rpc: JsonRpcClient, address: str):
        self._rpc = rpc
        self.address = address.lower()
        self._state: Optional[NonceState] = None
        self._lock = asyncio.Lock()

    async def _fetch_on_chain_nonce(self) -> int:
        result = await self._rpc.call("eth_getTransactionCount", [self.address, "pending"])
        return int(result, 16)

    async def reserve(self) -> int:
        """Reserve and return the next available nonce."""
        async with self._lock:
            on_chain_nonce = await self._fetch_on_chain_nonce()

            if self._state is None:
                self._state = NonceState(
                    address=self.address,
                    confirmed_nonce=on_chain_nonce,
                    pending_nonce=on_chain_nonce,
                )
            else:
                # Update confirmed nonce, but don't decrease pending
                state = self._state
                state.confirmed_nonce = on_chain_nonce
                state.reserved_nonces = {n for n in state.reserved_nonces if n >= on_chain_nonce}
                if on_chain_nonce > state.pending_nonce:
                    state.pending_nonce = on_chain_nonce
                state.last_updated = datetime.now(timezone.utc)

            state = self._state
            nonce = state.pending_nonce
            while nonce in state.reserved_nonces:
                nonce += 1

            state.reserved_nonces.add(nonce)
            state.pending_nonce = nonce + 1
            logger.debug("Reserved nonce %s for %s", nonce, self.address)
            return nonce

    async def release(self, nonce: int) -> None:
        """Give back a nonce whose transaction never reached the network."""
        async with self._lock:
            if self._state is None:
                return
            state = self._state
            state.reserved_nonces.discard(nonce)

            # If we released the highest nonce, we can reduce pending
            if nonce == state.pending_nonce - 1:
                while state.pending_nonce > state.confirmed_nonce:
                    if state.pending_nonce - 1 not in state.reserved_nonces:
                        state.pending_nonce -= 1
                    else:
                        break

    async def mark_broadcast(self, nonce: int) -> None:
        """The transaction using ``nonce`` is on the network; it is consumed."""
        async with self._lock:
            if self._state is None:
                return
            state = self._state
            state.reserved_nonces.discard(nonce)
            if nonce >= state.confirmed_nonce:
                state.confirmed_nonce = nonce + 1
            if state.pending_nonce <= nonce:
                state.pending_nonce = nonce + 1

    @property
    def state(self) -> Optional[NonceState]:
        return self._state
