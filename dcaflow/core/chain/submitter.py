"""
Transaction submitter for the forwarding contract.

Handles the lifecycle of one swap transaction:
- Calldata encoding for the standard / native entry point
- Nonce reservation for the shared signer
- Gas estimation (EIP-1559)
- Signing and broadcast
- Confirmation monitoring
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from eth_account.signers.local import LocalAccount
from eth_utils import to_checksum_address, to_hex

from .abi import encode_swap_call
from .models import GasEstimate, SwapCall, SwapKind, TransactionReceipt
from .nonce_manager import NonceManager
from .rpc import JsonRpcClient, RpcError


logger = logging.getLogger(__name__)

DEFAULT_PRIORITY_FEE_WEI = 1_000_000_000

_ALREADY_KNOWN_MARKERS = ("already known", "known transaction")


class ExecutionError(Exception):
    """Base exception for submission errors raised after broadcast."""

    def __init__(self, message: str, tx_hash: str):
        super().__init__(message)
        self.tx_hash = tx_hash


class TransactionRevertError(ExecutionError):
    """Transaction was mined but reverted on-chain."""

    def __init__(self, tx_hash: str, receipt: Optional[TransactionReceipt] = None):
        super().__init__(f"Transaction reverted: {tx_hash}", tx_hash)
        self.receipt = receipt


class TransactionTimeoutError(ExecutionError):
    """Transaction was broadcast but not confirmed in time.

    It may still land; callers must not resubmit without checking.
    """

    def __init__(self, tx_hash: str, timeout: float):
        super().__init__(f"Confirmation timeout after {timeout}s: {tx_hash}", tx_hash)
        self.timeout = timeout


class TransactionBroadcastError(ExecutionError):
    """The signed transaction was sent but the node's answer was lost.

    The node may have accepted it. Like a timeout, it must be reconciled by
    hash, never resubmitted.
    """

    def __init__(self, tx_hash: str, cause: Exception):
        super().__init__(f"Broadcast outcome unknown for {tx_hash}: {cause!r}", tx_hash)
        self.cause = cause


def _already_known(error: RpcError) -> bool:
    message = str(error).lower()
    return any(marker in message for marker in _ALREADY_KNOWN_MARKERS)


class ChainSubmitter:
    """
    Submits swaps to the forwarding contract with the executor signer.

    Errors before the raw transaction is sent (gas estimation, signing) and
    definitive node rejections of ``eth_sendRawTransaction`` propagate
    unchanged after the reserved nonce is released. Once the transaction may
    have reached the node, failures are ``TransactionBroadcastError``,
    ``TransactionRevertError`` or ``TransactionTimeoutError`` carrying its hash.
    """

    def __init__(
        self,
        rpc: JsonRpcClient,
        account: LocalAccount,
        forwarding_contract: str,
        chain_id: int,
        nonce_manager: Optional[NonceManager] = None,
        gas_limit_multiplier: float = 1.2,
        confirmation_timeout: float = 180.0,
        poll_interval: float = 2.0,
        required_confirmations: int = 1,
    ):
        self._rpc = rpc
        self._account = account
        self.forwarding_contract = to_checksum_address(forwarding_contract)
        self.chain_id = chain_id
        self.nonce_manager = nonce_manager or NonceManager(rpc, account.address)
        self.gas_limit_multiplier = gas_limit_multiplier
        self.confirmation_timeout = confirmation_timeout
        self.poll_interval = poll_interval
        self.required_confirmations = required_confirmations

    @property
    def signer_address(self) -> str:
        return self._account.address

    async def submit(self, kind: SwapKind, call: SwapCall) -> TransactionReceipt:
        """Send a swap and block until it is confirmed."""
        data = encode_swap_call(kind, call)
        tx_hash = await self._broadcast(data)
        logger.info(
            "Swap transaction submitted: %s (kind=%s user=%s amount_in=%s)",
            tx_hash, kind.value, call.user, call.amount_in,
        )
        return await self.wait_for_receipt(tx_hash)

    async def estimate_gas(self, data: str) -> GasEstimate:
        call_obj = {
            "from": self.signer_address,
            "to": self.forwarding_contract,
            "data": data,
        }
        gas_limit = int(await self._rpc.call("eth_estimateGas", [call_obj]), 16)
        gas_limit = int(gas_limit * self.gas_limit_multiplier)

        fee_history = await self._rpc.call("eth_feeHistory", [1, "latest", [50]])
        base_fee = int(fee_history["baseFeePerGas"][-1], 16)
        rewards = fee_history.get("reward") or []
        priority_fee = int(rewards[0][0], 16) if rewards and rewards[0] else DEFAULT_PRIORITY_FEE_WEI

        return GasEstimate(
            gas_limit=gas_limit,
            max_fee_per_gas=base_fee * 2 + priority_fee,
            max_priority_fee_per_gas=priority_fee,
        )

    async def _broadcast(self, data: str) -> str:
        nonce = await self.nonce_manager.reserve()
        try:
            gas = await self.estimate_gas(data)
            tx: Dict[str, Any] = {
                "type": 2,
                "chainId": self.chain_id,
                "nonce": nonce,
                "to": self.forwarding_contract,
                "value": 0,
                "data": data,
                "gas": gas.gas_limit,
                "maxFeePerGas": gas.max_fee_per_gas,
                "maxPriorityFeePerGas": gas.max_priority_fee_per_gas,
            }
            signed = self._account.sign_transaction(tx)
        except Exception:
            await self.nonce_manager.release(nonce)
            raise

        tx_hash = to_hex(signed.hash)
        try:
            node_hash = await self._rpc.call("eth_sendRawTransaction", [to_hex(signed.raw_transaction)])
        except RpcError as e:
            if not _already_known(e):
                await self.nonce_manager.release(nonce)
                raise
            logger.info("Node already holds transaction %s (nonce %s)", tx_hash, nonce)
            node_hash = tx_hash
        except Exception as e:
            # The raw transaction has left the process; its nonce stays consumed
            await self.nonce_manager.mark_broadcast(nonce)
            logger.warning("Broadcast outcome unknown for %s (nonce %s): %r", tx_hash, nonce, e)
            raise TransactionBroadcastError(tx_hash, e) from e

        await self.nonce_manager.mark_broadcast(nonce)
        return node_hash or tx_hash

    async def get_receipt(self, tx_hash: str) -> Optional[TransactionReceipt]:
        """Return the mined receipt, or None while the transaction is pending."""
        raw = await self._rpc.call("eth_getTransactionReceipt", [tx_hash])
        if not raw:
            return None
        return TransactionReceipt.from_rpc(raw)

    async def wait_for_receipt(
        self,
        tx_hash: str,
        timeout: Optional[float] = None,
    ) -> TransactionReceipt:
        """Poll until the transaction has ``required_confirmations``."""
        timeout = self.confirmation_timeout if timeout is None else timeout
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            try:
                receipt = await self.get_receipt(tx_hash)
                if receipt is not None:
                    if not receipt.succeeded:
                        raise TransactionRevertError(tx_hash, receipt)
                    if await self._confirmations(receipt) >= self.required_confirmations:
                        logger.info(
                            "Transaction confirmed: %s (block %s)", tx_hash, receipt.block_number
                        )
                        return receipt
            except TransactionRevertError:
                raise
            except Exception as e:
                logger.warning("Error checking transaction status for %s: %s", tx_hash, e)

            if loop.time() >= deadline:
                raise TransactionTimeoutError(tx_hash, timeout)
            await asyncio.sleep(self.poll_interval)

    async def _confirmations(self, receipt: TransactionReceipt) -> int:
        if self.required_confirmations <= 1:
            # Inclusion in a block is one confirmation
            return 1
        current_block = int(await self._rpc.call("eth_blockNumber", []), 16)
        return current_block - receipt.block_number + 1
