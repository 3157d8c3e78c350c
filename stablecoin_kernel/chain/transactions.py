"""
Transaction sender: submit a contract call, get a hash, await a receipt.

Behavioral Contract:
- Every submission takes its nonce from the shared NonceAllocator.
- A submission that fails before broadcast raises ChainWriteFailed and hands
  its nonce back.
- Confirmation never raises: it reports SUCCESS, REVERTED or TIMEOUT. A
  receipt poll that errors out is reported as TIMEOUT (outcome unknown).
"""

import logging
from typing import Any, List, Optional, Sequence

from stablecoin_kernel.chain.nonce import NonceAllocator
from stablecoin_kernel.chain.rpc import LedgerRpc
from stablecoin_kernel.errors import (
    ChainWriteFailed,
    ChainWriteReverted,
    ConfirmationTimeout,
    KernelError,
    Misconfigured,
)
from stablecoin_kernel.models.whitelist import ConfirmationStatus, TxReceipt

logger = logging.getLogger(__name__)


class TransactionSender:
    """Submits signed contract calls from the admin account."""

    def __init__(
        self,
        rpc: LedgerRpc,
        confirmation_timeout: float = 120.0,
        nonces: Optional[NonceAllocator] = None,
    ):
        self.rpc = rpc
        self.confirmation_timeout = confirmation_timeout
        self._nonces = nonces

    @property
    def nonces(self) -> NonceAllocator:
        if self._nonces is None:
            signer = self.rpc.signer_address
            if not signer:
                raise Misconfigured("ADMIN_PRIVATE_KEY environment variable is required")
            self._nonces = NonceAllocator(self.rpc, signer)
        return self._nonces

    async def submit(
        self, contract: str, abi: List[dict], function_name: str, args: Sequence[Any],
    ) -> str:
        """Broadcast a call and return its transaction hash."""
        nonce = await self.nonces.reserve()
        try:
            tx_hash = await self.rpc.write_contract(contract, abi, function_name, args, nonce)
        except KernelError:
            await self.nonces.release(nonce, broadcast=False)
            raise
        except Exception as e:
            await self.nonces.release(nonce, broadcast=False)
            raise ChainWriteFailed(f"{function_name} submission failed: {e}") from e

        await self.nonces.release(nonce, broadcast=True)
        logger.info("Submitted %s (nonce %d): %s", function_name, nonce, tx_hash)
        return tx_hash

    async def await_confirmation(self, tx_hash: str, timeout: Optional[float] = None) -> TxReceipt:
        """Wait for the receipt of a broadcast transaction."""
        timeout = self.confirmation_timeout if timeout is None else timeout
        try:
            receipt = await self.rpc.wait_for_receipt(tx_hash, timeout)
        except Exception as e:
            logger.warning("Receipt poll for %s failed: %s", tx_hash, e)
            return TxReceipt(tx_hash=tx_hash, status=ConfirmationStatus.TIMEOUT)

        if receipt.status == ConfirmationStatus.SUCCESS:
            logger.info("Confirmed %s in block %s", tx_hash, receipt.block_number)
        elif receipt.status == ConfirmationStatus.REVERTED:
            logger.warning("Transaction %s reverted", tx_hash)
        else:
            logger.warning("Transaction %s not confirmed within %.0fs", tx_hash, timeout)
        return receipt

    async def submit_and_confirm(
        self, contract: str, abi: List[dict], function_name: str, args: Sequence[Any],
    ) -> TxReceipt:
        """Submit and wait; raise on revert or timeout."""
        tx_hash = await self.submit(contract, abi, function_name, args)
        return raise_for_receipt(await self.await_confirmation(tx_hash))


def raise_for_receipt(receipt: TxReceipt, address: Optional[str] = None) -> TxReceipt:
    """Turn a non-success receipt into the matching error."""
    if receipt.status == ConfirmationStatus.REVERTED:
        raise ChainWriteReverted(
            f"Transaction {receipt.tx_hash} reverted", tx_hash=receipt.tx_hash, address=address
        )
    if receipt.status == ConfirmationStatus.TIMEOUT:
        raise ConfirmationTimeout(
            f"Transaction {receipt.tx_hash} not confirmed in time",
            tx_hash=receipt.tx_hash,
            address=address,
        )
    return receipt
