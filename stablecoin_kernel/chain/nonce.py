"""
Nonce allocator for the single administrative signer.

Behavioral Contract:
- The chain's pending transaction count is fetched once, then nonces are
  handed out locally in strictly increasing order.
- Every submitter (reconciler, claim ledger, bulk tools) shares one
  allocator per signing account.
- A nonce released without being broadcast is reused if it was the most
  recent one; otherwise the allocator resynchronizes from the chain on the
  next reservation so the gap gets filled.
"""

import asyncio
import logging
from typing import Optional, Set

from stablecoin_kernel.chain.rpc import LedgerRpc

logger = logging.getLogger(__name__)


class NonceAllocator:
    """Sequential nonce source for one account."""

    def __init__(self, rpc: LedgerRpc, address: str):
        self.rpc = rpc
        self.address = address
        self._lock = asyncio.Lock()
        self._next: Optional[int] = None
        self._outstanding: Set[int] = set()

    @property
    def outstanding(self) -> int:
        """Nonces reserved but not yet released."""
        return len(self._outstanding)

    async def reserve(self) -> int:
        """Reserve the next nonce."""
        async with self._lock:
            if self._next is None:
                self._next = await self.rpc.get_transaction_count(self.address)
                logger.debug("Nonce allocator synced for %s at %d", self.address, self._next)
            nonce = self._next
            self._next += 1
            self._outstanding.add(nonce)
            return nonce

    async def release(self, nonce: int, broadcast: bool = True) -> None:
        """
        Return a reserved nonce.

        ``broadcast=False`` means the transaction never reached the node, so
        the nonce is still free on chain.
        """
        async with self._lock:
            self._outstanding.discard(nonce)
            if broadcast or self._next is None:
                return
            if nonce == self._next - 1:
                self._next = nonce
            else:
                logger.warning(
                    "Nonce %d for %s was not broadcast; resyncing from chain", nonce, self.address
                )
                self._next = None
