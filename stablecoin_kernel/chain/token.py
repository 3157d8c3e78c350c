"""Token contract access: balances and claim mints."""

import logging
from typing import Optional

from stablecoin_kernel.chain.abi import TOKEN_ABI
from stablecoin_kernel.chain.rpc import LedgerRpc
from stablecoin_kernel.chain.transactions import TransactionSender
from stablecoin_kernel.models.address import normalize_address
from stablecoin_kernel.models.config import KernelConfig
from stablecoin_kernel.models.whitelist import TxReceipt

logger = logging.getLogger(__name__)


class TokenAdapter:
    """Reads balances and mints from the configured token."""

    def __init__(self, config: KernelConfig, rpc: LedgerRpc, sender: TransactionSender):
        self.config = config
        self.rpc = rpc
        self.sender = sender

    @property
    def token(self) -> str:
        return self.config.require_token_address()

    async def balance_of(self, address: str) -> int:
        """Balance in minor units. Raises ChainReadFailed."""
        address = normalize_address(address)
        return int(await self.rpc.read_contract(self.token, TOKEN_ABI, "balanceOf", [address]))

    async def mint(self, to: str, amount: int) -> str:
        """Submit a mint (issuer role required). Returns the transaction hash."""
        to = normalize_address(to)
        tx_hash = await self.sender.submit(self.token, TOKEN_ABI, "mint", [to, amount])
        logger.info("Mint of %d to %s submitted: %s", amount, to, tx_hash)
        return tx_hash

    async def await_confirmation(self, tx_hash: str, timeout: Optional[float] = None) -> TxReceipt:
        return await self.sender.await_confirmation(tx_hash, timeout)
