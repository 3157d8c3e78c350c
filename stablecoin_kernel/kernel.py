"""Component wiring shared by the HTTP app and the operator CLI."""

import time
from typing import Callable, Optional

from stablecoin_kernel.auth.signature import SignatureGate
from stablecoin_kernel.chain.rpc import LedgerRpc, Web3LedgerRpc
from stablecoin_kernel.chain.token import TokenAdapter
from stablecoin_kernel.chain.transactions import TransactionSender
from stablecoin_kernel.chain.whitelist import WhitelistAdapter
from stablecoin_kernel.claims.ledger import ClaimLedger, build_claim_store
from stablecoin_kernel.claims.store import ClaimStore
from stablecoin_kernel.models.config import KernelConfig
from stablecoin_kernel.reconciler.engine import WhitelistReconciler
from stablecoin_kernel.reputation.client import ScoreProviderClient


class Kernel:
    """
    One of each component, built from a single KernelConfig.

    Every chain writer shares one TransactionSender and therefore one nonce
    allocator for the admin account.
    """

    def __init__(
        self,
        config: KernelConfig,
        rpc: Optional[LedgerRpc] = None,
        provider: Optional[ScoreProviderClient] = None,
        claim_store: Optional[ClaimStore] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.rpc = rpc or Web3LedgerRpc(config)
        self.sender = TransactionSender(self.rpc, config.confirmation_timeout_seconds)
        self.provider = provider or ScoreProviderClient(config)
        self.whitelist = WhitelistAdapter(config, self.rpc, self.sender)
        self.token = TokenAdapter(config, self.rpc, self.sender)
        self.claim_store = claim_store or build_claim_store(config)
        self.reconciler = WhitelistReconciler(config, self.provider, self.whitelist)
        self.ledger = ClaimLedger(config, self.provider, self.token, self.claim_store, clock=clock)
        self.signature_gate = SignatureGate(config, clock=clock)

    async def close(self) -> None:
        await self.provider.close()
        self.claim_store.close()
