"""
On-chain Whitelist Adapter: reads and writes the policy registry.

Behavioral Contract:
- Every read and write targets the configured registry and policy id.
  Policy id 0 is a configuration error, never sent to the chain.
- ``is_authorized`` raises ChainReadFailed on RPC failure. It never turns
  an unknown answer into ``False``.
- Each membership change is its own transaction. Bulk creation is only for
  the first population of a brand-new policy.
- The optional authorization cache is time-bounded, dropped for an address
  whenever this adapter writes it, and only backs presentation reads.
"""

import logging
import time
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from stablecoin_kernel.chain.abi import REGISTRY_ABI, TOKEN_ABI
from stablecoin_kernel.chain.rpc import LedgerRpc
from stablecoin_kernel.chain.transactions import TransactionSender
from stablecoin_kernel.errors import ChainReadFailed, Misconfigured
from stablecoin_kernel.models.address import normalize_address, normalize_addresses
from stablecoin_kernel.models.config import KernelConfig
from stablecoin_kernel.models.whitelist import PolicyType, TxReceipt, WhitelistPolicy

logger = logging.getLogger(__name__)


class WhitelistAdapter:
    """Authorization registry access for the active policy."""

    def __init__(
        self,
        config: KernelConfig,
        rpc: LedgerRpc,
        sender: TransactionSender,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.rpc = rpc
        self.sender = sender
        self.registry = config.registry_address
        self._clock = clock
        self._cache: Dict[str, Tuple[float, bool]] = {}

    @property
    def policy_id(self) -> int:
        """The active policy id. Raises Misconfigured when unset."""
        return self.config.require_policy_id()

    # -- Reads --

    async def is_authorized(self, address: str) -> bool:
        """Authorization of ``address`` under the active policy."""
        address = normalize_address(address)
        result = await self.rpc.read_contract(
            self.registry, REGISTRY_ABI, "isAuthorized", [self.policy_id, address]
        )
        return bool(result)

    async def is_authorized_cached(self, address: str) -> bool:
        """Presentation read through a short TTL cache."""
        address = normalize_address(address)
        now = self._clock()
        cached = self._cache.get(address)
        if cached and cached[0] > now:
            return cached[1]
        authorized = await self.is_authorized(address)
        self._cache[address] = (now + self.config.authorization_cache_ttl_seconds, authorized)
        return authorized

    async def find_authorized(self, addresses: Iterable[str]) -> Optional[str]:
        """First address in ``addresses`` that is authorized, if any."""
        for address in addresses:
            if await self.is_authorized_cached(address):
                return address.lower()
        return None

    async def policy_id_counter(self) -> int:
        return int(await self.rpc.read_contract(self.registry, REGISTRY_ABI, "policyIdCounter"))

    async def get_policy(self, policy_id: Optional[int] = None) -> WhitelistPolicy:
        policy_id = self.policy_id if policy_id is None else policy_id
        policy_type, admin = await self.rpc.read_contract(
            self.registry, REGISTRY_ABI, "policyData", [policy_id]
        )
        return WhitelistPolicy(
            policy_id=policy_id,
            policy_type=PolicyType(int(policy_type)),
            admin=str(admin).lower(),
        )

    async def get_token_policy(self) -> int:
        """Policy id currently bound to the token."""
        token = self.config.require_token_address()
        return int(await self.rpc.read_contract(token, TOKEN_ABI, "transferPolicyId"))

    # -- Writes --

    async def set_authorization(self, address: str, allowed: bool) -> str:
        """Submit a membership change. Returns the transaction hash."""
        address = normalize_address(address)
        policy_id = self.policy_id
        self._cache.pop(address, None)
        tx_hash = await self.sender.submit(
            self.registry, REGISTRY_ABI, "modifyPolicyWhitelist", [policy_id, address, allowed]
        )
        logger.info(
            "%s %s on policy %d: %s",
            "Authorizing" if allowed else "Deauthorizing", address, policy_id, tx_hash,
        )
        return tx_hash

    async def await_confirmation(self, tx_hash: str, timeout: Optional[float] = None) -> TxReceipt:
        return await self.sender.await_confirmation(tx_hash, timeout)

    async def create_policy_with_accounts(
        self,
        accounts: Iterable[str],
        admin: Optional[str] = None,
        policy_type: PolicyType = PolicyType.WHITELIST,
    ) -> int:
        """Create a new policy pre-seeded with ``accounts``; returns its id."""
        admin = self._admin(admin)
        members: List[str] = normalize_addresses(accounts)
        await self.sender.submit_and_confirm(
            self.registry,
            REGISTRY_ABI,
            "createPolicyWithAccounts",
            [admin, int(policy_type), members],
        )
        policy_id = await self._latest_policy_id()
        logger.info("Created policy %d with %d accounts", policy_id, len(members))
        return policy_id

    async def set_token_policy(self, policy_id: int) -> TxReceipt:
        """
        Rebind the token's transfer policy.

        Only call this once privileged setup (e.g. initial minting) is done:
        an admin missing from the new policy can lock itself out.
        """
        if policy_id == 0:
            raise Misconfigured("Refusing to bind the token to policy id 0")
        token = self.config.require_token_address()
        receipt = await self.sender.submit_and_confirm(
            token, TOKEN_ABI, "changeTransferPolicyId", [policy_id]
        )
        logger.info("Token %s bound to policy %d", token, policy_id)
        return receipt

    # -- Helpers --

    def _admin(self, admin: Optional[str]) -> str:
        admin = admin or self.rpc.signer_address
        if not admin:
            raise Misconfigured("No policy admin given and no signing key configured")
        return normalize_address(admin)

    async def _latest_policy_id(self) -> int:
        counter = await self.policy_id_counter()
        if counter == 0:
            raise ChainReadFailed("Policy counter still zero after policy creation")
        return counter - 1


__all__ = ["WhitelistAdapter"]
