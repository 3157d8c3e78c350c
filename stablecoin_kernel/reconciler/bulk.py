"""
Operator bulk tools: upload a list of addresses, or stand up a new policy.

Both only ever add. Removal is the reconciler's job, driven by scores.
"""

import logging
from typing import Iterable, List, Optional, Tuple

from stablecoin_kernel.chain.whitelist import WhitelistAdapter
from stablecoin_kernel.models.address import normalize_addresses
from stablecoin_kernel.models.config import KernelConfig
from stablecoin_kernel.models.whitelist import SyncResult
from stablecoin_kernel.reconciler.engine import WhitelistReconciler
from stablecoin_kernel.reputation.client import ScoreProviderClient

logger = logging.getLogger(__name__)

# Largest account list createPolicyWithAccounts reliably accepts in one call.
FIRST_CHUNK_SIZE = 450
PARALLEL_ADD_SIZE = 30


async def upload_addresses(
    config: KernelConfig,
    provider: ScoreProviderClient,
    adapter: WhitelistAdapter,
    addresses: Iterable[str],
    concurrency: Optional[int] = None,
) -> SyncResult:
    """Authorize every address that is not already authorized. No score check."""
    if concurrency:
        config = config.model_copy(update={"max_concurrency": concurrency})
    members = normalize_addresses(addresses)
    reconciler = WhitelistReconciler(config, provider, adapter)
    return await reconciler.sync(members, eligibility={a: True for a in members})


async def create_policy_chunked(
    config: KernelConfig,
    provider: ScoreProviderClient,
    adapter: WhitelistAdapter,
    addresses: Iterable[str],
    first_chunk_size: int = FIRST_CHUNK_SIZE,
    concurrency: int = PARALLEL_ADD_SIZE,
) -> Tuple[int, SyncResult]:
    """
    Create a new whitelist policy holding ``addresses`` plus the admin.

    The first chunk goes into the creation call itself; the rest are added
    one transaction each. The token is not rebound here.
    """
    members: List[str] = normalize_addresses(addresses)
    admin = adapter.rpc.signer_address
    if admin and admin.lower() not in members:
        members.insert(0, admin.lower())

    first, rest = members[:first_chunk_size], members[first_chunk_size:]
    policy_id = await adapter.create_policy_with_accounts(first)
    logger.info(
        "Policy %d created with %d accounts, %d left to add", policy_id, len(first), len(rest)
    )

    new_config = config.model_copy(update={"policy_id": policy_id})
    new_adapter = WhitelistAdapter(new_config, adapter.rpc, adapter.sender)
    result = await upload_addresses(new_config, provider, new_adapter, rest, concurrency)
    return policy_id, result
