"""
Ledger RPC: the narrow contract the kernel needs from the chain.

``LedgerRpc`` is the seam every chain component depends on. The production
implementation wraps web3's async client and signs locally with eth-account;
tests substitute an in-memory ledger.
"""

import logging
import re
from typing import Any, List, Optional, Protocol, Sequence, runtime_checkable

from eth_account import Account
from web3 import AsyncWeb3, Web3
from web3.exceptions import TimeExhausted

from stablecoin_kernel.errors import ChainReadFailed, ChainWriteFailed
from stablecoin_kernel.models.config import KernelConfig
from stablecoin_kernel.models.whitelist import ConfirmationStatus, TxReceipt

logger = logging.getLogger(__name__)

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


@runtime_checkable
class LedgerRpc(Protocol):
    """Read, write and confirm contract calls from one signing identity."""

    @property
    def signer_address(self) -> Optional[str]:
        ...

    async def read_contract(
        self, address: str, abi: List[dict], function_name: str, args: Sequence[Any] = (),
    ) -> Any:
        """Call a view function. Raises ChainReadFailed."""
        ...

    async def write_contract(
        self, address: str, abi: List[dict], function_name: str, args: Sequence[Any], nonce: int,
    ) -> str:
        """Sign and broadcast a call with an explicit nonce. Returns the tx hash."""
        ...

    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> TxReceipt:
        """Await the receipt. Status TIMEOUT if none arrived in time."""
        ...

    async def get_transaction_count(self, address: str) -> int:
        """Pending transaction count (next nonce) for an account."""
        ...


def _to_chain_arg(value: Any) -> Any:
    """web3 only accepts checksummed addresses."""
    if isinstance(value, str) and _ADDRESS_RE.match(value):
        return Web3.to_checksum_address(value)
    if isinstance(value, (list, tuple)):
        return [_to_chain_arg(v) for v in value]
    return value


class Web3LedgerRpc:
    """LedgerRpc backed by web3.py's AsyncWeb3 and an eth-account signer."""

    def __init__(self, config: KernelConfig, w3: Optional[AsyncWeb3] = None):
        self.config = config
        self.w3 = w3 or AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(config.rpc_url))
        self._account = None
        if config.admin_private_key is not None:
            self._account = Account.from_key(config.admin_private_key.get_secret_value())

    @property
    def signer_address(self) -> Optional[str]:
        return self._account.address.lower() if self._account else None

    def _function(self, address: str, abi: List[dict], function_name: str, args: Sequence[Any]):
        contract = self.w3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)
        return contract.functions[function_name](*[_to_chain_arg(a) for a in args])

    async def read_contract(
        self, address: str, abi: List[dict], function_name: str, args: Sequence[Any] = (),
    ) -> Any:
        try:
            return await self._function(address, abi, function_name, args).call()
        except Exception as e:
            raise ChainReadFailed(f"{function_name} read failed: {e}") from e

    async def write_contract(
        self, address: str, abi: List[dict], function_name: str, args: Sequence[Any], nonce: int,
    ) -> str:
        if self._account is None:
            raise ChainWriteFailed("No signing key configured")
        try:
            tx = await self._function(address, abi, function_name, args).build_transaction({
                "from": self._account.address,
                "nonce": nonce,
                "chainId": self.config.chain_id,
            })
            signed = self._account.sign_transaction(tx)
            tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
        except Exception as e:
            raise ChainWriteFailed(f"{function_name} submission failed: {e}") from e
        return Web3.to_hex(tx_hash)

    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> TxReceipt:
        try:
            receipt = await self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
        except TimeExhausted:
            return TxReceipt(tx_hash=tx_hash, status=ConfirmationStatus.TIMEOUT)
        status = (
            ConfirmationStatus.SUCCESS if receipt["status"] == 1 else ConfirmationStatus.REVERTED
        )
        return TxReceipt(
            tx_hash=tx_hash,
            status=status,
            block_number=receipt.get("blockNumber"),
        )

    async def get_transaction_count(self, address: str) -> int:
        try:
            return await self.w3.eth.get_transaction_count(
                Web3.to_checksum_address(address), "pending"
            )
        except Exception as e:
            raise ChainReadFailed(f"Transaction count read failed: {e}") from e
