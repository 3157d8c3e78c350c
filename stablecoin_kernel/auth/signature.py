"""
Signature Verification Gate: proof that a claim request comes from the
address it names.

Behavioral Contract:
- The signed text is fixed: ``claim_message(address, timestamp)`` with the
  address lower-cased.
- A timestamp in the future, or older than the freshness window, is
  SignatureExpired. A timestamp exactly at the window edge is accepted.
- A malformed signature, or one whose recovered signer differs from the
  address (case-insensitive), is InvalidSignature.
- Verification is stateless and never touches the chain.
"""

import logging
import time
from typing import Callable, Optional

from eth_account import Account
from eth_account.messages import encode_defunct

from stablecoin_kernel.errors import InvalidSignature, SignatureExpired
from stablecoin_kernel.models.address import normalize_address
from stablecoin_kernel.models.config import KernelConfig

logger = logging.getLogger(__name__)

MESSAGE_TEMPLATE = "I am claiming my $ethosUSD tokens for address {address} at timestamp {timestamp}"


def claim_message(address: str, timestamp: int) -> str:
    return MESSAGE_TEMPLATE.format(address=address.lower(), timestamp=timestamp)


class SignatureGate:
    """Verifies personal-sign claim signatures."""

    def __init__(self, config: KernelConfig, clock: Callable[[], float] = time.time):
        self.max_age_ms = config.signature_max_age_seconds * 1000
        self._clock = clock

    def check_freshness(self, timestamp: float, now_ms: Optional[float] = None) -> None:
        """Raise SignatureExpired if ``timestamp`` (ms) is outside the window."""
        now_ms = self._clock() * 1000 if now_ms is None else now_ms
        if timestamp > now_ms or now_ms - timestamp > self.max_age_ms:
            raise SignatureExpired("Signature expired. Please try again.")

    def recover_signer(self, message: str, signature: str) -> str:
        try:
            signer = Account.recover_message(encode_defunct(text=message), signature=signature)
        except Exception as e:
            logger.info("Signature recovery failed: %s", e)
            raise InvalidSignature("Invalid signature format") from e
        return signer.lower()

    def verify(
        self,
        address: str,
        signature: str,
        timestamp: int,
        now_ms: Optional[float] = None,
    ) -> str:
        """
        Check a claim signature. Returns the canonical address on success.

        Raises InvalidAddress, SignatureExpired or InvalidSignature.
        """
        address = normalize_address(address)
        self.check_freshness(timestamp, now_ms)

        signer = self.recover_signer(claim_message(address, timestamp), signature)
        if signer != address:
            raise InvalidSignature(
                "Invalid signature. Please sign with the correct wallet.", address=address
            )
        return address
