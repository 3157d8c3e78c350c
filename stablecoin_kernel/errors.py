"""
Kernel error taxonomy.

Every component raises a subclass of KernelError. Callers branch on
``error.kind`` (or the class) instead of matching message strings.

Behavioral Contract:
- ``retryable`` errors mean "unknown / try again": never treat them as a
  definitive negative answer (e.g. never deauthorize on a provider outage).
- Non-retryable errors are definitive rejections with a human-readable reason.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    INVALID_ADDRESS = "invalid_address"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    PROFILE_NOT_FOUND = "profile_not_found"
    NO_XP = "no_xp"
    CHAIN_READ_FAILED = "chain_read_failed"
    CHAIN_WRITE_FAILED = "chain_write_failed"
    CHAIN_WRITE_REVERTED = "chain_write_reverted"
    CONFIRMATION_TIMEOUT = "confirmation_timeout"
    ALREADY_CLAIMED = "already_claimed"
    CLAIM_IN_FLIGHT = "claim_in_flight"
    NOT_ELIGIBLE = "not_eligible"
    INVALID_SIGNATURE = "invalid_signature"
    SIGNATURE_EXPIRED = "signature_expired"
    MISCONFIGURED = "misconfigured"


class KernelError(Exception):
    """Base class for all kernel errors."""

    kind: ErrorKind = ErrorKind.MISCONFIGURED
    retryable: bool = False

    def __init__(self, message: str, address: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.address = address

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "retryable": self.retryable,
            "address": self.address,
        }


class InvalidAddress(KernelError, ValueError):
    kind = ErrorKind.INVALID_ADDRESS


class ProviderUnavailable(KernelError):
    """Reputation API network failure or non-404 error status."""
    kind = ErrorKind.PROVIDER_UNAVAILABLE
    retryable = True


class ProfileNotFound(KernelError):
    """Reputation API answered 404: a definitive 'no profile'."""
    kind = ErrorKind.PROFILE_NOT_FOUND


class ChainReadFailed(KernelError):
    """A contract read failed. Distinct from a definitive ``False``."""
    kind = ErrorKind.CHAIN_READ_FAILED
    retryable = True


class ChainWriteFailed(KernelError):
    """A transaction could not be built, signed or broadcast."""
    kind = ErrorKind.CHAIN_WRITE_FAILED
    retryable = True


class ChainWriteReverted(KernelError):
    """A transaction was mined with a failure status."""
    kind = ErrorKind.CHAIN_WRITE_REVERTED

    def __init__(self, message: str, tx_hash: str, address: Optional[str] = None):
        super().__init__(message, address=address)
        self.tx_hash = tx_hash


class ConfirmationTimeout(KernelError):
    """No receipt within the timeout. The transaction may still confirm."""
    kind = ErrorKind.CONFIRMATION_TIMEOUT
    retryable = True

    def __init__(self, message: str, tx_hash: str, address: Optional[str] = None):
        super().__init__(message, address=address)
        self.tx_hash = tx_hash


class AlreadyClaimed(KernelError):
    kind = ErrorKind.ALREADY_CLAIMED


class ClaimInFlight(KernelError):
    """Another claim for the same address holds the reservation."""
    kind = ErrorKind.CLAIM_IN_FLIGHT
    retryable = True


class InvalidSignature(KernelError):
    kind = ErrorKind.INVALID_SIGNATURE


class SignatureExpired(KernelError):
    kind = ErrorKind.SIGNATURE_EXPIRED


class Misconfigured(KernelError):
    """A required setting (policy id, admin key, token) is missing."""
    kind = ErrorKind.MISCONFIGURED
