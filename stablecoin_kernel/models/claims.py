"""Claim ledger records and claim results."""

from typing import Optional

from pydantic import BaseModel, Field

from stablecoin_kernel.errors import ErrorKind
from stablecoin_kernel.models.address import Address
from stablecoin_kernel.models.outcome import Outcome


class ClaimRecord(BaseModel):
    """
    One-time disbursement record. Created exactly once per address, after the
    mint transaction confirmed successfully. Never mutated or deleted.
    """

    address: Address
    amount: int = Field(ge=0)               # Minor units
    xp: float                               # XP at time of claim
    tx_hash: str
    timestamp: int                          # ms since epoch

    def to_json_entry(self) -> dict:
        """Storage form: amount as a textual integer."""
        return {
            "address": self.address,
            "amount": str(self.amount),
            "xp": self.xp,
            "txHash": self.tx_hash,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_json_entry(cls, entry: dict) -> "ClaimRecord":
        return cls(
            address=entry["address"],
            amount=int(entry["amount"]),
            xp=entry.get("xp", 0),
            tx_hash=entry.get("txHash", entry.get("tx_hash", "")),
            timestamp=int(entry.get("timestamp", 0)),
        )


class PendingClaim(BaseModel):
    """A reservation held while a mint is in flight (MINT_PENDING)."""

    address: Address
    amount: int
    xp: float
    reserved_at: int                        # ms since epoch
    tx_hash: Optional[str] = None           # Set once the mint is broadcast


class ClaimStatus(BaseModel):
    """Answer to 'can this address claim, and how much?'."""

    address: str
    can_claim: bool = False
    amount: int = 0
    xp: float = 0.0
    score: Optional[int] = None
    already_claimed: bool = False
    claim_record: Optional[ClaimRecord] = None
    pending_tx_hash: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None

    @property
    def outcome(self) -> Outcome:
        if self.can_claim:
            return Outcome.SUCCESS
        if self.error_kind in (
            ErrorKind.PROVIDER_UNAVAILABLE,
            ErrorKind.CHAIN_READ_FAILED,
            ErrorKind.CLAIM_IN_FLIGHT,
        ):
            return Outcome.RETRYABLE
        return Outcome.REJECTED


class ClaimResult(BaseModel):
    """Result of one claim request."""

    address: str
    outcome: Outcome
    tx_hash: Optional[str] = None
    amount: int = 0
    xp: float = 0.0
    block_number: Optional[int] = None
    already_claimed: bool = False
    claim_record: Optional[ClaimRecord] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
