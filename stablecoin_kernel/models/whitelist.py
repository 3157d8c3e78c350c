"""Whitelist policy, transaction receipts and sync results."""

from datetime import datetime
from enum import Enum, IntEnum
from typing import Dict, List, Optional

from pydantic import BaseModel

from stablecoin_kernel.errors import ErrorKind
from stablecoin_kernel.models.outcome import Outcome


class PolicyType(IntEnum):
    WHITELIST = 0
    BLACKLIST = 1


class WhitelistPolicy(BaseModel):
    """A registry policy. ``policy_id == 0`` means unconfigured."""

    policy_id: int
    policy_type: PolicyType = PolicyType.WHITELIST
    admin: Optional[str] = None


class ConfirmationStatus(str, Enum):
    SUCCESS = "success"
    REVERTED = "reverted"
    TIMEOUT = "timeout"      # Ambiguous: may still confirm later


class TxReceipt(BaseModel):
    """Receipt as reported by the ledger RPC."""

    tx_hash: str
    status: ConfirmationStatus
    block_number: Optional[int] = None


class SyncAction(str, Enum):
    """Per-address classification of one reconciliation pass."""
    KEEP = "keep"            # desired=True, current=True
    ADD = "add"              # desired=True, current=False
    REMOVE = "remove"        # desired=False, current=True
    NONE = "none"            # desired=False, current=False
    SKIP = "skip"            # desired or current unknown


class SyncResult(BaseModel):
    """Aggregate of one sync invocation. Not persisted."""

    checked: int = 0
    added: List[str] = []
    removed: List[str] = []
    authorized: List[str] = []              # Confirmed whitelisted after the pass
    timed_out: List[str] = []               # Submitted, confirmation unknown
    scores: Dict[str, Optional[int]] = {}
    errors: List[str] = []
    failures: Dict[str, ErrorKind] = {}     # address -> kind of its error
    error: Optional[str] = None             # Top-level error (nothing processed)
    error_kind: Optional[ErrorKind] = None
    policy_id: int = 0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def outcome(self) -> Outcome:
        if self.error_kind == ErrorKind.MISCONFIGURED:
            return Outcome.REJECTED
        if self.error or self.errors or self.timed_out:
            return Outcome.RETRYABLE
        return Outcome.SUCCESS

    def record_failure(self, address: str, kind: ErrorKind, message: str) -> None:
        self.failures[address] = kind
        self.errors.append(message)

    def fail(self, kind: ErrorKind, message: str) -> None:
        """Top-level failure: nothing was processed."""
        self.error = message
        self.error_kind = kind
        self.errors.append(message)

    def to_payload(self) -> dict:
        data = self.model_dump(mode="json")
        data["outcome"] = self.outcome.value
        data["added_count"] = len(self.added)
        data["removed_count"] = len(self.removed)
        return data


class AddResult(BaseModel):
    """Result of adding one address if it is eligible."""

    address: str
    outcome: Outcome
    score: Optional[int] = None
    tx_hash: Optional[str] = None
    already_authorized: bool = False
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
