"""Stablecoin kernel data models."""

from stablecoin_kernel.models.address import (
    Address,
    is_valid_address,
    normalize_address,
    normalize_addresses,
)
from stablecoin_kernel.models.claims import (
    ClaimRecord,
    ClaimResult,
    ClaimStatus,
    PendingClaim,
)
from stablecoin_kernel.models.config import KernelConfig
from stablecoin_kernel.models.outcome import Outcome
from stablecoin_kernel.models.reputation import ReputationSnapshot, ScoreData, UserData
from stablecoin_kernel.models.whitelist import (
    AddResult,
    ConfirmationStatus,
    PolicyType,
    SyncAction,
    SyncResult,
    TxReceipt,
    WhitelistPolicy,
)

__all__ = [
    "AddResult",
    "Address",
    "ClaimRecord",
    "ClaimResult",
    "ClaimStatus",
    "ConfirmationStatus",
    "KernelConfig",
    "Outcome",
    "PendingClaim",
    "PolicyType",
    "ReputationSnapshot",
    "ScoreData",
    "SyncAction",
    "SyncResult",
    "TxReceipt",
    "UserData",
    "WhitelistPolicy",
    "is_valid_address",
    "normalize_address",
    "normalize_addresses",
]
