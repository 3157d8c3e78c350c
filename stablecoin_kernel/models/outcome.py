"""Result outcome shared by every public operation."""

from enum import Enum


class Outcome(str, Enum):
    SUCCESS = "success"        # Done and confirmed
    REJECTED = "rejected"      # Definitive failure, with a reason
    RETRYABLE = "retryable"    # Ambiguous or transient: unknown, try again
